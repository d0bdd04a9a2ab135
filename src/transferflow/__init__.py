"""Withdrawal and NFT purchase workflow engine."""

from transferflow.errors import (
    AuthorizationError,
    ErrorKind,
    FlowError,
    ReasonCode,
    SettlementError,
    SoftServiceError,
    SubmissionError,
    ValidationError,
)
from transferflow.flow import FlowController, create_flow
from transferflow.models import (
    FeeQuote,
    FlowState,
    FlowStep,
    OperationStatus,
    TransferPurpose,
    TransferRequest,
    VerificationToken,
)

__version__ = "0.1.0"

__all__ = [
    "AuthorizationError",
    "ErrorKind",
    "FeeQuote",
    "FlowController",
    "FlowError",
    "FlowState",
    "FlowStep",
    "OperationStatus",
    "ReasonCode",
    "SettlementError",
    "SoftServiceError",
    "SubmissionError",
    "TransferPurpose",
    "TransferRequest",
    "ValidationError",
    "VerificationToken",
    "create_flow",
]
