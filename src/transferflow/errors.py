"""Error taxonomy for the transfer workflow.

Every failure raised by the engine is a FlowError with exactly one ErrorKind.
The flow controller decides what happens next from the kind and the
ReasonCode alone, never from message text:

- VALIDATION: local and synchronous, blocks a transition (bad address, amount)
- SOFT_SERVICE: degraded service (fee fallback, poll timeout), never a failure
- AUTHORIZATION: OTP / price lock problems, recoverable inside the Verify step
- SUBMISSION: the transfer request was refused or could not be delivered
- SETTLEMENT: the exchange reported failed/refunded/cancelled for the operation
"""

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    """Top-level error category."""

    VALIDATION = "validation"
    SOFT_SERVICE = "soft_service"
    AUTHORIZATION = "authorization"
    SUBMISSION = "submission"
    SETTLEMENT = "settlement"


class ReasonCode(str, Enum):
    """Machine-readable reason attached to every FlowError."""

    # Destination
    ADDRESS_REQUIRED = "address_required"
    INVALID_ADDRESS = "invalid_address"
    INVALID_MEMO = "invalid_memo"
    UNSUPPORTED_CHAIN = "unsupported_chain"
    UNSUPPORTED_ASSET = "unsupported_asset"

    # Amount
    INVALID_AMOUNT = "invalid_amount"
    AMOUNT_NOT_POSITIVE = "amount_not_positive"
    BELOW_MINIMUM = "below_minimum"
    ABOVE_MAXIMUM = "above_maximum"
    BALANCE_UNAVAILABLE = "balance_unavailable"
    INSUFFICIENT_BALANCE = "insufficient_balance"
    FEE_EXCEEDS_AMOUNT = "fee_exceeds_amount"

    # Flow sequencing
    INVALID_STEP = "invalid_step"
    REQUEST_IN_FLIGHT = "request_in_flight"
    SUBMISSION_IN_FLIGHT = "submission_in_flight"
    RETRY_LIMIT_REACHED = "retry_limit_reached"

    # Soft service
    FEE_ESTIMATE_UNAVAILABLE = "fee_estimate_unavailable"
    POLL_TIMEOUT = "poll_timeout"
    LISTING_UNAVAILABLE = "listing_unavailable"

    # Authorization
    COOLDOWN_ACTIVE = "cooldown_active"
    CODE_DELIVERY_FAILED = "code_delivery_failed"
    CODE_NOT_REQUESTED = "code_not_requested"
    CODE_ALREADY_USED = "code_already_used"
    INVALID_CODE = "invalid_code"
    EXPIRED = "expired"
    VERIFICATION_UNAVAILABLE = "verification_unavailable"
    PRICE_CHANGED = "price_changed"
    TOKEN_MISSING = "token_missing"
    TOKEN_MISMATCH = "token_mismatch"
    TOKEN_ALREADY_USED = "token_already_used"

    # Submission
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TOKEN_EXPIRED = "token_expired"
    NETWORK_FAILURE = "network_failure"
    REJECTED = "rejected"
    DESTINATION_INVALID = "destination_invalid"
    DUPLICATE_SUBMISSION = "duplicate_submission"

    # Settlement
    OPERATION_FAILED = "operation_failed"
    OPERATION_REFUNDED = "operation_refunded"
    OPERATION_CANCELLED = "operation_cancelled"


class FlowError(Exception):
    """Base class for all workflow errors."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(
        self,
        reason: ReasonCode,
        message: str = "",
        retry_after: Optional[float] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.reason = reason
        self.message = message or reason.value.replace("_", " ").capitalize()
        self.retry_after = retry_after
        self.details = details or {}
        super().__init__(self.message)

    def __reduce__(self):
        return (type(self), (self.reason, self.message, self.retry_after, self.details))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value}, reason={self.reason.value})"


class ValidationError(FlowError):
    """Local validation failed; the flow stays on the current step."""

    kind = ErrorKind.VALIDATION


class SoftServiceError(FlowError):
    """A remote service degraded; shown as an advisory, never as a failure."""

    kind = ErrorKind.SOFT_SERVICE


class AuthorizationError(FlowError):
    """The authorization gate refused; recoverable inside the Verify step."""

    kind = ErrorKind.AUTHORIZATION


# Submission reasons the user can retry with the same request
RECOVERABLE_SUBMISSION_REASONS = frozenset(
    {
        ReasonCode.NETWORK_FAILURE,
        ReasonCode.TOKEN_EXPIRED,
        ReasonCode.INSUFFICIENT_FUNDS,
    }
)


class SubmissionError(FlowError):
    """The transfer request could not be submitted."""

    kind = ErrorKind.SUBMISSION

    @property
    def recoverable(self) -> bool:
        """True if the same request may be submitted again."""
        return self.reason in RECOVERABLE_SUBMISSION_REASONS


class SettlementError(FlowError):
    """The exchange settled the operation as failed, refunded or cancelled."""

    kind = ErrorKind.SETTLEMENT
