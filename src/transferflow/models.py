"""Core data model for the transfer workflow."""

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

from transferflow.errors import FlowError, ReasonCode

logger = logging.getLogger(__name__)


class TransferPurpose(str, Enum):
    """Which irreversible operation the flow drives."""

    WITHDRAWAL = "withdrawal"
    NFT_PURCHASE = "nft_purchase"


class OperationStatus(str, Enum):
    """Lifecycle of a submitted transfer."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"  # Cancelled server-side (support/admin)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, raw: Optional[str]) -> "OperationStatus":
        """Parse a backend status string.

        Unknown values map to PROCESSING so they keep being polled; an
        unrecognised status must never be reported as a failure.
        """
        try:
            return cls((raw or "").lower())
        except ValueError:
            logger.warning(f"Unknown operation status {raw!r}, treating as processing")
            return cls.PROCESSING


TERMINAL_STATUSES = frozenset(
    {
        OperationStatus.COMPLETED,
        OperationStatus.FAILED,
        OperationStatus.REFUNDED,
        OperationStatus.CANCELLED,
    }
)


class FlowStep(str, Enum):
    """Steps of the transfer state machine."""

    SELECT = "select"
    CONFIGURE = "configure"
    VERIFY = "verify"
    CONFIRM = "confirm"
    SETTLING = "settling"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (FlowStep.SUCCESS, FlowStep.ERROR, FlowStep.CANCELLED)


@dataclass(frozen=True)
class Destination:
    """Where the value goes."""

    address: str
    memo: Optional[str] = None  # Destination tag / memo for tagged ledgers


@dataclass(frozen=True)
class TransferRequest:
    """The immutable intent the user authorizes and confirms."""

    purpose: TransferPurpose
    asset_id: str  # Asset symbol, or listing id for NFT purchases
    network: str
    destination: Destination
    amount: Decimal
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)

    @property
    def fingerprint(self) -> str:
        """Stable digest of the fields that define what gets moved where.

        request_id and created_at are excluded: two requests moving the same
        amount to the same destination share a fingerprint.
        """
        canonical = json.dumps(
            {
                "purpose": self.purpose.value,
                "asset": self.asset_id.upper(),
                "network": self.network.lower(),
                "address": self.destination.address,
                "memo": self.destination.memo or "",
                "amount": format(self.amount.normalize(), "f"),
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass(frozen=True)
class FeeQuote:
    """Fee estimate for a given amount."""

    chain: str
    amount: Decimal
    network_fee: Decimal
    total_fee: Decimal
    platform_fee: Decimal = Decimal("0")
    quoted_at: float = field(default_factory=time.time)
    is_fallback: bool = False
    sequence: int = 0
    estimated_time: Optional[str] = None

    @property
    def receive_amount(self) -> Decimal:
        """Amount arriving at the destination, never negative."""
        return max(self.amount - self.total_fee, Decimal("0"))

    @property
    def total_cost(self) -> Decimal:
        """Amount charged when fees are added on top (NFT purchases)."""
        return self.amount + self.total_fee


@dataclass(frozen=True)
class VerificationToken:
    """Single-use credential produced by an authorization gate."""

    token: str
    issued_at: float
    expires_at: float
    request_fingerprint: str
    gate: str = "otp"

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def is_bound_to(self, request: TransferRequest) -> bool:
        return self.request_fingerprint == request.fingerprint


@dataclass
class FormData:
    """User-editable inputs of the flow."""

    asset_id: Optional[str] = None
    network: Optional[str] = None
    fee_key: Optional[str] = None
    address: str = ""
    memo: Optional[str] = None
    amount: str = ""
    available: Optional[Decimal] = None
    currency: Optional[str] = None  # NFT listing currency


@dataclass
class FlowState:
    """Everything the controller knows about one flow instance."""

    purpose: TransferPurpose
    step: FlowStep = FlowStep.SELECT
    form: FormData = field(default_factory=FormData)
    validation_errors: dict[str, ReasonCode] = field(default_factory=dict)
    last_fee_quote: Optional[FeeQuote] = None
    request: Optional[TransferRequest] = None
    verification_token: Optional[VerificationToken] = None
    operation_id: Optional[str] = None
    operation_status: Optional[OperationStatus] = None
    tx_hash: Optional[str] = None
    submission_error: Optional[FlowError] = None
    advisory: Optional[FlowError] = None
    busy: Optional[str] = None
    retries: int = 0

    @property
    def still_processing(self) -> bool:
        """True when settlement polling gave up without a terminal status."""
        return (
            self.step == FlowStep.SETTLING
            and self.advisory is not None
            and self.advisory.reason == ReasonCode.POLL_TIMEOUT
        )
