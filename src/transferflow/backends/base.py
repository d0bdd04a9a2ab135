"""Exchange backend interface.

The workflow engine never talks to the exchange directly; every remote
call goes through an ExchangeBackend. Implementations decide the transport.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from transferflow.models import TransferPurpose, TransferRequest, VerificationToken


@dataclass
class Balance:
    """Spendable balance of an asset."""

    asset: str
    available: Decimal


@dataclass
class RemoteFee:
    """Fee breakdown reported by the exchange (or a fallback schedule)."""

    network_fee: Decimal
    total_fee: Decimal
    platform_fee: Decimal = Decimal("0")
    estimated_time: Optional[str] = None


@dataclass
class OtpDelivery:
    """Acknowledgement of an OTP delivery."""

    message: str = ""
    expires_in: Optional[float] = None  # Code lifetime in seconds


@dataclass
class OtpVerification:
    """Result of an OTP verification."""

    verified: bool
    token: Optional[str] = None
    expires_in: Optional[float] = None  # Token lifetime in seconds
    expired: bool = False  # Code lifetime elapsed server-side


@dataclass
class Submission:
    """Exchange acknowledgement of a submitted transfer."""

    operation_id: str
    status: str = "pending"
    message: str = ""


@dataclass
class StatusReport:
    """One status observation of a submitted operation."""

    operation_id: str
    status: str
    tx_hash: Optional[str] = None
    message: str = ""


@dataclass
class PurchaseEstimate:
    """Cost breakdown of an NFT listing for the current user."""

    listing_id: str
    name: str
    chain: str
    currency: str
    price: Decimal
    platform_fee: Decimal
    network_fee: Decimal
    total: Decimal
    user_balance: Decimal
    has_sufficient_balance: bool


class BackendError(Exception):
    """The exchange refused or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None, code: Optional[str] = None):
        self.status_code = status_code
        self.code = code
        super().__init__(message)


class ExchangeBackend(ABC):
    """Abstract base class for exchange collaborators."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name."""
        raise NotImplementedError()

    @abstractmethod
    async def get_balance(self, asset: str) -> Balance:
        """Get the spendable balance of an asset."""
        raise NotImplementedError()

    @abstractmethod
    async def estimate_fee(self, chain: str, amount: Decimal) -> RemoteFee:
        """Estimate the withdrawal fee for an amount.

        Args:
            chain: Fee key (chain id, or token symbol for tokens)
            amount: Amount to withdraw

        Returns:
            Fee breakdown
        """
        raise NotImplementedError()

    @abstractmethod
    async def request_otp(self, purpose: TransferPurpose) -> OtpDelivery:
        """Deliver a one-time passcode to the user."""
        raise NotImplementedError()

    @abstractmethod
    async def verify_otp(self, code: str, purpose: TransferPurpose) -> OtpVerification:
        """Verify a one-time passcode."""
        raise NotImplementedError()

    @abstractmethod
    async def submit_transfer(
        self, request: TransferRequest, token: VerificationToken
    ) -> Submission:
        """Submit a withdrawal or purchase.

        Args:
            request: Confirmed transfer request
            token: Verification token authorizing it

        Returns:
            Submission with the operation id to poll
        """
        raise NotImplementedError()

    @abstractmethod
    async def get_operation_status(
        self, operation_id: str, purpose: TransferPurpose
    ) -> StatusReport:
        """Get the current status of a submitted operation."""
        raise NotImplementedError()

    @abstractmethod
    async def get_purchase_estimate(self, listing_id: str) -> PurchaseEstimate:
        """Get the cost breakdown of an NFT listing."""
        raise NotImplementedError()

    async def close(self) -> None:
        """Release any held resources."""
        return None
