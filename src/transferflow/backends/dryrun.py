"""Dry-run exchange backend for testing (no real transfers)."""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from transferflow.backends.base import (
    Balance,
    BackendError,
    ExchangeBackend,
    OtpDelivery,
    OtpVerification,
    PurchaseEstimate,
    RemoteFee,
    StatusReport,
    Submission,
)
from transferflow.chains import get_chain, get_fee_schedule
from transferflow.models import TransferPurpose, TransferRequest, VerificationToken

logger = logging.getLogger(__name__)


@dataclass
class Listing:
    """A simulated NFT listing."""

    name: str
    chain: str
    currency: str
    price: Decimal


DEFAULT_BALANCES = {
    "BTC": Decimal("0.5"),
    "ETH": Decimal("2"),
    "USDT": Decimal("1000"),
    "SOL": Decimal("25"),
    "XRP": Decimal("500"),
}

DEFAULT_LISTINGS = {
    "listing-1": Listing("Genesis #1", "ethereum", "ETH", Decimal("0.5")),
    "listing-2": Listing("Polygon Pass", "polygon", "MATIC", Decimal("40")),
}

DEFAULT_STATUS_SCRIPT = ("pending", "processing", "completed")


class DryRunBackend(ExchangeBackend):
    """Simulated exchange with in-memory balances.

    Each submitted operation walks through the status script one step per
    status request and then stays on the last entry. Failures can be queued
    per method with fail_next() and are raised once.
    """

    def __init__(
        self,
        balances: Optional[dict[str, Decimal]] = None,
        otp_code: str = "123456",
        status_script: Optional[list[str]] = None,
        listings: Optional[dict[str, Listing]] = None,
        platform_fee_percent: Decimal = Decimal("2.5"),
        latency: float = 0.0,
    ):
        self.balances = {k.upper(): Decimal(v) for k, v in (balances or DEFAULT_BALANCES).items()}
        self.otp_code = otp_code
        self.status_script = list(status_script or DEFAULT_STATUS_SCRIPT)
        self.listings = dict(listings if listings is not None else DEFAULT_LISTINGS)
        self.platform_fee_percent = Decimal(str(platform_fee_percent))
        self.latency = latency

        self.submissions: list[tuple[TransferRequest, VerificationToken]] = []
        self.otp_requests = 0
        self._failures: dict[str, list[Exception]] = {}
        self._operations: dict[str, int] = {}

    @property
    def name(self) -> str:
        return "dryrun"

    def fail_next(self, method: str, error: Exception) -> None:
        """Queue an error for the next call of a backend method."""
        self._failures.setdefault(method, []).append(error)

    async def _enter(self, method: str) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)
        queued = self._failures.get(method)
        if queued:
            error = queued.pop(0)
            logger.debug(f"Dry-run {method} failing with injected {type(error).__name__}")
            raise error

    async def get_balance(self, asset: str) -> Balance:
        await self._enter("get_balance")
        return Balance(asset=asset.upper(), available=self.balances.get(asset.upper(), Decimal("0")))

    async def estimate_fee(self, chain: str, amount: Decimal) -> RemoteFee:
        await self._enter("estimate_fee")
        schedule = get_fee_schedule(chain)
        platform_fee = amount * schedule.platform_fee_percent / Decimal("100")
        config = get_chain(chain)
        return RemoteFee(
            network_fee=schedule.network_fee,
            platform_fee=platform_fee,
            total_fee=schedule.network_fee + platform_fee,
            estimated_time=config.estimated_time if config else None,
        )

    async def request_otp(self, purpose: TransferPurpose) -> OtpDelivery:
        await self._enter("request_otp")
        self.otp_requests += 1
        logger.info(f"[dry-run] OTP for {purpose.value}: {self.otp_code}")
        return OtpDelivery(message="Verification code sent")

    async def verify_otp(self, code: str, purpose: TransferPurpose) -> OtpVerification:
        await self._enter("verify_otp")
        if code != self.otp_code:
            return OtpVerification(verified=False)
        return OtpVerification(verified=True, token=f"vt_{uuid.uuid4().hex}")

    async def submit_transfer(
        self, request: TransferRequest, token: VerificationToken
    ) -> Submission:
        await self._enter("submit_transfer")
        self.submissions.append((request, token))

        if request.purpose == TransferPurpose.NFT_PURCHASE:
            listing = self.listings.get(request.asset_id)
            if listing is None:
                raise BackendError("Listing not found", status_code=404, code="not_found")
            currency, cost = listing.currency, listing.price * (1 + self.platform_fee_percent / 100)
            prefix = "nft"
        else:
            currency, cost = request.asset_id.upper(), request.amount
            prefix = "wd"

        available = self.balances.get(currency, Decimal("0"))
        if cost > available:
            raise BackendError("Insufficient balance", status_code=402, code="insufficient_funds")
        self.balances[currency] = available - cost

        operation_id = f"{prefix}_{uuid.uuid4().hex[:12]}"
        self._operations[operation_id] = 0
        logger.info(f"[dry-run] Accepted {request.purpose.value} {operation_id}")
        return Submission(operation_id=operation_id, status="pending", message="Submitted")

    async def get_operation_status(
        self, operation_id: str, purpose: TransferPurpose
    ) -> StatusReport:
        await self._enter("get_operation_status")
        if operation_id not in self._operations:
            raise BackendError("Operation not found", status_code=404, code="not_found")

        index = self._operations[operation_id]
        status = self.status_script[min(index, len(self.status_script) - 1)]
        self._operations[operation_id] = index + 1
        tx_hash = f"0x{uuid.uuid4().hex}{uuid.uuid4().hex}" if status == "completed" else None
        return StatusReport(operation_id=operation_id, status=status, tx_hash=tx_hash)

    async def get_purchase_estimate(self, listing_id: str) -> PurchaseEstimate:
        await self._enter("get_purchase_estimate")
        listing = self.listings.get(listing_id)
        if listing is None:
            raise BackendError("Listing not found", status_code=404, code="not_found")

        platform_fee = listing.price * self.platform_fee_percent / Decimal("100")
        total = listing.price + platform_fee
        balance = self.balances.get(listing.currency, Decimal("0"))
        return PurchaseEstimate(
            listing_id=listing_id,
            name=listing.name,
            chain=listing.chain,
            currency=listing.currency,
            price=listing.price,
            platform_fee=platform_fee,
            network_fee=Decimal("0"),
            total=total,
            user_balance=balance,
            has_sufficient_balance=balance >= total,
        )
