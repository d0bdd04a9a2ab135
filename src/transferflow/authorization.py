"""Authorization gates guarding the Verify step.

A gate turns a TransferRequest into a single-use VerificationToken bound to
that request's fingerprint. Withdrawals use a one-time passcode; NFT
purchases use a price lock that re-checks the listing before confirming.
"""

import asyncio
import logging
import math
import time
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Optional

import httpx

from transferflow.backends.base import BackendError, ExchangeBackend, OtpDelivery
from transferflow.errors import AuthorizationError, ReasonCode
from transferflow.models import TransferPurpose, TransferRequest, VerificationToken
from transferflow.utils.sequencing import StepGuard

logger = logging.getLogger(__name__)

GATE_ERRORS = (BackendError, httpx.HTTPError, asyncio.TimeoutError)


class OtpState(str, Enum):
    """OTP gate lifecycle."""

    NOT_REQUESTED = "not_requested"
    SENT = "sent"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    FAILED = "failed"


class AuthorizationGate(ABC):
    """Base class for authorization gates."""

    name: str = "gate"

    @abstractmethod
    async def authorize(
        self, request: TransferRequest, code: Optional[str] = None
    ) -> VerificationToken:
        """Authorize a request.

        Args:
            request: Request to bind the token to
            code: User-entered code, if the gate takes one

        Returns:
            VerificationToken bound to the request

        Raises:
            AuthorizationError: If the gate refuses
        """
        raise NotImplementedError()

    def reset(self) -> None:
        """Forget per-request state."""
        return None


class OtpGate(AuthorizationGate):
    """One-time passcode gate for withdrawals."""

    name = "otp"

    def __init__(
        self,
        backend: ExchangeBackend,
        purpose: TransferPurpose = TransferPurpose.WITHDRAWAL,
        cooldown_seconds: float = 60.0,
        timeout: float = 5.0,
        code_ttl: float = 600.0,
        token_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self._purpose = purpose
        self.cooldown_seconds = cooldown_seconds
        self.timeout = timeout
        self.code_ttl = code_ttl
        self.token_ttl = token_ttl
        self._clock = clock

        self.state = OtpState.NOT_REQUESTED
        self._cooldown_until: Optional[float] = None
        self._code_expires_at: Optional[float] = None
        self._used_codes: set[str] = set()
        self._request_guard = StepGuard("OTP delivery", error_cls=AuthorizationError)
        self._verify_guard = StepGuard("OTP verification", error_cls=AuthorizationError)

    @property
    def busy(self) -> bool:
        return self._request_guard.busy or self._verify_guard.busy

    def cooldown_remaining(self) -> float:
        """Seconds until a new code may be requested."""
        if self._cooldown_until is None:
            return 0.0
        return max(0.0, self._cooldown_until - self._clock())

    async def request_code(self) -> OtpDelivery:
        """Deliver a new code to the user.

        Raises:
            AuthorizationError: COOLDOWN_ACTIVE, REQUEST_IN_FLIGHT or
                CODE_DELIVERY_FAILED
        """
        remaining = self.cooldown_remaining()
        if remaining > 0:
            raise AuthorizationError(
                ReasonCode.COOLDOWN_ACTIVE,
                f"Please wait {math.ceil(remaining)}s before requesting a new code",
                retry_after=remaining,
            )

        async with self._request_guard:
            try:
                delivery = await asyncio.wait_for(
                    self._backend.request_otp(self._purpose), timeout=self.timeout
                )
            except GATE_ERRORS as e:
                logger.warning(f"OTP delivery failed: {type(e).__name__}: {e}")
                raise AuthorizationError(
                    ReasonCode.CODE_DELIVERY_FAILED, "Failed to send verification code"
                ) from e

        now = self._clock()
        self._cooldown_until = now + self.cooldown_seconds
        self._code_expires_at = now + (delivery.expires_in or self.code_ttl)
        # Each delivery issues a new code
        self._used_codes.clear()
        self.state = OtpState.SENT
        logger.info(f"OTP sent for {self._purpose.value}")
        return delivery

    async def verify_code(self, code: str, request: TransferRequest) -> VerificationToken:
        """Exchange a code for a token bound to the request."""
        if self.state == OtpState.NOT_REQUESTED:
            raise AuthorizationError(ReasonCode.CODE_NOT_REQUESTED, "Request a verification code first")

        code = (code or "").strip()
        if not code:
            raise AuthorizationError(ReasonCode.INVALID_CODE, "Enter the verification code")
        if code in self._used_codes:
            raise AuthorizationError(ReasonCode.CODE_ALREADY_USED, "This code was already used")

        if self.state == OtpState.FAILED or self._code_expired():
            self.state = OtpState.FAILED
            raise AuthorizationError(ReasonCode.EXPIRED, "Code expired, request a new one")

        async with self._verify_guard:
            self.state = OtpState.VERIFYING
            try:
                result = await asyncio.wait_for(
                    self._backend.verify_otp(code, self._purpose), timeout=self.timeout
                )
            except GATE_ERRORS as e:
                self.state = OtpState.SENT
                logger.warning(f"OTP verification unavailable: {type(e).__name__}: {e}")
                raise AuthorizationError(
                    ReasonCode.VERIFICATION_UNAVAILABLE, "Could not verify the code, try again"
                ) from e

        if result.expired:
            self.state = OtpState.FAILED
            raise AuthorizationError(ReasonCode.EXPIRED, "Code expired, request a new one")
        if not result.verified or not result.token:
            self.state = OtpState.SENT
            raise AuthorizationError(ReasonCode.INVALID_CODE, "Invalid verification code")

        now = self._clock()
        self._used_codes.add(code)
        self.state = OtpState.VERIFIED
        logger.info(f"OTP verified for request {request.request_id}")
        return VerificationToken(
            token=result.token,
            issued_at=now,
            expires_at=now + (result.expires_in or self.token_ttl),
            request_fingerprint=request.fingerprint,
            gate=self.name,
        )

    async def authorize(
        self, request: TransferRequest, code: Optional[str] = None
    ) -> VerificationToken:
        return await self.verify_code(code or "", request)

    def reset(self) -> None:
        # Cooldown survives a reset; it limits deliveries, not requests
        self.state = OtpState.NOT_REQUESTED
        self._code_expires_at = None

    def _code_expired(self) -> bool:
        return self._code_expires_at is not None and self._clock() >= self._code_expires_at


class PriceLockGate(AuthorizationGate):
    """Price lock gate for NFT purchases.

    Re-reads the listing right before confirmation; the purchase may only
    proceed at the price the user saw, and only while the lock is valid.
    """

    name = "price_lock"

    def __init__(
        self,
        backend: ExchangeBackend,
        lock_seconds: float = 60.0,
        timeout: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self.lock_seconds = lock_seconds
        self.timeout = timeout
        self._clock = clock
        self._guard = StepGuard("price lock", error_cls=AuthorizationError)

    @property
    def busy(self) -> bool:
        return self._guard.busy

    async def authorize(
        self, request: TransferRequest, code: Optional[str] = None
    ) -> VerificationToken:
        async with self._guard:
            try:
                estimate = await asyncio.wait_for(
                    self._backend.get_purchase_estimate(request.asset_id), timeout=self.timeout
                )
            except GATE_ERRORS as e:
                logger.warning(f"Price lock for {request.asset_id} unavailable: {type(e).__name__}: {e}")
                raise AuthorizationError(
                    ReasonCode.VERIFICATION_UNAVAILABLE, "Could not confirm the listing price"
                ) from e

        if estimate.price != request.amount:
            logger.info(f"Listing {request.asset_id} price moved {request.amount} -> {estimate.price}")
            raise AuthorizationError(
                ReasonCode.PRICE_CHANGED,
                "The listing price changed",
                details={"expected": str(request.amount), "current": str(estimate.price)},
            )
        if estimate.total > estimate.user_balance:
            raise AuthorizationError(
                ReasonCode.INSUFFICIENT_BALANCE,
                "Insufficient balance for price plus fees",
                details={"total": str(estimate.total), "balance": str(estimate.user_balance)},
            )

        now = self._clock()
        logger.info(f"Price locked for listing {request.asset_id} at {estimate.price} {estimate.currency}")
        return VerificationToken(
            token=f"pl_{uuid.uuid4().hex}",
            issued_at=now,
            expires_at=now + self.lock_seconds,
            request_fingerprint=request.fingerprint,
            gate=self.name,
        )
