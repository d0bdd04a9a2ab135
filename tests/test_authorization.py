"""Tests for the OTP and price lock authorization gates."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from transferflow.authorization import OtpGate, OtpState, PriceLockGate
from transferflow.backends.base import BackendError, OtpVerification
from transferflow.backends.dryrun import DryRunBackend, Listing
from transferflow.errors import AuthorizationError, ErrorKind, ReasonCode
from transferflow.models import Destination, TransferPurpose, TransferRequest


@pytest.fixture
def gate(backend, clock) -> OtpGate:
    return OtpGate(backend, cooldown_seconds=60, timeout=0.5, code_ttl=600, token_ttl=300, clock=clock)


class TestOtpRequest:
    """Tests for OTP delivery and cooldown."""

    @pytest.mark.asyncio
    async def test_request_code_starts_cooldown(self, gate, backend):
        await gate.request_code()

        assert gate.state == OtpState.SENT
        assert gate.cooldown_remaining() == 60
        assert backend.otp_requests == 1

    @pytest.mark.asyncio
    async def test_cooldown_rejects_and_is_unchanged(self, gate, backend, clock):
        """Test that a request 15s into the cooldown is rejected with 45s remaining."""
        await gate.request_code()
        clock.advance(15)

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.request_code()

        assert exc_info.value.reason == ReasonCode.COOLDOWN_ACTIVE
        assert exc_info.value.kind == ErrorKind.AUTHORIZATION
        assert exc_info.value.retry_after == 45
        assert gate.cooldown_remaining() == 45
        assert backend.otp_requests == 1

    @pytest.mark.asyncio
    async def test_request_allowed_after_cooldown(self, gate, backend, clock):
        await gate.request_code()
        clock.advance(60)

        await gate.request_code()

        assert backend.otp_requests == 2

    @pytest.mark.asyncio
    async def test_delivery_failure_starts_no_cooldown(self, gate, backend):
        backend.fail_next("request_otp", BackendError("smtp down", status_code=503))

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.request_code()

        assert exc_info.value.reason == ReasonCode.CODE_DELIVERY_FAILED
        assert gate.cooldown_remaining() == 0
        assert gate.state == OtpState.NOT_REQUESTED

        # Immediate retry is allowed
        await gate.request_code()
        assert gate.state == OtpState.SENT

    @pytest.mark.asyncio
    async def test_delivery_timeout(self, backend, clock):
        async def slow_request(purpose):
            await asyncio.sleep(5)

        backend.request_otp = slow_request
        gate = OtpGate(backend, timeout=0.05, clock=clock)

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.request_code()

        assert exc_info.value.reason == ReasonCode.CODE_DELIVERY_FAILED

    @pytest.mark.asyncio
    async def test_concurrent_request_is_rejected(self, clock):
        """Test that a second request while the first is outstanding fails fast."""
        backend = DryRunBackend(latency=0.1)
        gate = OtpGate(backend, clock=clock)

        first = asyncio.create_task(gate.request_code())
        await asyncio.sleep(0.01)

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.request_code()

        assert exc_info.value.reason == ReasonCode.REQUEST_IN_FLIGHT
        await first
        assert backend.otp_requests == 1


class TestOtpVerify:
    """Tests for OTP verification."""

    @pytest.mark.asyncio
    async def test_verify_before_request(self, gate, make_request):
        with pytest.raises(AuthorizationError) as exc_info:
            await gate.verify_code("123456", make_request())

        assert exc_info.value.reason == ReasonCode.CODE_NOT_REQUESTED

    @pytest.mark.asyncio
    async def test_valid_code_issues_bound_token(self, gate, make_request, clock):
        request = make_request()
        await gate.request_code()

        token = await gate.verify_code("123456", request)

        assert gate.state == OtpState.VERIFIED
        assert token.is_bound_to(request)
        assert token.gate == "otp"
        assert token.expires_at == clock.now + 300
        assert not token.is_expired(clock.now)

    @pytest.mark.asyncio
    async def test_invalid_code_allows_retry(self, gate, make_request):
        request = make_request()
        await gate.request_code()

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.verify_code("000000", request)

        assert exc_info.value.reason == ReasonCode.INVALID_CODE
        assert gate.state == OtpState.SENT

        token = await gate.verify_code("123456", request)
        assert token is not None

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, gate, make_request):
        request = make_request()
        await gate.request_code()
        await gate.verify_code("123456", request)

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.verify_code("123456", request)

        assert exc_info.value.reason == ReasonCode.CODE_ALREADY_USED

    @pytest.mark.asyncio
    async def test_expired_code(self, gate, make_request, clock):
        await gate.request_code()
        clock.advance(601)

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.verify_code("123456", make_request())

        assert exc_info.value.reason == ReasonCode.EXPIRED
        assert gate.state == OtpState.FAILED

    @pytest.mark.asyncio
    async def test_backend_reported_expiry(self, backend, make_request, clock):
        backend.verify_otp = AsyncMock(return_value=OtpVerification(verified=False, expired=True))
        gate = OtpGate(backend, clock=clock)
        await gate.request_code()

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.verify_code("123456", make_request())

        assert exc_info.value.reason == ReasonCode.EXPIRED
        assert gate.state == OtpState.FAILED

    @pytest.mark.asyncio
    async def test_verification_unavailable(self, gate, backend, make_request):
        await gate.request_code()
        backend.fail_next("verify_otp", httpx.ConnectError("refused"))

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.verify_code("123456", make_request())

        assert exc_info.value.reason == ReasonCode.VERIFICATION_UNAVAILABLE
        assert gate.state == OtpState.SENT

    @pytest.mark.asyncio
    async def test_token_lifetime_from_backend(self, backend, make_request, clock):
        backend.verify_otp = AsyncMock(
            return_value=OtpVerification(verified=True, token="vt_1", expires_in=120)
        )
        gate = OtpGate(backend, clock=clock)
        await gate.request_code()

        token = await gate.verify_code("123456", make_request())

        assert token.token == "vt_1"
        assert token.expires_at == clock.now + 120

    @pytest.mark.asyncio
    async def test_token_binding_differs_per_request(self, gate, make_request):
        """Test that a token issued for R1 is not bound to a different R2."""
        r1 = make_request(amount="0.5")
        r2 = make_request(amount="0.6")
        await gate.request_code()

        token = await gate.verify_code("123456", r1)

        assert token.is_bound_to(r1)
        assert not token.is_bound_to(r2)

    @pytest.mark.asyncio
    async def test_authorize_without_code(self, gate, make_request):
        await gate.request_code()

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.authorize(make_request())

        assert exc_info.value.reason == ReasonCode.INVALID_CODE

    @pytest.mark.asyncio
    async def test_reset_keeps_cooldown(self, gate):
        await gate.request_code()
        gate.reset()

        assert gate.state == OtpState.NOT_REQUESTED
        assert gate.cooldown_remaining() == 60


def purchase_request(price: str = "0.5", listing_id: str = "listing-1") -> TransferRequest:
    return TransferRequest(
        purpose=TransferPurpose.NFT_PURCHASE,
        asset_id=listing_id,
        network="ethereum",
        destination=Destination("0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"),
        amount=Decimal(price),
    )


class TestPriceLockGate:
    """Tests for the NFT purchase price lock."""

    @pytest.mark.asyncio
    async def test_price_lock_issues_token(self, backend, clock):
        gate = PriceLockGate(backend, lock_seconds=60, clock=clock)
        request = purchase_request()

        token = await gate.authorize(request)

        assert token.gate == "price_lock"
        assert token.is_bound_to(request)
        assert token.expires_at == clock.now + 60

    @pytest.mark.asyncio
    async def test_price_change_is_rejected(self, backend, clock):
        gate = PriceLockGate(backend, clock=clock)
        backend.listings["listing-1"] = Listing("Genesis #1", "ethereum", "ETH", Decimal("0.6"))

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.authorize(purchase_request("0.5"))

        assert exc_info.value.reason == ReasonCode.PRICE_CHANGED
        assert exc_info.value.details["current"] == "0.6"

    @pytest.mark.asyncio
    async def test_insufficient_balance_for_fees(self, clock):
        backend = DryRunBackend(balances={"ETH": Decimal("0.5")})
        gate = PriceLockGate(backend, clock=clock)

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.authorize(purchase_request("0.5"))

        assert exc_info.value.reason == ReasonCode.INSUFFICIENT_BALANCE

    @pytest.mark.asyncio
    async def test_listing_unavailable(self, backend, clock):
        backend.fail_next("get_purchase_estimate", BackendError("down", status_code=503))
        gate = PriceLockGate(backend, clock=clock)

        with pytest.raises(AuthorizationError) as exc_info:
            await gate.authorize(purchase_request())

        assert exc_info.value.reason == ReasonCode.VERIFICATION_UNAVAILABLE
