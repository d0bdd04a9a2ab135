"""Tests for fee estimation."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from transferflow.backends.base import BackendError, PurchaseEstimate, RemoteFee
from transferflow.fees import (
    FeeEstimator,
    fee_from_purchase_estimate,
    purchase_fallback,
    schedule_fallback,
)

DEBOUNCE = 0.3


def remote_fee(network_fee: str = "0.001") -> RemoteFee:
    fee = Decimal(network_fee)
    return RemoteFee(network_fee=fee, total_fee=fee)


class TestFeeEstimator:
    """Tests for FeeEstimator."""

    @pytest.mark.asyncio
    async def test_returns_remote_quote(self):
        """Test that a successful fetch produces a live quote."""
        fetch = AsyncMock(return_value=remote_fee("0.001"))
        estimator = FeeEstimator(fetch, debounce_seconds=DEBOUNCE)

        quote = await estimator.estimate("eth", Decimal("1.0"))

        assert quote is not None
        assert quote.total_fee == Decimal("0.001")
        assert quote.receive_amount == Decimal("0.999")
        assert not quote.is_fallback
        assert estimator.is_current(quote)
        fetch.assert_awaited_once_with("eth", Decimal("1.0"))

    @pytest.mark.asyncio
    async def test_debounce_skips_superseded_calls(self):
        """Test that calls replaced during the debounce window never hit the network."""
        fetch = AsyncMock(return_value=remote_fee())
        estimator = FeeEstimator(fetch, debounce_seconds=DEBOUNCE)

        first = asyncio.create_task(estimator.estimate("eth", Decimal("1")))
        await asyncio.sleep(0.05)
        second = asyncio.create_task(estimator.estimate("eth", Decimal("2")))

        assert await first is None
        quote = await second
        assert quote.amount == Decimal("2")
        fetch.assert_awaited_once_with("eth", Decimal("2"))

    @pytest.mark.asyncio
    async def test_newer_amount_wins_when_older_resolves_late(self):
        """Test that a slow quote for A is dropped once B was requested."""

        async def fetch(chain, amount):
            # The first amount answers slowly, the second immediately
            await asyncio.sleep(0.5 if amount == Decimal("1") else 0)
            return remote_fee("0.001")

        estimator = FeeEstimator(fetch, debounce_seconds=DEBOUNCE)

        first = asyncio.create_task(estimator.estimate("eth", Decimal("1")))
        await asyncio.sleep(DEBOUNCE + 0.1)  # A is now in flight
        second = asyncio.create_task(estimator.estimate("eth", Decimal("2")))

        results = await asyncio.gather(first, second)

        assert results[0] is None
        assert results[1].amount == Decimal("2")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            BackendError("boom", status_code=500),
            httpx.ConnectError("refused"),
        ],
    )
    async def test_failure_uses_fallback_schedule(self, error):
        """Test that fetch failures degrade to the bundled schedule."""
        fetch = AsyncMock(side_effect=error)
        estimator = FeeEstimator(fetch, debounce_seconds=DEBOUNCE)

        quote = await estimator.estimate("eth", Decimal("1"))

        assert quote.is_fallback
        assert quote.network_fee == Decimal("0.005")
        assert quote.platform_fee == Decimal("0")
        assert quote.total_fee == Decimal("0.005")

    @pytest.mark.asyncio
    async def test_timeout_uses_fallback(self):
        """Test that a slow fetch is cut off and replaced by the fallback."""

        async def slow_fetch(chain, amount):
            await asyncio.sleep(5)
            return remote_fee()

        estimator = FeeEstimator(slow_fetch, debounce_seconds=DEBOUNCE, timeout=0.05)

        quote = await estimator.estimate("btc", Decimal("0.1"))

        assert quote.is_fallback
        assert quote.network_fee == Decimal("0.0001")

    @pytest.mark.asyncio
    async def test_invalidate_drops_outstanding_calls(self):
        fetch = AsyncMock(return_value=remote_fee())
        estimator = FeeEstimator(fetch, debounce_seconds=DEBOUNCE)

        task = asyncio.create_task(estimator.estimate("eth", Decimal("1")))
        await asyncio.sleep(0.05)
        estimator.invalidate()

        assert await task is None
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quote_carries_sequence(self):
        fetch = AsyncMock(return_value=remote_fee())
        estimator = FeeEstimator(fetch, debounce_seconds=DEBOUNCE)

        quote = await estimator.estimate("eth", Decimal("1"))
        assert quote.sequence == estimator.sequence

        estimator.invalidate()
        assert not estimator.is_current(quote)


class TestFallbacks:
    """Tests for offline fee sources."""

    def test_schedule_fallback_for_token_key(self):
        fee = schedule_fallback("usdt", Decimal("100"))
        assert fee.total_fee == Decimal("1")

    def test_schedule_fallback_unknown_key_uses_default(self):
        fee = schedule_fallback("zzz", Decimal("1"))
        assert fee.total_fee == Decimal("0.001")

    def test_schedule_fallback_reports_estimated_time(self):
        assert schedule_fallback("btc", Decimal("1")).estimated_time == "~30 seconds"

    def test_purchase_fallback_is_percentage_of_price(self):
        fee = purchase_fallback(2.5)("ethereum", Decimal("2"))

        assert fee.platform_fee == Decimal("0.05")
        assert fee.total_fee == Decimal("0.05")
        assert fee.network_fee == Decimal("0")

    def test_fee_from_purchase_estimate(self):
        estimate = PurchaseEstimate(
            listing_id="l1",
            name="Test",
            chain="ethereum",
            currency="ETH",
            price=Decimal("1"),
            platform_fee=Decimal("0.025"),
            network_fee=Decimal("0.002"),
            total=Decimal("1.027"),
            user_balance=Decimal("2"),
            has_sufficient_balance=True,
        )

        fee = fee_from_purchase_estimate(estimate)

        assert fee.total_fee == Decimal("0.027")
