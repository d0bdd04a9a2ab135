"""Debounced fee estimation with last-request-wins semantics."""

import asyncio
import logging
from decimal import Decimal
from typing import Awaitable, Callable, Optional

import httpx

from transferflow.backends.base import BackendError, PurchaseEstimate, RemoteFee
from transferflow.chains import get_chain, get_fee_schedule
from transferflow.models import FeeQuote
from transferflow.utils.sequencing import RequestSequence

logger = logging.getLogger(__name__)

FeeFetch = Callable[[str, Decimal], Awaitable[RemoteFee]]
FeeFallback = Callable[[str, Decimal], RemoteFee]

# Failures that degrade to the bundled schedule instead of surfacing
FEE_FETCH_ERRORS = (BackendError, httpx.HTTPError, asyncio.TimeoutError)


def schedule_fallback(chain: str, amount: Decimal) -> RemoteFee:
    """Withdrawal fee from the bundled schedule (network fee, no platform fee)."""
    schedule = get_fee_schedule(chain)
    config = get_chain(chain)
    return RemoteFee(
        network_fee=schedule.network_fee,
        platform_fee=Decimal("0"),
        total_fee=schedule.network_fee,
        estimated_time=config.estimated_time if config else None,
    )


def purchase_fallback(platform_fee_percent: float) -> FeeFallback:
    """Build an offline NFT purchase quote: a flat percentage of the price."""
    percent = Decimal(str(platform_fee_percent))

    def fallback(chain: str, amount: Decimal) -> RemoteFee:
        platform_fee = amount * percent / Decimal("100")
        return RemoteFee(
            network_fee=Decimal("0"),
            platform_fee=platform_fee,
            total_fee=platform_fee,
        )

    return fallback


def fee_from_purchase_estimate(estimate: PurchaseEstimate) -> RemoteFee:
    """Convert a purchase estimate into a fee breakdown on top of the price."""
    return RemoteFee(
        network_fee=estimate.network_fee,
        platform_fee=estimate.platform_fee,
        total_fee=estimate.network_fee + estimate.platform_fee,
    )


class FeeEstimator:
    """Produces fee quotes for the latest requested (chain, amount) only.

    Every estimate() call supersedes all earlier ones. A superseded call
    returns None, either before touching the network (it was replaced
    during the debounce window) or on arrival (it was replaced while the
    fetch was outstanding).
    """

    def __init__(
        self,
        fetch: FeeFetch,
        fallback: FeeFallback = schedule_fallback,
        debounce_seconds: float = 0.3,
        timeout: float = 5.0,
    ):
        """Initialize estimator.

        Args:
            fetch: Remote fee source
            fallback: Offline fee source used when fetch fails
            debounce_seconds: Quiet period before a fetch is issued
            timeout: Remote fetch timeout
        """
        self._fetch = fetch
        self._fallback = fallback
        self.debounce_seconds = debounce_seconds
        self.timeout = timeout
        self._sequence = RequestSequence("fee")

    @property
    def sequence(self) -> int:
        return self._sequence.current

    def is_current(self, quote: Optional[FeeQuote]) -> bool:
        """Check that a quote answers the latest estimate() call."""
        return quote is not None and self._sequence.is_current(quote.sequence)

    def invalidate(self) -> None:
        """Drop every outstanding estimate."""
        self._sequence.invalidate()

    async def estimate(self, chain: str, amount: Decimal) -> Optional[FeeQuote]:
        """Estimate the fee for an amount.

        Args:
            chain: Fee key (chain id, or token symbol for tokens)
            amount: Amount to quote

        Returns:
            FeeQuote, or None if a newer call superseded this one
        """
        ticket = self._sequence.next()

        await asyncio.sleep(self.debounce_seconds)
        if not self._sequence.is_current(ticket):
            logger.debug(f"Fee estimate #{ticket} for {chain} superseded during debounce")
            return None

        is_fallback = False
        try:
            remote = await asyncio.wait_for(self._fetch(chain, amount), timeout=self.timeout)
        except FEE_FETCH_ERRORS as e:
            logger.warning(f"Fee estimate for {chain} unavailable ({type(e).__name__}: {e}), using default schedule")
            remote = self._fallback(chain, amount)
            is_fallback = True

        if not self._sequence.is_current(ticket):
            logger.debug(f"Dropping stale fee quote #{ticket} for {chain} {amount}")
            return None

        return FeeQuote(
            chain=chain,
            amount=amount,
            network_fee=remote.network_fee,
            platform_fee=remote.platform_fee,
            total_fee=remote.total_fee,
            is_fallback=is_fallback,
            sequence=ticket,
            estimated_time=remote.estimated_time,
        )
