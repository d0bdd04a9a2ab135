"""Settlement status polling."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from transferflow.backends.base import BackendError, ExchangeBackend
from transferflow.errors import ReasonCode, SoftServiceError
from transferflow.models import OperationStatus, TransferPurpose

logger = logging.getLogger(__name__)

POLL_ERRORS = (BackendError, httpx.HTTPError, asyncio.TimeoutError)

STILL_PROCESSING_MESSAGE = "Still processing. The transfer was submitted; check its status again later."


@dataclass(frozen=True)
class StatusUpdate:
    """One successful status observation."""

    operation_id: str
    status: OperationStatus
    attempt: int
    tx_hash: Optional[str] = None
    message: str = ""


@dataclass
class PollOutcome:
    """How a polling run ended."""

    operation_id: str
    status: OperationStatus
    tx_hash: Optional[str] = None
    message: str = ""
    timed_out: bool = False
    stopped: bool = False
    advisory: Optional[SoftServiceError] = None
    attempts: int = 0
    errors: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class StatusPoller:
    """Polls an operation until it settles, the budget runs out, or stop().

    A failed status request is never read as a status: the operation keeps
    its last observed status and polling continues.
    """

    def __init__(
        self,
        backend: ExchangeBackend,
        interval: float = 2.0,
        budget: float = 300.0,
        request_timeout: float = 5.0,
    ):
        """Initialize poller.

        Args:
            backend: Exchange backend
            interval: Delay between status requests
            budget: Total polling time before giving up
            request_timeout: Timeout of one status request
        """
        self._backend = backend
        self.interval = interval
        self.budget = budget
        self.request_timeout = request_timeout
        self._stop_event = asyncio.Event()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def max_attempts(self) -> int:
        return max(1, round(self.budget / self.interval)) if self.interval > 0 else 1

    def stop(self) -> None:
        """End the current polling run immediately."""
        self._stop_event.set()

    async def poll(
        self,
        operation_id: str,
        purpose: TransferPurpose,
        on_update: Optional[Callable[[StatusUpdate], None]] = None,
    ) -> PollOutcome:
        """Poll an operation until it reaches a terminal status.

        Args:
            operation_id: Operation to poll
            purpose: Withdrawal or NFT purchase (selects the status endpoint)
            on_update: Called with every successful observation

        Returns:
            PollOutcome; timed_out outcomes keep the last non-terminal status
        """
        self._stop_event.clear()
        self._running = True
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.budget

        status = OperationStatus.PENDING
        tx_hash: Optional[str] = None
        message = ""
        attempts = 0
        errors = 0

        def outcome(**kwargs) -> PollOutcome:
            return PollOutcome(
                operation_id=operation_id,
                status=status,
                tx_hash=tx_hash,
                message=message,
                attempts=attempts,
                errors=errors,
                **kwargs,
            )

        logger.info(f"Polling {purpose.value} {operation_id} every {self.interval}s (budget {self.budget}s)")
        try:
            while True:
                if self._stop_event.is_set():
                    logger.info(f"Polling {operation_id} stopped")
                    return outcome(stopped=True)

                attempts += 1
                try:
                    report = await asyncio.wait_for(
                        self._backend.get_operation_status(operation_id, purpose),
                        timeout=self.request_timeout,
                    )
                except POLL_ERRORS as e:
                    errors += 1
                    logger.warning(
                        f"Status request {attempts} for {operation_id} failed: {type(e).__name__}: {e}"
                    )
                else:
                    observed = OperationStatus.parse(report.status)
                    tx_hash = report.tx_hash or tx_hash
                    message = report.message or message
                    if on_update is not None:
                        on_update(StatusUpdate(operation_id, observed, attempts, tx_hash, message))
                    if observed.is_terminal:
                        status = observed
                        logger.info(f"Operation {operation_id} settled: {status.value}")
                        return outcome()
                    status = observed

                if attempts >= self.max_attempts or loop.time() >= deadline:
                    break
                if await self._wait(self.interval):
                    logger.info(f"Polling {operation_id} stopped")
                    return outcome(stopped=True)

            logger.warning(
                f"Polling budget exhausted for {operation_id} after {attempts} attempts, "
                f"last status {status.value}"
            )
            return outcome(
                timed_out=True,
                advisory=SoftServiceError(ReasonCode.POLL_TIMEOUT, STILL_PROCESSING_MESSAGE),
            )
        finally:
            self._running = False

    async def _wait(self, seconds: float) -> bool:
        """Sleep, returning True if stop() was called meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False
