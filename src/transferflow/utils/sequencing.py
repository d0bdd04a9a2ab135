"""Request ordering utilities.

Provides single-flight guards for steps that must never run concurrently
(OTP delivery, verification, submission) and sequence counters for
last-request-wins matching of asynchronous responses.
"""

import asyncio
import logging
from typing import Optional

from transferflow.errors import FlowError, ReasonCode, ValidationError

logger = logging.getLogger(__name__)


class StepGuard:
    """Async context manager that rejects re-entry instead of queueing.

    A second caller entering while the first is still inside gets an
    immediate error; nothing waits behind the lock, so a duplicate request
    is never sent after the first resolves.

    Example:
        guard = StepGuard("otp_request", error_cls=AuthorizationError)
        async with guard:
            await backend.request_otp("withdrawal")
    """

    def __init__(
        self,
        operation: str,
        error_cls: type[FlowError] = ValidationError,
    ):
        """Initialize the guard.

        Args:
            operation: Description of the guarded operation for logging
            error_cls: FlowError subclass raised on re-entry
        """
        self.operation = operation
        self.error_cls = error_cls
        self._lock = asyncio.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def __aenter__(self) -> "StepGuard":
        """Acquire the guard or fail fast."""
        if self._lock.locked():
            logger.warning(f"Rejected concurrent {self.operation}: previous request still outstanding")
            raise self.error_cls(
                ReasonCode.REQUEST_IN_FLIGHT,
                f"A {self.operation} request is already in progress",
            )
        await self._lock.acquire()
        logger.debug(f"Guard acquired: {self.operation}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Release the guard."""
        self._lock.release()
        logger.debug(f"Guard released: {self.operation}")
        return False


class RequestSequence:
    """Monotonic counter for last-request-wins matching.

    Each issued request takes a ticket; a response is applied only if its
    ticket is still the latest one. invalidate() makes every outstanding
    ticket stale at once.
    """

    def __init__(self, name: str = "request"):
        self.name = name
        self._current = 0

    @property
    def current(self) -> int:
        return self._current

    def next(self) -> int:
        """Issue a new ticket, superseding all previous ones."""
        self._current += 1
        return self._current

    def is_current(self, ticket: Optional[int]) -> bool:
        return ticket is not None and ticket == self._current

    def invalidate(self) -> None:
        """Drop every outstanding ticket."""
        self._current += 1
        logger.debug(f"{self.name} sequence invalidated at {self._current}")
