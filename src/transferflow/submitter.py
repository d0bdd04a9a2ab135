"""Exactly-once submission of authorized transfers."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from transferflow.backends.base import BackendError, ExchangeBackend
from transferflow.errors import AuthorizationError, ReasonCode, SubmissionError
from transferflow.models import OperationStatus, TransferRequest, VerificationToken
from transferflow.utils.sequencing import StepGuard

logger = logging.getLogger(__name__)

_INSUFFICIENT_FUNDS_CODES = {"insufficient_funds", "insufficient_balance"}
_TOKEN_EXPIRED_CODES = {"token_expired", "otp_expired", "verification_expired", "price_lock_expired"}
_DESTINATION_CODES = {"invalid_address", "destination_invalid", "invalid_destination"}
# Request timeout and rate limiting: the request never took effect
_RETRYABLE_STATUSES = {408, 429}


@dataclass(frozen=True)
class SubmitReceipt:
    """Accepted submission."""

    operation_id: str
    status: OperationStatus
    message: str = ""


def map_backend_error(error: BackendError) -> SubmissionError:
    """Map an exchange refusal to a submission error.

    Args:
        error: Error raised by the backend

    Returns:
        SubmissionError with the matching reason
    """
    code = (error.code or "").lower()
    status = error.status_code
    message = str(error)

    if status == 402 or code in _INSUFFICIENT_FUNDS_CODES:
        return SubmissionError(ReasonCode.INSUFFICIENT_FUNDS, message or "Insufficient funds")
    if code in _TOKEN_EXPIRED_CODES:
        return SubmissionError(ReasonCode.TOKEN_EXPIRED, message or "Verification expired")
    if code in _DESTINATION_CODES:
        return SubmissionError(ReasonCode.DESTINATION_INVALID, message or "Destination rejected")
    if status is None or status >= 500 or status in _RETRYABLE_STATUSES:
        return SubmissionError(ReasonCode.NETWORK_FAILURE, message or "Exchange unavailable")
    return SubmissionError(ReasonCode.REJECTED, message or "Transfer rejected")


class TransactionSubmitter:
    """Submits a request at most once per verification token.

    A token is consumed as soon as the call is dispatched, whatever the
    outcome; a retry always needs a fresh token. Accepted requests are
    remembered so the same request_id is never accepted twice.
    """

    def __init__(
        self,
        backend: ExchangeBackend,
        timeout: float = 15.0,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self.timeout = timeout
        self._clock = clock
        self._consumed_tokens: set[str] = set()
        self._accepted: dict[str, str] = {}
        self._guard = StepGuard("submission", error_cls=SubmissionError)

    @property
    def busy(self) -> bool:
        return self._guard.busy

    @property
    def submit_count(self) -> int:
        """Number of dispatched backend calls."""
        return len(self._consumed_tokens)

    def accepted_operation(self, request: TransferRequest) -> Optional[str]:
        """Operation id of an accepted request, if any."""
        return self._accepted.get(request.request_id)

    async def submit(
        self, request: TransferRequest, token: Optional[VerificationToken]
    ) -> SubmitReceipt:
        """Submit a transfer.

        Args:
            request: Confirmed request
            token: Token issued for this request

        Returns:
            SubmitReceipt with the operation id to poll

        Raises:
            AuthorizationError: Token missing, bound elsewhere or already used
            SubmissionError: Token expired, duplicate, in flight or refused
        """
        if token is None:
            raise AuthorizationError(ReasonCode.TOKEN_MISSING, "Verification required")
        if not token.is_bound_to(request):
            logger.warning(f"Token for another request offered for {request.request_id}")
            raise AuthorizationError(ReasonCode.TOKEN_MISMATCH, "Verification does not match this transfer")
        if token.token in self._consumed_tokens:
            raise AuthorizationError(ReasonCode.TOKEN_ALREADY_USED, "Verification already used")
        if token.is_expired(self._clock()):
            raise SubmissionError(ReasonCode.TOKEN_EXPIRED, "Verification expired")
        if request.request_id in self._accepted:
            raise SubmissionError(
                ReasonCode.DUPLICATE_SUBMISSION,
                "Transfer already submitted",
                details={"operation_id": self._accepted[request.request_id]},
            )

        async with self._guard:
            self._consumed_tokens.add(token.token)
            logger.info(
                f"Submitting {request.purpose.value} {request.request_id}: "
                f"{request.amount} {request.asset_id} on {request.network}"
            )
            try:
                submission = await asyncio.wait_for(
                    self._backend.submit_transfer(request, token), timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                logger.warning(f"Submission {request.request_id} timed out after {self.timeout}s")
                raise SubmissionError(ReasonCode.NETWORK_FAILURE, "Submission timed out") from e
            except httpx.HTTPError as e:
                logger.warning(f"Submission {request.request_id} transport error: {e}")
                raise SubmissionError(ReasonCode.NETWORK_FAILURE, "Could not reach the exchange") from e
            except BackendError as e:
                mapped = map_backend_error(e)
                logger.error(f"Submission {request.request_id} refused: {mapped.reason.value} ({e})")
                raise mapped from e

        self._accepted[request.request_id] = submission.operation_id
        logger.info(f"Submission {request.request_id} accepted as {submission.operation_id}")
        return SubmitReceipt(
            operation_id=submission.operation_id,
            status=OperationStatus.parse(submission.status),
            message=submission.message,
        )
