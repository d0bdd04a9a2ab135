"""Transfer flow state machine.

Select -> Configure -> Verify -> Confirm -> Settling -> Success | Error,
with Cancelled reachable from every step before Settling.

The controller owns the FlowState and is the only writer. Every async
action captures the flow generation when it starts; results arriving after
cancel(), dispose() or a step change that bumped the generation are
dropped.
"""

import asyncio
import copy
import logging
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import Callable, Optional

from transferflow.authorization import GATE_ERRORS, AuthorizationGate, OtpGate, PriceLockGate
from transferflow.backends.base import ExchangeBackend, PurchaseEstimate, RemoteFee
from transferflow.backends.factory import get_backend
from transferflow.chains import get_asset
from transferflow.config import Settings, get_settings
from transferflow.errors import (
    AuthorizationError,
    FlowError,
    ReasonCode,
    SettlementError,
    SoftServiceError,
    ValidationError,
)
from transferflow.fees import (
    FeeEstimator,
    fee_from_purchase_estimate,
    purchase_fallback,
    schedule_fallback,
)
from transferflow.models import (
    Destination,
    FeeQuote,
    FlowState,
    FlowStep,
    FormData,
    OperationStatus,
    TransferPurpose,
    TransferRequest,
    VerificationToken,
)
from transferflow.poller import PollOutcome, StatusPoller, StatusUpdate
from transferflow.submitter import TransactionSubmitter
from transferflow.utils.sequencing import RequestSequence, StepGuard
from transferflow.validation import (
    AddressCheck,
    AddressValidator,
    parse_amount,
    validate_amount,
    validate_purchase_total,
)

logger = logging.getLogger(__name__)

_SETTLEMENT_REASONS = {
    OperationStatus.FAILED: (ReasonCode.OPERATION_FAILED, "The transfer failed"),
    OperationStatus.REFUNDED: (ReasonCode.OPERATION_REFUNDED, "The transfer was refunded"),
    OperationStatus.CANCELLED: (ReasonCode.OPERATION_CANCELLED, "The transfer was cancelled"),
}

# Submission reasons retried from Verify with the same request
_RETRY_TO_VERIFY = {ReasonCode.NETWORK_FAILURE, ReasonCode.TOKEN_EXPIRED}
_RETRY_TO_CONFIGURE = {ReasonCode.INSUFFICIENT_FUNDS}


class FlowController:
    """Drives one withdrawal or NFT purchase from selection to settlement."""

    def __init__(
        self,
        purpose: TransferPurpose,
        backend: ExchangeBackend,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
        validator: Optional[AddressValidator] = None,
        fee_estimator: Optional[FeeEstimator] = None,
        gate: Optional[AuthorizationGate] = None,
        submitter: Optional[TransactionSubmitter] = None,
        poller: Optional[StatusPoller] = None,
    ):
        """Initialize controller.

        Args:
            purpose: Withdrawal or NFT purchase
            backend: Exchange backend
            settings: Settings (defaults to get_settings())
            clock: Wall clock used for token lifetimes
            validator: Address validator
            fee_estimator: Fee estimator (built from the backend by default)
            gate: Authorization gate (OTP for withdrawals, price lock for purchases)
            submitter: Transaction submitter
            poller: Status poller
        """
        self.purpose = purpose
        self._backend = backend
        self._settings = settings or get_settings()
        self._clock = clock
        s = self._settings

        self._validator = validator or AddressValidator()
        self._fees = fee_estimator or self._build_fee_estimator()
        self._gate = gate or self._build_gate()
        self._submitter = submitter or TransactionSubmitter(backend, timeout=s.submit_timeout, clock=clock)
        self._poller = poller or StatusPoller(
            backend,
            interval=s.poll_interval,
            budget=s.poll_budget,
            request_timeout=s.poll_request_timeout,
        )

        self._state = FlowState(purpose=purpose)
        self._generation = RequestSequence("flow")
        self._generation.next()
        self._action_guard = StepGuard("flow action")
        self._fee_tasks: set[asyncio.Task] = set()
        self._disposed = False

    def _build_fee_estimator(self) -> FeeEstimator:
        s = self._settings
        if self.purpose == TransferPurpose.NFT_PURCHASE:
            return FeeEstimator(
                self._fetch_purchase_fee,
                fallback=purchase_fallback(s.nft_platform_fee_percent),
                debounce_seconds=s.fee_debounce_seconds,
                timeout=s.fee_timeout,
            )
        return FeeEstimator(
            self._fetch_withdrawal_fee,
            debounce_seconds=s.fee_debounce_seconds,
            timeout=s.fee_timeout,
        )

    def _build_gate(self) -> AuthorizationGate:
        s = self._settings
        if self.purpose == TransferPurpose.NFT_PURCHASE:
            return PriceLockGate(
                self._backend,
                lock_seconds=s.price_lock_seconds,
                timeout=s.otp_timeout,
                clock=self._clock,
            )
        return OtpGate(
            self._backend,
            purpose=self.purpose,
            cooldown_seconds=s.otp_cooldown_seconds,
            timeout=s.otp_timeout,
            code_ttl=s.otp_code_ttl,
            token_ttl=s.verification_token_ttl,
            clock=self._clock,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> FlowState:
        """Snapshot of the flow state."""
        return copy.deepcopy(self._state)

    @property
    def step(self) -> FlowStep:
        return self._state.step

    @property
    def busy(self) -> bool:
        return self._state.busy is not None or self._submitter.busy

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def gate(self) -> AuthorizationGate:
        return self._gate

    @property
    def submitter(self) -> TransactionSubmitter:
        return self._submitter

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, action: str, *steps: FlowStep) -> None:
        if self._disposed:
            raise ValidationError(ReasonCode.INVALID_STEP, "Flow has been disposed")
        if self._state.step not in steps:
            raise ValidationError(
                ReasonCode.INVALID_STEP,
                f"Cannot {action} in step {self._state.step.value}",
            )

    def _transition(self, step: FlowStep) -> None:
        previous = self._state.step
        self._state.step = step
        logger.info(f"{self.purpose.value} flow: {previous.value} -> {step.value}")

    def _is_live(self, generation: int) -> bool:
        return not self._disposed and self._generation.is_current(generation)

    def _reset_to_select(self) -> None:
        self._fees.invalidate()
        self._cancel_fee_tasks()
        self._gate.reset()
        self._generation.next()
        previous = self._state.step
        self._state = FlowState(purpose=self.purpose)
        logger.info(f"{self.purpose.value} flow: {previous.value} -> {FlowStep.SELECT.value}")

    def _cancel_fee_tasks(self) -> None:
        for task in list(self._fee_tasks):
            task.cancel()
        self._fee_tasks.clear()

    @asynccontextmanager
    async def _busy(self, action: str):
        async with self._action_guard:
            self._state.busy = action
            try:
                yield
            finally:
                self._state.busy = None

    async def _fetch_withdrawal_fee(self, chain: str, amount: Decimal) -> RemoteFee:
        return await self._backend.estimate_fee(chain, amount)

    async def _fetch_purchase_fee(self, chain: str, amount: Decimal) -> RemoteFee:
        estimate = await self._backend.get_purchase_estimate(self._state.form.asset_id)
        return fee_from_purchase_estimate(estimate)

    async def _load_listing(self, listing_id: str) -> PurchaseEstimate:
        try:
            return await asyncio.wait_for(
                self._backend.get_purchase_estimate(listing_id),
                timeout=self._settings.request_timeout,
            )
        except GATE_ERRORS as e:
            logger.warning(f"Listing {listing_id} unavailable: {type(e).__name__}: {e}")
            raise SoftServiceError(
                ReasonCode.LISTING_UNAVAILABLE, "Could not load the listing, try again"
            ) from e

    async def _load_balance(self, asset: str) -> Optional[Decimal]:
        try:
            balance = await asyncio.wait_for(
                self._backend.get_balance(asset), timeout=self._settings.request_timeout
            )
        except GATE_ERRORS as e:
            logger.warning(f"Balance for {asset} unavailable: {type(e).__name__}: {e}")
            return None
        return balance.available

    # ------------------------------------------------------------------
    # Select / Configure
    # ------------------------------------------------------------------

    async def select_asset(self, asset_id: str) -> FlowState:
        """Select the asset to withdraw, or the NFT listing to buy.

        Resets every input. Select and Configure -> Configure.
        """
        self._require("select an asset", FlowStep.SELECT, FlowStep.CONFIGURE)

        async with self._busy("select_asset"):
            self._fees.invalidate()
            self._cancel_fee_tasks()
            self._gate.reset()
            generation = self._generation.next()

            form = FormData(asset_id=asset_id)
            quote: Optional[FeeQuote] = None

            if self.purpose == TransferPurpose.NFT_PURCHASE:
                listing = await self._load_listing(asset_id)
                form.network = listing.chain
                form.fee_key = listing.chain
                form.amount = str(listing.price)
                form.currency = listing.currency
                form.available = listing.user_balance
                quote = FeeQuote(
                    chain=listing.chain,
                    amount=listing.price,
                    network_fee=listing.network_fee,
                    platform_fee=listing.platform_fee,
                    total_fee=listing.network_fee + listing.platform_fee,
                    sequence=self._fees.sequence,
                )
            else:
                asset = get_asset(asset_id)
                if asset is None:
                    raise ValidationError(ReasonCode.UNSUPPORTED_ASSET, f"Unsupported asset: {asset_id}")
                form.asset_id = asset.symbol
                form.network = asset.chain
                form.fee_key = asset.fee_key
                form.currency = asset.symbol
                form.available = await self._load_balance(asset.symbol)

            if self._is_live(generation):
                previous = self._state.step
                self._state = FlowState(
                    purpose=self.purpose,
                    step=FlowStep.CONFIGURE,
                    form=form,
                    last_fee_quote=quote,
                    busy=self._state.busy,
                )
                logger.info(f"{self.purpose.value} flow: {previous.value} -> configure ({form.asset_id})")
            else:
                logger.debug(f"Dropping late selection of {asset_id}")
        return self.state

    def set_address(self, address: str, memo: Optional[str] = None) -> AddressCheck:
        """Update the destination and re-validate it."""
        self._require("edit the destination", FlowStep.CONFIGURE)
        form = self._state.form
        form.address = address or ""
        form.memo = memo.strip() if memo and memo.strip() else None

        check = self._validator.validate(form.network or "", form.address, form.memo)
        errors = self._state.validation_errors
        errors.pop("address", None)
        errors.pop("memo", None)
        if not check.valid:
            errors[check.field] = check.error
        return check

    def set_amount(self, amount) -> Optional[ReasonCode]:
        """Update the withdrawal amount, validate it and schedule a fee refresh.

        Must be called from a running event loop.
        """
        self._require("edit the amount", FlowStep.CONFIGURE)
        if self.purpose == TransferPurpose.NFT_PURCHASE:
            raise ValidationError(ReasonCode.INVALID_STEP, "The purchase amount is set by the listing")

        form = self._state.form
        form.amount = str(amount) if amount is not None else ""
        parsed, reason = validate_amount(form.amount, get_asset(form.asset_id or ""), form.available)

        if reason is None:
            self._state.validation_errors.pop("amount", None)
        else:
            self._state.validation_errors["amount"] = reason

        quote = self._state.last_fee_quote
        if quote is not None and quote.amount != parsed:
            self._state.last_fee_quote = None

        if parsed is not None and parsed > 0:
            task = asyncio.get_running_loop().create_task(self.refresh_fee())
            self._fee_tasks.add(task)
            task.add_done_callback(self._fee_tasks.discard)
        return reason

    async def refresh_fee(self) -> Optional[FeeQuote]:
        """Quote the fee for the current inputs.

        Returns:
            The applied quote, or None if it was superseded or dropped
        """
        if self._disposed or self._state.step != FlowStep.CONFIGURE:
            return None
        form = self._state.form
        amount = parse_amount(form.amount)
        if amount is None or amount <= 0 or not form.fee_key:
            return None

        generation = self._generation.current
        quote = await self._fees.estimate(form.fee_key, amount)
        if quote is None:
            return None

        current = self._state.form
        if (
            not self._is_live(generation)
            or not self._fees.is_current(quote)
            or self._state.step != FlowStep.CONFIGURE
            or current.fee_key != quote.chain
            or parse_amount(current.amount) != quote.amount
        ):
            logger.debug(f"Dropping fee quote #{quote.sequence} for {quote.chain} {quote.amount}")
            return None

        self._state.last_fee_quote = quote
        if quote.is_fallback:
            self._state.advisory = SoftServiceError(
                ReasonCode.FEE_ESTIMATE_UNAVAILABLE,
                "Live fee unavailable, showing the standard fee",
            )
        elif self._state.advisory is not None and self._state.advisory.reason == ReasonCode.FEE_ESTIMATE_UNAVAILABLE:
            self._state.advisory = None

        errors = self._state.validation_errors
        if self.purpose == TransferPurpose.WITHDRAWAL:
            if quote.receive_amount <= 0 and "amount" not in errors:
                errors["amount"] = ReasonCode.FEE_EXCEEDS_AMOUNT
            elif quote.receive_amount > 0 and errors.get("amount") == ReasonCode.FEE_EXCEEDS_AMOUNT:
                errors.pop("amount")
        return quote

    def proceed(self) -> TransferRequest:
        """Configure -> Verify.

        Raises:
            ValidationError: With every failing field in validation_errors
        """
        self._require("proceed", FlowStep.CONFIGURE)
        form = self._state.form
        errors: dict[str, ReasonCode] = {}

        check = self._validator.validate(form.network or "", form.address, form.memo)
        if not check.valid:
            errors[check.field] = check.error

        quote = self._state.last_fee_quote
        if self.purpose == TransferPurpose.WITHDRAWAL:
            amount, reason = validate_amount(form.amount, get_asset(form.asset_id or ""), form.available)
            if reason is not None:
                errors["amount"] = reason
            else:
                if quote is not None and quote.amount == amount:
                    fee = quote.total_fee
                else:
                    # Quote still pending: hold the amount to the bundled schedule
                    fee = schedule_fallback(form.fee_key or "", amount).total_fee
                if amount - fee <= 0:
                    errors["amount"] = ReasonCode.FEE_EXCEEDS_AMOUNT
        else:
            amount = parse_amount(form.amount) or Decimal("0")
            total = quote.total_cost if quote is not None else amount
            reason = validate_purchase_total(amount, total, form.available)
            if reason is not None:
                errors["amount"] = reason

        if errors:
            self._state.validation_errors = errors
            summary = ", ".join(f"{field}={code.value}" for field, code in errors.items())
            logger.info(f"Proceed blocked: {summary}")
            first = next(iter(errors.values()))
            raise ValidationError(
                first,
                details={"errors": {field: code.value for field, code in errors.items()}},
            )

        request = TransferRequest(
            purpose=self.purpose,
            asset_id=form.asset_id,
            network=form.network,
            destination=Destination(form.address.strip(), form.memo),
            amount=amount,
        )
        self._state.validation_errors = {}
        self._state.request = request
        self._state.verification_token = None
        self._transition(FlowStep.VERIFY)
        return request

    # ------------------------------------------------------------------
    # Verify / Confirm
    # ------------------------------------------------------------------

    async def request_code(self):
        """Send an OTP for the current request (withdrawals only)."""
        self._require("request a code", FlowStep.VERIFY)
        if not isinstance(self._gate, OtpGate):
            raise ValidationError(ReasonCode.INVALID_STEP, "This flow does not use verification codes")

        async with self._busy("request_code"):
            delivery = await self._gate.request_code()
        self._state.validation_errors.pop("code", None)
        return delivery

    async def authorize(self, code: Optional[str] = None) -> Optional[VerificationToken]:
        """Verify -> Confirm once the gate issues a token for the request."""
        self._require("authorize", FlowStep.VERIFY)
        request = self._state.request
        generation = self._generation.current

        async with self._busy("authorize"):
            try:
                token = await self._gate.authorize(request, code)
            except AuthorizationError as e:
                if self._is_live(generation):
                    self._state.validation_errors["code"] = e.reason
                raise

        if not self._is_live(generation) or self._state.request is not request:
            logger.debug(f"Dropping late token for request {request.request_id}")
            return None
        if not token.is_bound_to(request):
            raise AuthorizationError(ReasonCode.TOKEN_MISMATCH, "Verification does not match this transfer")
        if token.is_expired(self._clock()):
            raise AuthorizationError(ReasonCode.EXPIRED, "Verification expired")

        self._state.validation_errors.pop("code", None)
        self._state.verification_token = token
        self._transition(FlowStep.CONFIRM)
        return token

    async def confirm(self) -> FlowState:
        """Confirm -> Settling, exactly once; then poll to a result.

        Submission and settlement failures are recorded in the state, not
        raised: check step, submission_error and advisory on the result.
        """
        if self._state.step == FlowStep.SETTLING:
            raise ValidationError(ReasonCode.SUBMISSION_IN_FLIGHT, "Transfer already submitted")
        self._require("confirm", FlowStep.CONFIRM)

        request = self._state.request
        token = self._state.verification_token
        if token is None or token.is_expired(self._clock()):
            self._state.verification_token = None
            self._transition(FlowStep.VERIFY)
            reason = ReasonCode.TOKEN_MISSING if token is None else ReasonCode.EXPIRED
            raise AuthorizationError(reason, "Verify the transfer again")

        generation = self._generation.current
        self._transition(FlowStep.SETTLING)
        self._state.busy = "confirm"
        try:
            receipt = await self._submitter.submit(request, token)
        except FlowError as e:
            self._state.busy = None
            if self._is_live(generation):
                self._state.verification_token = None
                self._state.submission_error = e
                self._transition(FlowStep.ERROR)
            return self.state
        finally:
            self._state.busy = None

        if not self._is_live(generation):
            return self.state

        self._state.verification_token = None
        self._state.operation_id = receipt.operation_id
        self._state.operation_status = receipt.status
        if receipt.status.is_terminal:
            self._apply_outcome(PollOutcome(operation_id=receipt.operation_id, status=receipt.status))
            return self.state
        return await self._poll(generation)

    async def resume_polling(self) -> FlowState:
        """Keep polling an operation whose status is still unknown."""
        self._require("resume polling", FlowStep.SETTLING)
        if self._poller.running or self._state.busy is not None:
            raise ValidationError(ReasonCode.REQUEST_IN_FLIGHT, "Status is already being checked")
        if self._state.operation_id is None:
            raise ValidationError(ReasonCode.INVALID_STEP, "Nothing was submitted yet")

        self._state.advisory = None
        return await self._poll(self._generation.current)

    async def _poll(self, generation: int) -> FlowState:
        def on_update(update: StatusUpdate) -> None:
            if self._is_live(generation) and not update.status.is_terminal:
                self._state.operation_status = update.status
                self._state.tx_hash = update.tx_hash or self._state.tx_hash

        outcome = await self._poller.poll(self._state.operation_id, self.purpose, on_update)
        if self._is_live(generation):
            self._apply_outcome(outcome)
        return self.state

    def _apply_outcome(self, outcome: PollOutcome) -> None:
        if outcome.stopped:
            return
        self._state.tx_hash = outcome.tx_hash or self._state.tx_hash

        if outcome.timed_out:
            self._state.operation_status = outcome.status
            self._state.advisory = outcome.advisory
            logger.warning(f"Operation {outcome.operation_id} still {outcome.status.value} after polling budget")
            return

        self._state.operation_status = outcome.status
        self._state.advisory = None
        if outcome.status == OperationStatus.COMPLETED:
            self._transition(FlowStep.SUCCESS)
            return

        reason, message = _SETTLEMENT_REASONS[outcome.status]
        self._state.submission_error = SettlementError(
            reason,
            outcome.message or message,
            details={"operation_id": outcome.operation_id},
        )
        self._transition(FlowStep.ERROR)

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def go_back(self) -> FlowState:
        """Step back one step: Configure -> Select, Verify -> Configure, Confirm -> Verify."""
        self._require("go back", FlowStep.CONFIGURE, FlowStep.VERIFY, FlowStep.CONFIRM)
        step = self._state.step

        if step == FlowStep.CONFIGURE:
            self._reset_to_select()
            return self.state

        self._generation.next()
        self._state.verification_token = None
        self._state.validation_errors.pop("code", None)
        if step == FlowStep.VERIFY:
            self._state.request = None
            self._transition(FlowStep.CONFIGURE)
        else:
            self._transition(FlowStep.VERIFY)
        return self.state

    def cancel(self) -> FlowState:
        """Abandon the flow. Not possible once the transfer was submitted."""
        if self._disposed:
            raise ValidationError(ReasonCode.INVALID_STEP, "Flow has been disposed")
        step = self._state.step
        if step == FlowStep.SETTLING:
            raise ValidationError(ReasonCode.INVALID_STEP, "The transfer was submitted and cannot be cancelled")
        if step in (FlowStep.SUCCESS, FlowStep.CANCELLED):
            raise ValidationError(ReasonCode.INVALID_STEP, f"Cannot cancel in step {step.value}")

        self._fees.invalidate()
        self._cancel_fee_tasks()
        self._gate.reset()
        self._generation.next()
        self._state.request = None
        self._state.verification_token = None
        self._transition(FlowStep.CANCELLED)
        return self.state

    async def retry(self) -> FlowState:
        """Recover from Error according to the recorded reason."""
        self._require("retry", FlowStep.ERROR)
        error = self._state.submission_error
        reason = error.reason if error is not None else None

        if self._state.retries >= self._settings.max_retries:
            logger.warning(f"Retry limit reached after {self._state.retries} retries")
            self._reset_to_select()
            self._state.advisory = ValidationError(
                ReasonCode.RETRY_LIMIT_REACHED, "Too many attempts, start a new transfer"
            )
            return self.state

        if reason in _RETRY_TO_VERIFY:
            self._state.retries += 1
            self._state.submission_error = None
            self._state.verification_token = None
            self._generation.next()
            self._transition(FlowStep.VERIFY)
            return self.state

        if reason in _RETRY_TO_CONFIGURE:
            self._state.retries += 1
            self._state.submission_error = None
            self._state.verification_token = None
            self._state.request = None
            generation = self._generation.next()
            self._transition(FlowStep.CONFIGURE)
            available = await self._reload_available()
            if self._is_live(generation):
                self._state.form.available = available
            return self.state

        self._reset_to_select()
        return self.state

    async def _reload_available(self) -> Optional[Decimal]:
        form = self._state.form
        if self.purpose == TransferPurpose.NFT_PURCHASE:
            try:
                return (await self._load_listing(form.asset_id)).user_balance
            except SoftServiceError:
                return None
        return await self._load_balance(form.asset_id)

    def dispose(self) -> None:
        """Stop all background work; later results are ignored."""
        if self._disposed:
            return
        self._disposed = True
        self._poller.stop()
        self._fees.invalidate()
        self._cancel_fee_tasks()
        self._generation.invalidate()
        logger.info(f"{self.purpose.value} flow disposed in step {self._state.step.value}")


def create_flow(
    purpose: TransferPurpose,
    backend: Optional[ExchangeBackend] = None,
    settings: Optional[Settings] = None,
    clock: Callable[[], float] = time.time,
) -> FlowController:
    """Create a flow wired to the configured backend and settings."""
    return FlowController(purpose, backend or get_backend(), settings=settings, clock=clock)
