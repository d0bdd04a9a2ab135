"""Exchange backend over the REST API.

Uses httpx for all requests. Errors with a JSON body are raised as
BackendError; transport failures propagate as httpx.TransportError so the
caller can tell "refused" from "never arrived".
"""

import logging
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

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
from transferflow.backends.contracts import (
    BalancesResponse,
    ErrorResponse,
    FeeEstimateResponse,
    OtpSendRequest,
    OtpSendResponse,
    OtpVerifyRequest,
    OtpVerifyResponse,
    PurchaseEstimateResponse,
    PurchaseRequest,
    PurchaseResultResponse,
    WithdrawalCreateRequest,
    WithdrawalCreateResponse,
    WithdrawalStatusResponse,
)
from transferflow.chains import MemoKind, get_address_rules
from transferflow.models import TransferPurpose, TransferRequest, VerificationToken

logger = logging.getLogger(__name__)


class HttpExchangeBackend(ExchangeBackend):
    """Exchange backend talking JSON over HTTP."""

    def __init__(
        self,
        base_url: str,
        api_token: str = "",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize backend.

        Args:
            base_url: Exchange API base URL
            api_token: Bearer token (empty for anonymous requests)
            timeout: Per-request timeout in seconds
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout
        self._transport = transport

    @property
    def name(self) -> str:
        return "http"

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, Any]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> dict:
        async with self._client() as client:
            response = await client.request(method, path, params=params, json=body)

        if response.status_code >= 400:
            try:
                error = ErrorResponse.model_validate(response.json())
            except (ValueError, PydanticValidationError):
                error = ErrorResponse()
            message = error.text or f"HTTP error {response.status_code}"
            logger.warning(f"{method} {path} failed: {response.status_code} {message}")
            raise BackendError(message, status_code=response.status_code, code=error.code)

        try:
            return response.json()
        except ValueError as e:
            raise BackendError(
                f"Invalid JSON from {path}", status_code=response.status_code
            ) from e

    @staticmethod
    def _parse(model, data: dict, path: str):
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            logger.error(f"Unexpected response shape from {path}: {e}")
            raise BackendError(f"Unexpected response from {path}") from e

    async def get_balance(self, asset: str) -> Balance:
        path = "/api/balance/balances"
        data = self._parse(BalancesResponse, await self._request("GET", path), path)
        for item in data.balances:
            if item.token.upper() == asset.upper():
                return Balance(asset=asset.upper(), available=item.balance)
        return Balance(asset=asset.upper(), available=Decimal("0"))

    async def estimate_fee(self, chain: str, amount: Decimal) -> RemoteFee:
        path = "/api/balance/withdraw/fee"
        raw = await self._request("GET", path, params={"chain": chain, "amount": str(amount)})
        data = self._parse(FeeEstimateResponse, raw, path)
        return RemoteFee(
            network_fee=data.network_fee,
            platform_fee=data.platform_fee,
            total_fee=data.total_fee,
            estimated_time=data.estimated_time,
        )

    async def request_otp(self, purpose: TransferPurpose) -> OtpDelivery:
        path = "/api/otp/send"
        body = OtpSendRequest(purpose=purpose.value).model_dump()
        data = self._parse(OtpSendResponse, await self._request("POST", path, body=body), path)
        return OtpDelivery(message=data.message, expires_in=data.expires_in)

    async def verify_otp(self, code: str, purpose: TransferPurpose) -> OtpVerification:
        path = "/api/otp/verify"
        body = OtpVerifyRequest(code=code, purpose=purpose.value).model_dump()
        try:
            raw = await self._request("POST", path, body=body)
        except BackendError as e:
            # The exchange answers 400/410 with a code for bad or stale codes
            if e.code in ("otp_expired", "code_expired") or e.status_code == 410:
                return OtpVerification(verified=False, expired=True)
            if e.code in ("invalid_otp", "invalid_code") or e.status_code == 400:
                return OtpVerification(verified=False)
            raise
        data = self._parse(OtpVerifyResponse, raw, path)
        return OtpVerification(
            verified=data.is_verified,
            token=data.resolved_token,
            expires_in=data.expires_in,
        )

    async def submit_transfer(
        self, request: TransferRequest, token: VerificationToken
    ) -> Submission:
        if request.purpose == TransferPurpose.NFT_PURCHASE:
            path = "/api/nft/purchase"
            body = PurchaseRequest(
                listing_id=request.asset_id,
                expected_price=str(request.amount),
                delivery_address=request.destination.address,
                verification_token=token.token,
                client_reference=request.request_id,
            ).model_dump(by_alias=True)
            data = self._parse(PurchaseResultResponse, await self._request("POST", path, body=body), path)
            return Submission(operation_id=data.purchase_id, status=data.status, message=data.message)

        path = "/api/balance/withdraw"
        rules = get_address_rules(request.network)
        uses_tag = rules is not None and rules.memo_kind == MemoKind.TAG
        body = WithdrawalCreateRequest(
            chain=request.network,
            asset=request.asset_id,
            amount=str(request.amount),
            address=request.destination.address,
            memo=None if uses_tag else request.destination.memo,
            tag=request.destination.memo if uses_tag else None,
            verification_token=token.token,
            client_reference=request.request_id,
        ).model_dump(by_alias=True, exclude_none=True)
        data = self._parse(WithdrawalCreateResponse, await self._request("POST", path, body=body), path)
        return Submission(
            operation_id=data.withdrawal.id,
            status=data.withdrawal.status,
            message=data.message,
        )

    async def get_operation_status(
        self, operation_id: str, purpose: TransferPurpose
    ) -> StatusReport:
        if purpose == TransferPurpose.NFT_PURCHASE:
            path = f"/api/nft/purchase/{operation_id}"
            data = self._parse(PurchaseResultResponse, await self._request("GET", path), path)
            return StatusReport(
                operation_id=data.purchase_id,
                status=data.status,
                tx_hash=data.tx_hash,
                message=data.message,
            )

        path = f"/api/balance/withdrawals/{operation_id}"
        data = self._parse(WithdrawalStatusResponse, await self._request("GET", path), path)
        return StatusReport(
            operation_id=data.withdrawal.id,
            status=data.withdrawal.status,
            tx_hash=data.withdrawal.tx_hash,
        )

    async def get_purchase_estimate(self, listing_id: str) -> PurchaseEstimate:
        path = f"/api/nft/purchase/estimate/{listing_id}"
        data = self._parse(PurchaseEstimateResponse, await self._request("GET", path), path)
        return PurchaseEstimate(
            listing_id=data.listing_id,
            name=data.nft_name,
            chain=data.chain,
            currency=data.currency,
            price=data.price,
            platform_fee=data.platform_fee,
            network_fee=data.network_fee or Decimal("0"),
            total=data.total,
            user_balance=data.user_balance,
            has_sufficient_balance=data.has_sufficient_balance,
        )
