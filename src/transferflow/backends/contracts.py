"""Wire contracts for the exchange REST API.

The exchange speaks camelCase JSON with decimal amounts as strings; these
models parse responses and build request bodies for HttpExchangeBackend.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class BalanceItem(_WireModel):
    """One balance row."""

    chain: str = Field(default="", description="Chain id")
    token: str = Field(..., description="Asset symbol")
    balance: Decimal = Field(default=Decimal("0"), description="Available balance")


class BalancesResponse(_WireModel):
    """Response of GET /api/balance/balances."""

    balances: list[BalanceItem] = Field(default_factory=list)


class FeeEstimateResponse(_WireModel):
    """Response of GET /api/balance/withdraw/fee."""

    chain: str = Field(default="")
    network_fee: Decimal = Field(..., alias="networkFee")
    platform_fee: Decimal = Field(default=Decimal("0"), alias="platformFee")
    total_fee: Decimal = Field(..., alias="totalFee")
    estimated_time: Optional[str] = Field(None, alias="estimatedTime")


class OtpSendRequest(_WireModel):
    """Body of POST /api/otp/send."""

    purpose: str


class OtpSendResponse(_WireModel):
    """Response of POST /api/otp/send."""

    message: str = Field(default="")
    expires_in: Optional[float] = Field(None, alias="expiresIn")


class OtpVerifyRequest(_WireModel):
    """Body of POST /api/otp/verify."""

    code: str
    purpose: str


class OtpVerifyResponse(_WireModel):
    """Response of POST /api/otp/verify.

    Older deployments answer {verified, token}; newer ones
    {message, verificationToken, expiresIn}.
    """

    verified: Optional[bool] = Field(None)
    token: Optional[str] = Field(None)
    verification_token: Optional[str] = Field(None, alias="verificationToken")
    expires_in: Optional[float] = Field(None, alias="expiresIn")
    message: str = Field(default="")

    @property
    def resolved_token(self) -> Optional[str]:
        return self.verification_token or self.token

    @property
    def is_verified(self) -> bool:
        if self.verified is not None:
            return self.verified and bool(self.resolved_token)
        return bool(self.resolved_token)


class WithdrawalCreateRequest(_WireModel):
    """Body of POST /api/balance/withdraw."""

    chain: str
    asset: str
    amount: str
    address: str
    memo: Optional[str] = None
    tag: Optional[str] = None
    verification_token: str = Field(..., serialization_alias="verificationToken")
    client_reference: str = Field(..., serialization_alias="clientReference")


class WithdrawalRecord(_WireModel):
    """A withdrawal as reported by the exchange."""

    id: str
    status: str = Field(default="pending")
    amount: Optional[Decimal] = Field(None)
    fee: Optional[Decimal] = Field(None)
    net_amount: Optional[Decimal] = Field(None, alias="netAmount")
    tx_hash: Optional[str] = Field(None, alias="txHash")
    created_at: Optional[str] = Field(None, alias="createdAt")


class WithdrawalCreateResponse(_WireModel):
    """Response of POST /api/balance/withdraw."""

    message: str = Field(default="")
    withdrawal: WithdrawalRecord


class WithdrawalStatusResponse(_WireModel):
    """Response of GET /api/balance/withdrawals/{id}."""

    withdrawal: WithdrawalRecord


class PurchaseRequest(_WireModel):
    """Body of POST /api/nft/purchase."""

    listing_id: str = Field(..., serialization_alias="listingId")
    expected_price: str = Field(..., serialization_alias="expectedPrice")
    delivery_address: str = Field(..., serialization_alias="deliveryAddress")
    verification_token: str = Field(..., serialization_alias="verificationToken")
    client_reference: str = Field(..., serialization_alias="clientReference")


class PurchaseEstimateResponse(_WireModel):
    """Response of GET /api/nft/purchase/estimate/{listingId}."""

    listing_id: str = Field(..., alias="listingId")
    nft_name: str = Field(default="", alias="nftName")
    price: Decimal
    platform_fee: Decimal = Field(default=Decimal("0"), alias="platformFee")
    platform_fee_percent: Optional[float] = Field(None, alias="platformFeePercent")
    network_fee: Optional[Decimal] = Field(None, alias="networkFee")
    total: Decimal
    currency: str
    chain: str
    user_balance: Decimal = Field(default=Decimal("0"), alias="userBalance")
    has_sufficient_balance: bool = Field(default=False, alias="hasSufficientBalance")


class PurchaseResultResponse(_WireModel):
    """Response of POST /api/nft/purchase and GET /api/nft/purchase/{id}."""

    purchase_id: str = Field(..., alias="purchaseId")
    status: str = Field(default="pending")
    message: str = Field(default="")
    tx_hash: Optional[str] = Field(None, alias="txHash")


class ErrorResponse(_WireModel):
    """Error body returned with non-2xx responses."""

    error: Optional[str] = Field(None)
    message: Optional[str] = Field(None)
    code: Optional[str] = Field(None)

    @property
    def text(self) -> str:
        return self.error or self.message or ""
