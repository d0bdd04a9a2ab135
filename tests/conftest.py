"""Pytest configuration and fixtures."""

import os
from decimal import Decimal

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["BACKEND"] = "dryrun"
os.environ["API_TOKEN"] = ""

from transferflow.backends.dryrun import DryRunBackend
from transferflow.backends.factory import reset_backend
from transferflow.config import Settings, get_settings
from transferflow.flow import FlowController
from transferflow.models import Destination, TransferPurpose, TransferRequest

OTP_CODE = "123456"
ETH_ADDRESS = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
ETH_ADDRESS_LOWER = "0xabc0000000000000000000000000000000000001"


class FakeClock:
    """Manually advanced wall clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset cached settings and backend between tests."""
    get_settings.cache_clear()
    reset_backend()
    yield
    get_settings.cache_clear()
    reset_backend()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    """Settings with short timeouts so failure paths run fast."""
    return Settings(
        _env_file=None,
        fee_debounce_seconds=0.3,
        fee_timeout=0.5,
        otp_timeout=0.5,
        submit_timeout=0.5,
        request_timeout=0.5,
        poll_interval=0.01,
        poll_budget=0.2,
        poll_request_timeout=0.2,
    )


@pytest.fixture
def backend() -> DryRunBackend:
    return DryRunBackend(otp_code=OTP_CODE)


@pytest.fixture
def withdrawal_flow(backend, settings, clock):
    flow = FlowController(TransferPurpose.WITHDRAWAL, backend, settings=settings, clock=clock)
    yield flow
    flow.dispose()


@pytest.fixture
def purchase_flow(backend, settings, clock):
    flow = FlowController(TransferPurpose.NFT_PURCHASE, backend, settings=settings, clock=clock)
    yield flow
    flow.dispose()


@pytest.fixture
def make_request():
    """Factory for ETH withdrawal requests."""

    def factory(amount: str = "0.5", address: str = ETH_ADDRESS, **kwargs) -> TransferRequest:
        fields = {
            "purpose": TransferPurpose.WITHDRAWAL,
            "asset_id": "ETH",
            "network": "eth",
            "destination": Destination(address),
            "amount": Decimal(amount),
        }
        fields.update(kwargs)
        return TransferRequest(**fields)

    return factory
