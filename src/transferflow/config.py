"""Application configuration using pydantic-settings.

All timings are in seconds. Values load from environment variables or a
local .env file.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Workflow settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # Exchange backend
    # ======================
    backend: str = Field(default="dryrun", description="Exchange backend: dryrun or http")
    api_base_url: str = Field(
        default="http://127.0.0.1:8000", description="Exchange REST API base URL"
    )
    api_token: str = Field(default="", description="Bearer token for the exchange API")
    request_timeout: float = Field(default=10.0, description="HTTP client timeout")

    # ======================
    # Fee estimation
    # ======================
    fee_debounce_seconds: float = Field(
        default=0.3, ge=0.3, description="Debounce window for fee estimates"
    )
    fee_timeout: float = Field(default=5.0, description="Fee estimate request timeout")
    nft_platform_fee_percent: float = Field(
        default=2.5, description="Platform fee used for offline NFT purchase quotes"
    )

    # ======================
    # Authorization
    # ======================
    otp_timeout: float = Field(default=5.0, description="OTP request/verify timeout")
    otp_cooldown_seconds: float = Field(
        default=60.0, description="Minimum delay between OTP deliveries"
    )
    otp_code_ttl: float = Field(default=600.0, description="OTP code lifetime if not reported")
    verification_token_ttl: float = Field(
        default=300.0, description="Verification token lifetime if not reported"
    )
    price_lock_seconds: float = Field(
        default=60.0, description="Validity of an NFT purchase price lock"
    )
    dry_run_otp_code: str = Field(default="123456", description="OTP accepted by dry-run backend")

    # ======================
    # Submission & settlement
    # ======================
    submit_timeout: float = Field(default=15.0, description="Transfer submission timeout")
    poll_interval: float = Field(default=2.0, description="Status polling interval")
    poll_budget: float = Field(default=300.0, description="Total status polling budget")
    poll_request_timeout: float = Field(default=5.0, description="Single status request timeout")
    max_retries: int = Field(default=3, description="Retries allowed after a failed submission")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        data = self.model_dump()
        data["api_token"] = "***" if self.api_token else "(not set)"
        return data


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
