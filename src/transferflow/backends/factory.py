"""Backend factory for creating the exchange backend."""

from transferflow.backends.base import ExchangeBackend
from transferflow.backends.dryrun import DryRunBackend
from transferflow.backends.http import HttpExchangeBackend
from transferflow.config import get_settings

# Singleton instance
_backend_instance: ExchangeBackend | None = None


def get_backend() -> ExchangeBackend:
    """Get the configured exchange backend.

    Backend is selected based on BACKEND environment variable:
    - dryrun (default): Simulated exchange for testing
    - http: Exchange REST API

    Returns:
        Configured ExchangeBackend instance
    """
    global _backend_instance

    if _backend_instance is not None:
        return _backend_instance

    settings = get_settings()
    backend_name = settings.backend.lower()

    if backend_name == "http":
        _backend_instance = HttpExchangeBackend(
            base_url=settings.api_base_url,
            api_token=settings.api_token,
            timeout=settings.request_timeout,
        )
    else:
        # Default to dry-run
        _backend_instance = DryRunBackend(otp_code=settings.dry_run_otp_code)

    return _backend_instance


def reset_backend() -> None:
    """Reset backend instance (useful for testing)."""
    global _backend_instance
    _backend_instance = None
