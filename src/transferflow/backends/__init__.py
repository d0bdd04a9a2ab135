"""Exchange backends."""

from transferflow.backends.base import BackendError, ExchangeBackend
from transferflow.backends.factory import get_backend, reset_backend

__all__ = ["BackendError", "ExchangeBackend", "get_backend", "reset_backend"]
