"""Core functionality for the Vault sidecar."""

from .config import SecretRequest, Settings, get_settings, load_secret_requests
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    PermissionDeniedError,
    RetryCancelledError,
    RetryTimeoutError,
    SecretFetchError,
    VaultSidecarError,
)
from .logging import get_logger, setup_logging
from .retry import RetryOutcome, RetryPolicy

__all__ = [
    "Settings",
    "SecretRequest",
    "get_settings",
    "load_secret_requests",
    "VaultSidecarError",
    "ConfigurationError",
    "AuthenticationError",
    "PermissionDeniedError",
    "RetryTimeoutError",
    "RetryCancelledError",
    "SecretFetchError",
    "get_logger",
    "setup_logging",
    "RetryOutcome",
    "RetryPolicy",
]
