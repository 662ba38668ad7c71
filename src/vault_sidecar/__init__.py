"""Vault sidecar - credential bootstrap for workloads.

Authenticates to HashiCorp Vault with the first available method, fetches
the secrets a workload asked for and keeps the token alive until shutdown.
"""

__version__ = "0.1.0"

from .core.config import Settings, get_settings
from .core.exceptions import VaultSidecarError
from .core.logging import setup_logging

__all__ = [
    "__version__",
    "Settings",
    "get_settings",
    "VaultSidecarError",
    "setup_logging",
]
