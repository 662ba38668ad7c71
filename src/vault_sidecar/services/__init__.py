"""Sidecar services: authentication, renewal and secret retrieval."""

from .auth_resolver import AuthResolver, AuthStatus, default_auth_methods
from .lease_registry import LeaseFile, LeaseRegistry, LeaseSnapshot
from .lease_renewer import LeaseRenewer, revoke_self
from .secret_fetcher import SecretFetcher, resolve_secret_path
from .secret_writer import SecretWriter
from .sidecar import Sidecar

__all__ = [
    "AuthResolver",
    "AuthStatus",
    "default_auth_methods",
    "LeaseFile",
    "LeaseRegistry",
    "LeaseSnapshot",
    "LeaseRenewer",
    "revoke_self",
    "SecretFetcher",
    "resolve_secret_path",
    "SecretWriter",
    "Sidecar",
]
