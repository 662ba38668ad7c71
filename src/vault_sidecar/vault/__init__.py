"""Vault wire client and credential models."""

from .client import VaultClient, credential_from_lookup, lease_from_auth
from .models import AuthSession, AuthTokenLease, Credential, Lease, SecretRecord

__all__ = [
    "VaultClient",
    "AuthSession",
    "AuthTokenLease",
    "Credential",
    "Lease",
    "SecretRecord",
    "credential_from_lookup",
    "lease_from_auth",
]
