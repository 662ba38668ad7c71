"""Data models for Vault credentials, leases and secrets."""

import asyncio
import time
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from .client import VaultClient


class Lease(BaseModel):
    """A time-bounded grant attached to a token or secret by Vault."""

    id: str = Field(default="", description="Lease ID, or token accessor for auth leases")
    ttl: int = Field(default=0, ge=0, description="Seconds to live from issue")
    renewable: bool = Field(default=False)
    period: int = Field(
        default=0, ge=0, description="Full renewal period (creation TTL), 0 when unknown"
    )
    issued_at: float = Field(default_factory=time.time)

    @property
    def expires_at(self) -> float:
        """Calculate when the lease expires."""
        return self.issued_at + self.ttl

    def seconds_remaining(self, now: float | None = None) -> float:
        return max(0.0, self.expires_at - (time.time() if now is None else now))


class Credential(BaseModel):
    """A bearer token with its lease (if Vault attached one)."""

    model_config = {"frozen": True}

    token: str = Field(min_length=1, repr=False)
    lease: Lease | None = None

    def with_lease(self, lease: Lease) -> "Credential":
        return self.model_copy(update={"lease": lease})


class AuthTokenLease(BaseModel):
    """Registry entry for the auth token; persisted so a restart can reuse it."""

    token: str = Field(default="", repr=False)
    lease: Lease | None = None


class SecretRecord(BaseModel):
    """A fetched secret and its lease (None for static KV values)."""

    path: str
    data: dict[str, Any] = Field(default_factory=dict)
    lease: Lease | None = None
    warnings: list[str] = Field(default_factory=list)


class AuthSession:
    """An authenticated Vault connection.

    Holds the client and the current credential. Every read or replacement
    of the credential goes through one lock so renewal can never swap the
    token while a fetch is reading it.
    """

    def __init__(self, client: "VaultClient", credential: Credential, method: str) -> None:
        self.client = client
        self.method = method
        self._credential = credential
        self._lock = asyncio.Lock()
        self.revoked = False

    def __repr__(self) -> str:
        return f"AuthSession(method={self.method!r}, lease={self._credential.lease!r})"

    async def credential(self) -> Credential:
        async with self._lock:
            return self._credential

    async def token(self) -> str:
        async with self._lock:
            return self._credential.token

    async def replace_lease(self, lease: Lease) -> Credential:
        """Swap in the lease returned by a renewal and return the new credential."""
        async with self._lock:
            self._credential = self._credential.with_lease(lease)
            return self._credential

    @property
    def lease(self) -> Lease | None:
        """Unlocked peek at the current lease, for scheduling decisions only."""
        return self._credential.lease
