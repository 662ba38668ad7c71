"""Lease registry and its on-disk snapshot.

The registry is the one place that knows the current auth token lease and
the lease of every fetched secret. It is created once per process and passed
to the components that need it. Listeners (the lease file writer) are told
about every change with an immutable snapshot.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path

import aiofiles
from pydantic import BaseModel, Field, ValidationError

from ..core.exceptions import ConfigurationError
from ..core.files import write_private_file
from ..core.logging import get_logger
from ..vault.models import AuthTokenLease, Lease

logger = get_logger(__name__)


class LeaseSnapshot(BaseModel):
    """Serialisable registry state."""

    model_config = {"frozen": True}

    auth_token: AuthTokenLease | None = None
    secrets: dict[str, Lease] = Field(default_factory=dict)


LeaseListener = Callable[[LeaseSnapshot], Awaitable[None]]


class LeaseRegistry:
    """Current leases keyed by category (the auth token, or a secret key)."""

    def __init__(self, snapshot: LeaseSnapshot | None = None) -> None:
        snapshot = snapshot or LeaseSnapshot()
        self._auth_token = snapshot.auth_token
        self._secrets = dict(snapshot.secrets)
        self._lock = asyncio.Lock()
        self._listeners: list[LeaseListener] = []

    def add_listener(self, listener: LeaseListener) -> None:
        self._listeners.append(listener)

    async def restore(self, snapshot: LeaseSnapshot) -> None:
        """Replace the state with a persisted snapshot without notifying."""
        async with self._lock:
            self._auth_token = snapshot.auth_token
            self._secrets = dict(snapshot.secrets)

    async def auth_token(self) -> AuthTokenLease | None:
        async with self._lock:
            return self._auth_token

    async def persisted_token(self) -> str | None:
        """Token recovered from a previous run, if any."""
        entry = await self.auth_token()
        if entry is None or not entry.token:
            return None
        return entry.token

    async def secret_lease(self, key: str) -> Lease | None:
        async with self._lock:
            return self._secrets.get(key)

    async def enroll_auth_token(self, token: str, lease: Lease | None) -> None:
        async with self._lock:
            self._auth_token = AuthTokenLease(token=token, lease=lease)
            await self._notify(self._snapshot())
        logger.debug(
            "Enrolled auth token lease",
            ttl=lease.ttl if lease else None,
            renewable=lease.renewable if lease else None,
        )

    async def enroll_secret(self, key: str, lease: Lease) -> None:
        async with self._lock:
            self._secrets[key] = lease
            await self._notify(self._snapshot())
        logger.debug("Enrolled secret lease", key=key, lease_id=lease.id, ttl=lease.ttl)

    async def discard_auth_token(self) -> None:
        """Forget the auth token, e.g. after it was revoked."""
        async with self._lock:
            self._auth_token = None
            await self._notify(self._snapshot())

    async def snapshot(self) -> LeaseSnapshot:
        async with self._lock:
            return self._snapshot()

    def _snapshot(self) -> LeaseSnapshot:
        return LeaseSnapshot(auth_token=self._auth_token, secrets=dict(self._secrets))

    async def _notify(self, snapshot: LeaseSnapshot) -> None:
        for listener in self._listeners:
            await listener(snapshot)


class LeaseFile:
    """JSON file holding the last registry snapshot.

    Read once at startup; rewritten atomically whenever the registry changes.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._write_lock = asyncio.Lock()

    async def load(self) -> LeaseSnapshot:
        """Load the snapshot; a missing file is an empty snapshot.

        Raises:
            ConfigurationError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            logger.debug("No lease file found", path=str(self.path))
            return LeaseSnapshot()

        async with aiofiles.open(self.path, encoding="utf-8") as f:
            raw = await f.read()

        try:
            snapshot = LeaseSnapshot.model_validate_json(raw) if raw.strip() else LeaseSnapshot()
        except ValidationError as e:
            raise ConfigurationError(
                f"Lease file {self.path} is corrupt: {e}", config_key="lease_file"
            ) from e

        logger.info(
            "Loaded lease file",
            path=str(self.path),
            has_auth_token=bool(snapshot.auth_token and snapshot.auth_token.token),
            secret_leases=len(snapshot.secrets),
        )
        return snapshot

    async def save(self, snapshot: LeaseSnapshot) -> None:
        payload = json.dumps(snapshot.model_dump(mode="json"), indent=2, sort_keys=True)
        async with self._write_lock:
            await write_private_file(self.path, payload)

    async def __call__(self, snapshot: LeaseSnapshot) -> None:
        await self.save(snapshot)
