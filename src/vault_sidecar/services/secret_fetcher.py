"""Fetch the configured secrets from Vault."""

import posixpath

from ..core.config import SecretRequest
from ..core.exceptions import ConfigurationError, SecretFetchError, VaultSidecarError
from ..core.logging import get_logger
from ..vault.models import AuthSession, SecretRecord
from .lease_registry import LeaseRegistry

logger = get_logger(__name__)


def resolve_secret_path(path: str, prefix: str) -> str:
    """Absolute paths (leading ``/``) are used as is; others go under ``prefix``."""
    if path.startswith("/"):
        return path
    return posixpath.join(prefix, path)


def check_unique_keys(requests: list[SecretRequest]) -> None:
    """Raise ConfigurationError on the first repeated key."""
    seen: set[str] = set()
    for request in requests:
        if request.key in seen:
            raise ConfigurationError(f"Duplicate secret key {request.key!r}", config_key="secrets")
        seen.add(request.key)


class SecretFetcher:
    """Reads each requested secret in order and records its lease.

    Any failure aborts the whole batch; callers never see a partial mapping.
    """

    def __init__(self, registry: LeaseRegistry, prefix: str = "secret") -> None:
        self.registry = registry
        self.prefix = prefix

    async def fetch_all(
        self, session: AuthSession, requests: list[SecretRequest]
    ) -> dict[str, SecretRecord]:
        """Fetch every request.

        Raises:
            ConfigurationError: If two requests share a key
            SecretFetchError: If a read fails, or a required secret is missing
        """
        check_unique_keys(requests)

        results: dict[str, SecretRecord] = {}
        for request in requests:
            record = await self.fetch_one(session, request)
            if record is not None:
                results[request.key] = record

        logger.info("Fetched secrets", requested=len(requests), fetched=len(results))
        return results

    async def fetch_one(self, session: AuthSession, request: SecretRequest) -> SecretRecord | None:
        """Fetch one request; None means it was missing and ``missing_ok``."""
        path = resolve_secret_path(request.path, self.prefix)
        logger.info("Fetching secret", key=request.key, path=path)

        token = await session.token()
        try:
            record = await session.client.read(token, path)
        except VaultSidecarError as e:
            raise SecretFetchError(
                f"Error fetching secret {path!r} from {session.client.address}: {e.message}",
                key=request.key,
                path=path,
                cause=e,
            ) from e

        if record is None:
            if request.missing_ok:
                logger.warning(
                    "No secret found (access denied or nothing stored); "
                    "ignoring since missingOk is set",
                    key=request.key,
                    path=path,
                )
                return None
            raise SecretFetchError(
                f"No secret returned for {path!r}", key=request.key, path=path
            )

        for warning in record.warnings:
            logger.warning("Vault warning", key=request.key, path=path, warning=warning)

        if record.lease is not None:
            await self.registry.enroll_secret(request.key, record.lease)
        return record
