"""Async HashiCorp Vault HTTP client.

Implements the handful of Vault API calls the sidecar needs: login, token
lookup/renew/revoke and logical reads. The client holds no token of its own;
callers pass the token for every authenticated call so the AuthSession stays
the only owner of the credential.

Calls are never retried here. Renewal retries through RetryPolicy; every
other caller treats one failure as final.
"""

import ssl
from typing import Any
from urllib.parse import urljoin

import aiohttp

from ..core.exceptions import VaultAPIError, VaultConnectionError
from ..core.logging import get_logger
from .models import Credential, Lease, SecretRecord

logger = get_logger(__name__)


class VaultClient:
    """Async Vault client over a pooled aiohttp session."""

    def __init__(
        self,
        vault_addr: str,
        namespace: str | None = None,
        ca_cert_path: str | None = None,
        verify_ssl: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.address = vault_addr.rstrip("/") + "/"
        self.namespace = namespace
        self.verify_ssl = verify_ssl
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

        self._ssl_context: ssl.SSLContext | None = None
        if verify_ssl and ca_cert_path:
            self._ssl_context = ssl.create_default_context(cafile=ca_cert_path)

        logger.debug(
            "Initialized Vault client",
            vault_addr=self.address,
            namespace=namespace,
            verify_ssl=verify_ssl,
        )

    async def __aenter__(self) -> "VaultClient":
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure HTTP session is created."""
        if self._session is None or self._session.closed:
            ssl_option: ssl.SSLContext | bool = (
                self._ssl_context if self._ssl_context is not None else self.verify_ssl
            )
            connector = aiohttp.TCPConnector(limit=10, ssl=ssl_option)
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": "vault-sidecar/0.1"},
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(
        self,
        method: str,
        path: str,
        token: str | None = None,
        json: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        """Send one request to ``/v1/<path>``.

        Returns the decoded JSON body, or None for 204 and (when
        ``allow_not_found``) 404 responses.
        """
        session = await self._ensure_session()
        url = urljoin(self.address, f"v1/{path.lstrip('/')}")

        headers: dict[str, str] = {}
        if token:
            headers["X-Vault-Token"] = token
        if self.namespace:
            headers["X-Vault-Namespace"] = self.namespace

        try:
            async with session.request(method, url, json=json, headers=headers) as response:
                if response.status == 204:
                    return None

                body: dict[str, Any] = {}
                if response.content_type == "application/json":
                    body = await response.json() or {}

                if response.status == 404 and allow_not_found:
                    return None

                if response.status >= 400:
                    errors = body.get("errors") or []
                    if not errors and response.content_type != "application/json":
                        errors = [(await response.text()).strip()]
                    raise VaultAPIError(
                        f"Error making API request.\n\nURL: {method} {url}",
                        status=response.status,
                        errors=[str(e) for e in errors if e],
                        url=url,
                    )

                return body
        except (TimeoutError, aiohttp.ClientError) as e:
            raise VaultConnectionError(f"Failed to reach Vault at {url}: {e}", cause=e) from e

    async def login(self, mount_path: str, payload: dict[str, Any]) -> Credential:
        """Log in against ``auth/<mount_path>/login`` and return the issued token."""
        body = await self._request("POST", f"auth/{mount_path.strip('/')}/login", json=payload)
        auth = (body or {}).get("auth") or {}
        token = auth.get("client_token")
        if not token:
            raise VaultAPIError(
                "Login response did not contain a client token",
                status=200,
                errors=list((body or {}).get("warnings") or []),
            )
        return Credential(token=token, lease=lease_from_auth(auth))

    async def lookup_self(self, token: str) -> dict[str, Any]:
        """Return the ``data`` block describing ``token``."""
        body = await self._request("GET", "auth/token/lookup-self", token=token)
        return (body or {}).get("data") or {}

    async def renew_self(self, token: str, increment: int | None = None) -> Lease:
        """Extend ``token``'s lease; ``increment`` is the requested TTL in seconds."""
        payload = {"increment": f"{increment}s"} if increment else {}
        body = await self._request("POST", "auth/token/renew-self", token=token, json=payload)
        return lease_from_auth((body or {}).get("auth") or {})

    async def revoke_self(self, token: str) -> None:
        await self._request("POST", "auth/token/revoke-self", token=token)

    async def read(self, token: str, path: str) -> SecretRecord | None:
        """Read a logical path. Returns None when Vault has nothing there."""
        body = await self._request("GET", path, token=token, allow_not_found=True)
        if not body:
            return None

        lease = None
        if body.get("lease_id") or body.get("lease_duration"):
            lease = Lease(
                id=body.get("lease_id") or "",
                ttl=int(body.get("lease_duration") or 0),
                renewable=bool(body.get("renewable")),
            )
        return SecretRecord(
            path=path,
            data=body.get("data") or {},
            lease=lease,
            warnings=list(body.get("warnings") or []),
        )


def lease_from_auth(auth: dict[str, Any]) -> Lease:
    """Build a lease from the ``auth`` block of a login or renew response."""
    return Lease(
        id=auth.get("accessor") or "",
        ttl=int(auth.get("lease_duration") or 0),
        renewable=bool(auth.get("renewable")),
        period=int(auth.get("lease_duration") or 0),
    )


def credential_from_lookup(token: str, data: dict[str, Any]) -> Credential:
    """Build a credential from a ``lookup-self`` data block."""
    ttl = int(data.get("ttl") or 0)
    lease = Lease(
        id=data.get("accessor") or "",
        ttl=ttl,
        renewable=bool(data.get("renewable")),
        # ``ttl`` is what is left; renewal asks for the full period again
        period=int(data.get("creation_ttl") or 0) or ttl,
    )
    return Credential(token=token, lease=lease)
