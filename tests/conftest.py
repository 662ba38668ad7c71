"""Pytest configuration and shared fixtures.

Provides an in-process fake of the Vault HTTP API, a client pointed at it,
mocked clients for unit tests and test settings.
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from vault_sidecar.core.config import get_settings_for_testing
from vault_sidecar.core.retry import RetryPolicy
from vault_sidecar.services.lease_registry import LeaseRegistry
from vault_sidecar.vault.client import VaultClient
from vault_sidecar.vault.models import AuthSession, Credential, Lease

ROOT_TOKEN = "s.root-token"
K8S_TOKEN = "s.k8s-token"
SERVICE_ACCOUNT_JWT = "eyJhbGciOiJSUzI1NiJ9.sa-token"


class FakeVault:
    """Just enough of Vault's HTTP API for the sidecar's calls."""

    def __init__(self) -> None:
        self.tokens: dict[str, dict[str, Any]] = {
            ROOT_TOKEN: {"accessor": "acc-root", "ttl": 3600, "renewable": True},
        }
        self.secrets: dict[str, dict[str, Any]] = {}
        self.roles: set[str] = {"webapp"}
        self.requests: list[tuple[str, str]] = []
        self.namespaces: list[str | None] = []
        self.renew_status: int | None = None
        self.renew_renewable = True

    def add_secret(
        self,
        path: str,
        data: dict[str, Any],
        lease_id: str = "",
        lease_duration: int = 0,
        renewable: bool = False,
    ) -> None:
        self.secrets[path.strip("/")] = {
            "lease_id": lease_id,
            "lease_duration": lease_duration,
            "renewable": renewable,
            "data": data,
            "warnings": None,
        }

    def _token_info(self, request: web.Request) -> dict[str, Any] | None:
        return self.tokens.get(request.headers.get("X-Vault-Token", ""))

    @staticmethod
    def _denied() -> web.Response:
        return web.json_response({"errors": ["permission denied"]}, status=403)

    @web.middleware
    async def _record(self, request: web.Request, handler):
        self.requests.append((request.method, request.path))
        self.namespaces.append(request.headers.get("X-Vault-Namespace"))
        return await handler(request)

    async def login(self, request: web.Request) -> web.Response:
        body = await request.json()
        if body.get("role") not in self.roles or body.get("jwt") != SERVICE_ACCOUNT_JWT:
            return self._denied()
        self.tokens[K8S_TOKEN] = {"accessor": "acc-k8s", "ttl": 1800, "renewable": True}
        return web.json_response(
            {
                "auth": {
                    "client_token": K8S_TOKEN,
                    "accessor": "acc-k8s",
                    "lease_duration": 1800,
                    "renewable": True,
                }
            }
        )

    async def lookup_self(self, request: web.Request) -> web.Response:
        info = self._token_info(request)
        if info is None:
            return self._denied()
        return web.json_response({"data": {"id": request.headers["X-Vault-Token"], **info}})

    async def renew_self(self, request: web.Request) -> web.Response:
        if self.renew_status is not None:
            return web.json_response({"errors": ["injected failure"]}, status=self.renew_status)
        info = self._token_info(request)
        if info is None:
            return self._denied()
        body = await request.json() if request.can_read_body else {}
        increment = int(str(body.get("increment", f"{info['ttl']}s")).rstrip("s"))
        info["ttl"] = increment
        return web.json_response(
            {
                "auth": {
                    "client_token": request.headers["X-Vault-Token"],
                    "accessor": info["accessor"],
                    "lease_duration": increment,
                    "renewable": info["renewable"] and self.renew_renewable,
                }
            }
        )

    async def revoke_self(self, request: web.Request) -> web.Response:
        if self._token_info(request) is None:
            return self._denied()
        del self.tokens[request.headers["X-Vault-Token"]]
        return web.Response(status=204)

    async def read(self, request: web.Request) -> web.Response:
        if self._token_info(request) is None:
            return self._denied()
        secret = self.secrets.get(request.match_info["path"].strip("/"))
        if secret is None:
            return web.json_response({"errors": []}, status=404)
        return web.json_response(secret)

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self._record])
        app.router.add_post("/v1/auth/token/renew-self", self.renew_self)
        app.router.add_post("/v1/auth/token/revoke-self", self.revoke_self)
        app.router.add_get("/v1/auth/token/lookup-self", self.lookup_self)
        app.router.add_post("/v1/auth/{mount:.+}/login", self.login)
        app.router.add_get("/v1/{path:.+}", self.read)
        return app


@pytest.fixture
def fake_vault() -> FakeVault:
    return FakeVault()


@pytest_asyncio.fixture
async def vault_server(fake_vault: FakeVault) -> AsyncGenerator[TestServer, None]:
    """Fake Vault listening on a random local port."""
    server = TestServer(fake_vault.app())
    await server.start_server()
    yield server
    await server.close()


@pytest_asyncio.fixture
async def vault_client(vault_server: TestServer) -> AsyncGenerator[VaultClient, None]:
    client = VaultClient(str(vault_server.make_url("")), timeout=5.0)
    yield client
    await client.close()


@pytest.fixture
def mock_client() -> AsyncMock:
    """VaultClient double for unit tests."""
    client = AsyncMock(spec=VaultClient)
    client.address = "http://127.0.0.1:8200/"
    return client


@pytest.fixture
def registry() -> LeaseRegistry:
    return LeaseRegistry()


@pytest.fixture
def fast_retry() -> RetryPolicy:
    """Backoff tuned for tests: tiny, deterministic delays."""
    return RetryPolicy(initial_interval=0.01, multiplier=2.0, randomization_factor=0.0, max_interval=0.05)


@pytest.fixture
def renewable_session(mock_client: AsyncMock) -> AuthSession:
    credential = Credential(token=ROOT_TOKEN, lease=Lease(id="acc-root", ttl=3600, renewable=True))
    return AuthSession(mock_client, credential, "command-line")


@pytest.fixture
def service_account_token(tmp_path: Path) -> Path:
    path = tmp_path / "token"
    path.write_text(SERVICE_ACCOUNT_JWT + "\n")
    return path


@pytest.fixture
def test_settings(tmp_path: Path):
    """Test application settings."""
    return get_settings_for_testing(
        lease_file=tmp_path / "leases.json",
        output_file=tmp_path / "out" / "secrets.json",
    )
