"""Unit tests for authentication method resolution."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from kubernetes.client import ApiException

from vault_sidecar.core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    PlatformUnavailableError,
    VaultAPIError,
)
from vault_sidecar.integrations.kubernetes import ConfigMapTokenSource
from vault_sidecar.services.auth_resolver import (
    ArgumentTokenAuth,
    AuthResolver,
    AuthStatus,
    ConfigMapTokenAuth,
    KubernetesAuth,
    default_auth_methods,
)
from vault_sidecar.services.lease_registry import LeaseSnapshot
from vault_sidecar.vault.models import AuthTokenLease, Credential, Lease

LOOKUP = {"accessor": "acc-1", "ttl": 3600, "renewable": True}


def configmap_source(records=None, error: Exception | None = None) -> AsyncMock:
    source = AsyncMock(spec=ConfigMapTokenSource)
    source.name = "vault-token"
    source.namespace = "default"
    if error is not None:
        source.list_records.side_effect = error
    else:
        source.list_records.return_value = records or []
    return source


def build_resolver(
    client,
    registry,
    cli_token=None,
    env_token=None,
    source=None,
    role=None,
    token_path=Path("/nonexistent/token"),
) -> AuthResolver:
    methods = default_auth_methods(
        registry=registry,
        cli_token=cli_token,
        env_token=env_token,
        configmap_source=source or configmap_source(error=PlatformUnavailableError("no cluster")),
        k8s_role=role,
        k8s_login_path="kubernetes",
        service_account_token_path=token_path,
    )
    return AuthResolver(client, registry, methods)


class TestResolutionOrder:
    @pytest.mark.asyncio
    async def test_lease_file_token_wins_over_everything(self, mock_client, registry):
        await registry.restore(LeaseSnapshot(auth_token=AuthTokenLease(token="s.lease")))
        mock_client.lookup_self.return_value = LOOKUP
        source = configmap_source([{"token": "s.configmap"}])
        resolver = build_resolver(
            mock_client, registry, cli_token="s.cli", env_token="s.env", source=source, role="app"
        )

        session = await resolver.resolve()

        assert session.method == "lease-file"
        assert await session.token() == "s.lease"
        mock_client.lookup_self.assert_awaited_once_with("s.lease")
        mock_client.login.assert_not_called()
        source.list_records.assert_not_called()

    @pytest.mark.asyncio
    async def test_command_line_token_before_environment(self, mock_client, registry):
        mock_client.lookup_self.return_value = LOOKUP
        resolver = build_resolver(mock_client, registry, cli_token="s.cli", env_token="s.env")

        session = await resolver.resolve()

        assert session.method == "command-line"
        mock_client.lookup_self.assert_awaited_once_with("s.cli")

    @pytest.mark.asyncio
    async def test_environment_token(self, mock_client, registry):
        mock_client.lookup_self.return_value = LOOKUP
        resolver = build_resolver(mock_client, registry, env_token="s.env")

        session = await resolver.resolve()

        assert session.method == "environment"
        assert session.lease == Lease(
            id="acc-1", ttl=3600, renewable=True, issued_at=session.lease.issued_at
        )

    @pytest.mark.asyncio
    async def test_single_configmap_record(self, mock_client, registry):
        mock_client.lookup_self.return_value = LOOKUP
        source = configmap_source([{"token": "s.configmap"}])
        resolver = build_resolver(mock_client, registry, source=source)

        session = await resolver.resolve()

        assert session.method == "configmap"
        mock_client.lookup_self.assert_awaited_once_with("s.configmap")

    @pytest.mark.asyncio
    async def test_successful_resolution_enrolls_auth_token(self, mock_client, registry):
        mock_client.lookup_self.return_value = LOOKUP
        await build_resolver(mock_client, registry, cli_token="s.cli").resolve()

        entry = await registry.auth_token()
        assert entry.token == "s.cli"
        assert entry.lease.renewable


class TestConfigMapFallback:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "source",
        [
            configmap_source(error=PlatformUnavailableError("not in a cluster")),
            configmap_source(error=ApiException(status=403, reason="Forbidden")),
            configmap_source([{"token": "s.one"}, {"token": "s.two"}]),
            configmap_source([{"other": "value"}]),
            configmap_source([]),
        ],
        ids=["no-cluster", "api-error", "ambiguous", "no-token-field", "none"],
    )
    async def test_skipped_and_falls_through_to_kubernetes(
        self, source, mock_client, registry, service_account_token
    ):
        mock_client.login.return_value = Credential(
            token="s.k8s", lease=Lease(id="acc", ttl=60, renewable=True)
        )
        resolver = build_resolver(
            mock_client, registry, source=source, role="webapp", token_path=service_account_token
        )

        session = await resolver.resolve()

        assert session.method == "kubernetes"
        mock_client.lookup_self.assert_not_called()

    @pytest.mark.asyncio
    async def test_source_is_listed_once(self, mock_client, registry):
        mock_client.lookup_self.return_value = LOOKUP
        source = configmap_source([{"token": "s.configmap"}])
        method = ConfigMapTokenAuth(source)

        assert await method.is_applicable()
        await method.authenticate(mock_client)

        source.list_records.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_token_field_is_configured_and_fatal(
        self, mock_client, registry, service_account_token
    ):
        source = configmap_source([{"token": ""}])
        resolver = build_resolver(
            mock_client, registry, source=source, role="webapp", token_path=service_account_token
        )

        with pytest.raises(AuthenticationError) as exc_info:
            await resolver.resolve()

        assert exc_info.value.method == "configmap"
        mock_client.login.assert_not_called()


class TestKubernetesAuth:
    @pytest.mark.asyncio
    async def test_login_sends_jwt_and_role(self, mock_client, service_account_token):
        mock_client.login.return_value = Credential(token="s.k8s")
        method = KubernetesAuth("webapp", "k8s-prod", service_account_token)

        credential = await method.authenticate(mock_client)

        assert credential.token == "s.k8s"
        mount, payload = mock_client.login.await_args.args
        assert mount == "k8s-prod"
        assert payload["role"] == "webapp"
        assert payload["jwt"] == service_account_token.read_text().strip()

    @pytest.mark.asyncio
    async def test_missing_token_file_is_fatal(self, mock_client, registry, tmp_path):
        resolver = build_resolver(
            mock_client, registry, role="webapp", token_path=tmp_path / "missing"
        )

        with pytest.raises(AuthenticationError) as exc_info:
            await resolver.resolve()

        assert exc_info.value.method == "kubernetes"
        mock_client.login.assert_not_called()

    @pytest.mark.asyncio
    async def test_login_rejected_is_fatal(self, mock_client, service_account_token):
        mock_client.login.side_effect = VaultAPIError("denied", status=403)
        method = KubernetesAuth("webapp", "kubernetes", service_account_token)

        with pytest.raises(AuthenticationError):
            await method.authenticate(mock_client)


class TestFailures:
    @pytest.mark.asyncio
    async def test_configured_method_failure_does_not_fall_through(self, mock_client, registry):
        mock_client.lookup_self.side_effect = VaultAPIError(
            "bad token", status=403, errors=["permission denied"]
        )
        resolver = build_resolver(mock_client, registry, cli_token="s.bad", env_token="s.good")

        with pytest.raises(AuthenticationError) as exc_info:
            await resolver.resolve()

        assert exc_info.value.method == "command-line"
        mock_client.lookup_self.assert_awaited_once_with("s.bad")
        assert await registry.auth_token() is None

    @pytest.mark.asyncio
    async def test_stale_lease_file_token_is_fatal(self, mock_client, registry):
        await registry.restore(LeaseSnapshot(auth_token=AuthTokenLease(token="s.expired")))
        mock_client.lookup_self.side_effect = VaultAPIError("expired", status=403)
        resolver = build_resolver(mock_client, registry, env_token="s.env")

        with pytest.raises(AuthenticationError):
            await resolver.resolve()
        assert mock_client.lookup_self.await_count == 1

    @pytest.mark.asyncio
    async def test_nothing_configured(self, mock_client, registry):
        resolver = build_resolver(mock_client, registry)

        with pytest.raises(ConfigurationError, match="No authentication mechanism"):
            await resolver.resolve()

    @pytest.mark.asyncio
    async def test_attempt_reports_status(self, mock_client, registry):
        resolver = AuthResolver(mock_client, registry, [])

        skipped = await resolver.attempt(ArgumentTokenAuth(None))
        assert skipped.status is AuthStatus.NOT_APPLICABLE

        mock_client.lookup_self.side_effect = VaultAPIError("nope", status=500)
        failed = await resolver.attempt(ArgumentTokenAuth("s.x"))
        assert failed.status is AuthStatus.FAILED
        assert isinstance(failed.error, AuthenticationError)
