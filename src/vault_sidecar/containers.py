"""Dependency injection container for the Vault sidecar.

One container per process. The lease registry is a Singleton here so every
component that needs it gets the same instance through injection rather
than through module-level state.

The Vault client opens its HTTP session lazily; call ``shutdown_container``
to close it.
"""

from dependency_injector import containers, providers

from .core.config import Settings, get_settings, load_secret_requests
from .core.logging import get_logger
from .core.retry import RetryPolicy
from .integrations.kubernetes import ConfigMapTokenSource
from .services.auth_resolver import AuthResolver, default_auth_methods
from .services.lease_registry import LeaseFile, LeaseRegistry
from .services.secret_fetcher import SecretFetcher
from .services.secret_writer import SecretWriter
from .services.sidecar import Sidecar
from .vault.client import VaultClient

logger = get_logger(__name__)


def _lease_file(settings: Settings) -> LeaseFile | None:
    return LeaseFile(settings.lease_file) if settings.lease_file else None


def _ca_cert(settings: Settings) -> str | None:
    return str(settings.vault_cacert) if settings.vault_cacert else None


class SidecarContainer(containers.DeclarativeContainer):
    """Provides every sidecar component, wired from Settings."""

    settings = providers.Singleton(get_settings)

    # --vault-token; overridden by the CLI
    cli_token = providers.Object(None)

    vault_client = providers.Singleton(
        VaultClient,
        vault_addr=settings.provided.vault_addr,
        namespace=settings.provided.vault_namespace,
        ca_cert_path=providers.Callable(_ca_cert, settings),
        verify_ssl=providers.Callable(lambda s: not s.vault_skip_verify, settings),
        timeout=settings.provided.request_timeout,
    )

    lease_registry = providers.Singleton(LeaseRegistry)

    lease_file = providers.Singleton(_lease_file, settings)

    retry_policy = providers.Factory(
        RetryPolicy,
        initial_interval=settings.provided.renewal.initial_interval,
        multiplier=settings.provided.renewal.multiplier,
        randomization_factor=settings.provided.renewal.randomization_factor,
        max_interval=settings.provided.renewal.max_interval,
    )

    configmap_source = providers.Singleton(
        ConfigMapTokenSource,
        name=settings.provided.token_configmap.name,
        namespace=settings.provided.token_configmap.namespace,
    )

    auth_methods = providers.Callable(
        default_auth_methods,
        registry=lease_registry,
        cli_token=cli_token,
        env_token=settings.provided.vault_token,
        configmap_source=configmap_source,
        k8s_role=settings.provided.k8s_auth_role,
        k8s_login_path=settings.provided.k8s_login_path,
        service_account_token_path=settings.provided.service_account_token_path,
    )

    auth_resolver = providers.Factory(
        AuthResolver,
        client=vault_client,
        registry=lease_registry,
        methods=auth_methods,
    )

    secret_fetcher = providers.Factory(
        SecretFetcher,
        registry=lease_registry,
        prefix=settings.provided.secret_prefix,
    )

    secret_writer = providers.Factory(SecretWriter, path=settings.provided.output_file)

    secret_requests = providers.Callable(load_secret_requests, settings.provided.secrets_file)

    sidecar = providers.Factory(
        Sidecar,
        settings=settings,
        registry=lease_registry,
        resolver=auth_resolver,
        fetcher=secret_fetcher,
        writer=secret_writer,
        retry_policy=retry_policy,
        requests=secret_requests,
        lease_file=lease_file,
    )


def create_container(settings: Settings, cli_token: str | None = None) -> SidecarContainer:
    """Build a container bound to ``settings``."""
    container = SidecarContainer()
    container.settings.override(providers.Object(settings))
    container.cli_token.override(providers.Object(cli_token))
    return container


async def shutdown_container(container: SidecarContainer) -> None:
    """Close the Vault client's HTTP session."""
    await container.vault_client().close()
    logger.debug("Container shut down")
