"""Authentication method resolution.

Methods are tried in a fixed priority order:

1. the token from the lease file of a previous run
2. the token passed with --vault-token
3. VAULT_TOKEN
4. the token stored in the vault-token ConfigMap
5. Kubernetes service account login against the configured role

The first method that is *applicable* decides the outcome. A configured
method that then fails is fatal; the resolver never falls through to the
next one.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import aiofiles

from ..core.exceptions import (
    AuthenticationError,
    ConfigurationError,
    PlatformUnavailableError,
    VaultSidecarError,
)
from ..core.logging import get_logger
from ..integrations.kubernetes import ConfigMapTokenSource
from ..vault.client import VaultClient, credential_from_lookup
from ..vault.models import AuthSession, Credential
from .lease_registry import LeaseRegistry

logger = get_logger(__name__)


class AuthStatus(str, Enum):
    NOT_APPLICABLE = "not_applicable"
    FAILED = "failed"
    SUCCEEDED = "succeeded"


@dataclass
class AuthAttempt:
    """What happened when one method was tried."""

    method: str
    status: AuthStatus
    session: AuthSession | None = None
    error: AuthenticationError | None = None


class AuthMethod(ABC):
    """One way of obtaining a Vault credential."""

    name: str = "abstract"

    @abstractmethod
    async def is_applicable(self) -> bool:
        """Whether this method is configured for the current process."""

    @abstractmethod
    async def authenticate(self, client: VaultClient) -> Credential:
        """Obtain a credential.

        Raises:
            AuthenticationError: If the method is applicable but fails
        """


class TokenAuthMethod(AuthMethod):
    """Use an existing token, validated with a lookup-self call."""

    description = "token"

    @abstractmethod
    async def _resolve_token(self) -> str | None:
        """The token to validate, or None when this source has none."""

    async def is_applicable(self) -> bool:
        return bool(await self._resolve_token())

    async def authenticate(self, client: VaultClient) -> Credential:
        token = await self._resolve_token()
        if not token:
            raise AuthenticationError(f"No {self.description} available", method=self.name)

        logger.info(
            f"Logging into Vault server with {self.description}",
            vault_addr=client.address,
        )
        try:
            data = await client.lookup_self(token)
        except VaultSidecarError as e:
            raise AuthenticationError(
                f"Failed to authenticate to Vault server {client.address} "
                f"using {self.description}: {e.message}",
                method=self.name,
                cause=e,
            ) from e

        logger.debug("Token authentication succeeded", method=self.name)
        return credential_from_lookup(token, data)


class LeaseFileTokenAuth(TokenAuthMethod):
    name = "lease-file"
    description = "token from lease file"

    def __init__(self, registry: LeaseRegistry) -> None:
        self.registry = registry

    async def _resolve_token(self) -> str | None:
        return await self.registry.persisted_token()


class StaticTokenAuth(TokenAuthMethod):
    """A token handed to the process at startup."""

    def __init__(self, token: str | None) -> None:
        self.token = token

    async def _resolve_token(self) -> str | None:
        return self.token


class ArgumentTokenAuth(StaticTokenAuth):
    name = "command-line"
    description = "command line token"


class EnvironmentTokenAuth(StaticTokenAuth):
    name = "environment"
    description = "token in VAULT_TOKEN"


class ConfigMapTokenAuth(TokenAuthMethod):
    """Token from a ConfigMap shared across the cluster.

    Any problem finding the ConfigMap makes this method not applicable
    instead of failing: outside Kubernetes there is simply no ConfigMap.
    """

    name = "configmap"

    def __init__(self, source: ConfigMapTokenSource) -> None:
        self.source = source
        self.description = f"token from {source.name} ConfigMap"
        self._looked_up = False
        self._found: str | None = None

    async def is_applicable(self) -> bool:
        # A present but empty token field still counts as configured
        return await self._resolve_token() is not None

    async def _resolve_token(self) -> str | None:
        if not self._looked_up:
            self._looked_up = True
            self._found = await self._lookup()
        return self._found

    async def _lookup(self) -> str | None:
        try:
            records = await self.source.list_records()
        except PlatformUnavailableError as e:
            logger.debug(
                "Could not create cluster config; this fails outside of Kubernetes",
                error=e.message,
            )
            return None
        except Exception as e:
            logger.debug(
                "Failed to list ConfigMaps",
                name=self.source.name,
                namespace=self.source.namespace,
                error=str(e),
            )
            return None

        if len(records) > 1:
            logger.warning(
                "Multiple ConfigMaps matched the token ConfigMap name; ignoring them",
                name=self.source.name,
                namespace=self.source.namespace,
                count=len(records),
            )
            return None
        if not records or "token" not in records[0]:
            return None
        return records[0]["token"]


class KubernetesAuth(AuthMethod):
    """Log in with the pod's service account JWT."""

    name = "kubernetes"

    def __init__(self, role: str | None, login_path: str, token_path: Path) -> None:
        self.role = role
        self.login_path = login_path
        self.token_path = token_path

    async def is_applicable(self) -> bool:
        return bool(self.role)

    async def authenticate(self, client: VaultClient) -> Credential:
        logger.info("Reading Kubernetes service account token", path=str(self.token_path))
        try:
            async with aiofiles.open(self.token_path, encoding="utf-8") as f:
                jwt = (await f.read()).strip()
        except OSError as e:
            raise AuthenticationError(
                f"Cannot read service account token {self.token_path}: {e}",
                method=self.name,
                cause=e,
            ) from e

        logger.info(
            "Authenticating to Vault with Kubernetes auth",
            role=self.role,
            login_path=self.login_path,
            vault_addr=client.address,
        )
        payload: dict[str, Any] = {"jwt": jwt, "role": self.role}
        try:
            return await client.login(self.login_path, payload)
        except VaultSidecarError as e:
            raise AuthenticationError(
                f"Kubernetes login as role {self.role!r} failed: {e.message}",
                method=self.name,
                cause=e,
            ) from e


class AuthResolver:
    """Walks the ordered methods and returns the first applicable one's session."""

    def __init__(
        self,
        client: VaultClient,
        registry: LeaseRegistry,
        methods: list[AuthMethod],
    ) -> None:
        self.client = client
        self.registry = registry
        self.methods = methods

    async def attempt(self, method: AuthMethod) -> AuthAttempt:
        """Run one method and report how it went."""
        if not await method.is_applicable():
            logger.debug("Authentication method not applicable", method=method.name)
            return AuthAttempt(method.name, AuthStatus.NOT_APPLICABLE)

        try:
            credential = await method.authenticate(self.client)
        except AuthenticationError as e:
            return AuthAttempt(method.name, AuthStatus.FAILED, error=e)

        session = AuthSession(self.client, credential, method.name)
        return AuthAttempt(method.name, AuthStatus.SUCCEEDED, session=session)

    async def resolve(self) -> AuthSession:
        """Authenticate with the highest-priority applicable method.

        Raises:
            AuthenticationError: If the applicable method fails
            ConfigurationError: If no method applies
        """
        for method in self.methods:
            result = await self.attempt(method)

            if result.status is AuthStatus.NOT_APPLICABLE:
                continue

            if result.status is AuthStatus.FAILED or result.session is None:
                logger.error("Authentication failed", method=result.method, error=str(result.error))
                raise result.error or AuthenticationError(
                    "Authentication failed", method=result.method
                )

            credential = await result.session.credential()
            await self.registry.enroll_auth_token(credential.token, credential.lease)
            logger.info(
                "Authenticated to Vault",
                method=result.method,
                accessor=credential.lease.id[:8] if credential.lease else None,
                ttl=credential.lease.ttl if credential.lease else None,
                renewable=credential.lease.renewable if credential.lease else None,
            )
            return result.session

        raise ConfigurationError(
            "No authentication mechanism specified and VAULT_TOKEN is not set",
            config_key="auth",
        )


def default_auth_methods(
    registry: LeaseRegistry,
    cli_token: str | None,
    env_token: str | None,
    configmap_source: ConfigMapTokenSource,
    k8s_role: str | None,
    k8s_login_path: str,
    service_account_token_path: Path,
) -> list[AuthMethod]:
    """The standard method chain, highest priority first."""
    return [
        LeaseFileTokenAuth(registry),
        ArgumentTokenAuth(cli_token),
        EnvironmentTokenAuth(env_token),
        ConfigMapTokenAuth(configmap_source),
        KubernetesAuth(k8s_role, k8s_login_path, service_account_token_path),
    ]
