"""Configuration management for the Vault sidecar.

Provides centralized configuration using Pydantic settings with environment
variable support and validation, plus loading of the YAML secrets file.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError

DEFAULT_SERVICE_ACCOUNT_TOKEN = "/var/run/secrets/kubernetes.io/serviceaccount/token"


class RenewalConfig(BaseModel):
    """Token renewal and retry backoff settings."""

    window_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Renew this long before expiry; also the retry budget per renewal",
    )
    token_increment_seconds: int | None = Field(
        default=None,
        gt=0,
        description="Requested TTL on renewal (defaults to the current lease TTL)",
    )
    initial_interval: float = Field(default=0.5, gt=0, description="First backoff delay")
    multiplier: float = Field(default=2.0, ge=1.0, description="Backoff growth factor")
    randomization_factor: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Jitter applied to each delay"
    )
    max_interval: float = Field(default=60.0, gt=0, description="Backoff delay cap")


class TokenConfigMapConfig(BaseModel):
    """Location of the cluster-scoped fallback token."""

    name: str = Field(default="vault-token", description="ConfigMap name")
    namespace: str = Field(default="default", description="ConfigMap namespace")


class SecretRequest(BaseModel):
    """One secret the workload asked for."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    key: str = Field(min_length=1, description="Key in the result mapping")
    path: str = Field(min_length=1, description="Absolute or prefix-relative Vault path")
    missing_ok: bool = Field(
        default=False,
        alias="missingOk",
        description="Omit the key instead of failing when the path is empty",
    )


class SecretsFile(BaseModel):
    """Top-level shape of the YAML secrets file."""

    secrets: list[SecretRequest] = Field(default_factory=list)


class Settings(BaseSettings):
    """Main sidecar settings.

    All settings can be overridden via environment variables. Vault settings
    use the same names as the Vault CLI (VAULT_ADDR, VAULT_TOKEN, ...).
    For nested settings, use double underscore notation:
    RENEWAL__WINDOW_SECONDS=120
    """

    app_name: str = Field(default="vault-sidecar", description="Application name")
    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # Vault connection
    vault_addr: str = Field(default="https://127.0.0.1:8200", description="Vault address")
    vault_namespace: str | None = Field(default=None, description="Vault Enterprise namespace")
    vault_token: str | None = Field(
        default=None, repr=False, description="Token from the environment"
    )
    vault_cacert: Path | None = Field(default=None, description="CA bundle for TLS")
    vault_skip_verify: bool = Field(default=False, description="Disable TLS verification")
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP timeout in seconds")

    # Authentication
    k8s_auth_role: str | None = Field(default=None, description="Kubernetes auth role")
    k8s_login_path: str = Field(default="kubernetes", description="Kubernetes auth mount")
    service_account_token_path: Path = Field(
        default=Path(DEFAULT_SERVICE_ACCOUNT_TOKEN),
        description="Service account JWT used for Kubernetes auth",
    )
    token_configmap: TokenConfigMapConfig = Field(default_factory=TokenConfigMapConfig)

    # Secrets
    secret_prefix: str = Field(default="secret", description="Prefix for relative paths")
    secrets_file: Path | None = Field(default=None, description="YAML list of secrets")
    output_file: Path | None = Field(default=None, description="Where fetched secrets go")

    # Leases
    lease_file: Path | None = Field(default=None, description="Persisted lease snapshot")
    revoke_on_exit: bool = Field(default=True, description="Revoke the token at shutdown")
    renewal: RenewalConfig = Field(default_factory=RenewalConfig)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "extra": "ignore",
    }

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment."""
        valid_envs = {"development", "testing", "staging", "production"}
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v.lower()

    @field_validator("vault_addr")
    @classmethod
    def validate_vault_addr(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Vault address must be an http(s) URL: {v}")
        return v.rstrip("/")

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


def load_secret_requests(path: Path | None) -> list[SecretRequest]:
    """Load the ordered secret requests from a YAML file.

    Args:
        path: Secrets file, or None for an empty request list

    Returns:
        Requests in file order

    Raises:
        ConfigurationError: If the file is unreadable or malformed
    """
    if path is None:
        return []

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read secrets file {path}: {e}", config_key="secrets_file"
        ) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Secrets file {path} is not valid YAML: {e}", config_key="secrets_file"
        ) from e

    try:
        return SecretsFile.model_validate(raw).secrets
    except ValidationError as e:
        raise ConfigurationError(
            f"Secrets file {path} is invalid: {e}", config_key="secrets_file"
        ) from e


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


def get_settings_for_testing(**overrides: Any) -> Settings:
    """Get settings for testing with optional overrides.

    Args:
        **overrides: Settings to override

    Returns:
        Settings: Test settings instance
    """
    get_settings.cache_clear()

    test_values = {
        "environment": "testing",
        "vault_addr": "http://127.0.0.1:8200",
        **overrides,
    }

    # Keep a developer's real token out of test settings
    original_token = os.environ.pop("VAULT_TOKEN", None)
    try:
        return Settings(_env_file=None, **test_values)
    finally:
        if original_token is not None:
            os.environ["VAULT_TOKEN"] = original_token
