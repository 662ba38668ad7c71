"""Custom exceptions for the Vault sidecar.

Defines a hierarchy of exceptions with error codes, messages and context
information. Components raise these; only the CLI decides whether an error
terminates the process and with which exit code.
"""

from typing import Any


class VaultSidecarError(Exception):
    """Base exception for all sidecar errors.

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        details: Additional context information
        cause: Original exception that caused this error
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary format."""
        result = {
            "error": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        """String representation of the exception."""
        return f"[{self.code}] {self.message}"


class ConfigurationError(VaultSidecarError):
    """Raised when configuration is invalid or missing."""

    exit_code = 2

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        config_details = details or {}
        if config_key:
            config_details["config_key"] = config_key

        super().__init__(message, "CONFIGURATION_ERROR", config_details)
        self.config_key = config_key


class AuthenticationError(VaultSidecarError):
    """Raised when a configured authentication method fails."""

    exit_code = 3

    def __init__(
        self,
        message: str,
        method: str | None = None,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        auth_details = details or {}
        if method:
            auth_details["method"] = method

        super().__init__(message, "AUTHENTICATION_ERROR", auth_details, cause)
        self.method = method


class PermissionDeniedError(VaultSidecarError):
    """Raised when Vault rejects the token with a 403.

    During renewal this means the credential was revoked or lost its policy
    and cannot be salvaged.
    """

    exit_code = 4

    def __init__(
        self,
        message: str = "permission denied",
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, "PERMISSION_DENIED", details, cause)


class RetryTimeoutError(VaultSidecarError):
    """Raised when a retried operation exhausts its elapsed-time budget."""

    exit_code = 5

    def __init__(
        self,
        message: str,
        attempts: int = 0,
        elapsed: float = 0.0,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(
            message,
            "RETRY_TIMEOUT",
            {"attempts": attempts, "elapsed_seconds": round(elapsed, 3)},
            cause,
        )
        self.attempts = attempts
        self.elapsed = elapsed


class RetryCancelledError(VaultSidecarError):
    """Raised when a retry loop is stopped by its cancellation signal."""

    def __init__(self, message: str = "retry cancelled", attempts: int = 0) -> None:
        super().__init__(message, "RETRY_CANCELLED", {"attempts": attempts})
        self.attempts = attempts


class SecretFetchError(VaultSidecarError):
    """Raised when a configured secret cannot be fetched."""

    exit_code = 6

    def __init__(
        self,
        message: str,
        key: str | None = None,
        path: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        fetch_details: dict[str, Any] = {}
        if key:
            fetch_details["key"] = key
        if path:
            fetch_details["path"] = path

        super().__init__(message, "SECRET_FETCH_ERROR", fetch_details, cause)
        self.key = key
        self.path = path


class VaultAPIError(VaultSidecarError):
    """Raised when the Vault API answers with an error status."""

    def __init__(
        self,
        message: str,
        status: int,
        errors: list[str] | None = None,
        url: str | None = None,
    ) -> None:
        self.status = status
        self.errors = errors or []
        self.url = url
        api_details: dict[str, Any] = {"status": status, "errors": self.errors}
        if url:
            api_details["url"] = url

        # Same text as the official Vault API client errors, so "Code: 403" can be matched
        text = f"{message}\nCode: {status}."
        if self.errors:
            text += " Errors:\n\n" + "\n".join(f"* {e}" for e in self.errors)

        super().__init__(text, "VAULT_API_ERROR", api_details)


class VaultConnectionError(VaultSidecarError):
    """Raised when Vault cannot be reached."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message, "VAULT_CONNECTION_ERROR", None, cause)


class PlatformUnavailableError(VaultSidecarError):
    """Raised when the orchestration platform API cannot be used.

    Typically the sidecar is not running inside a Kubernetes cluster.
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message, "PLATFORM_UNAVAILABLE", None, cause)


def is_permission_denied(error: BaseException) -> bool:
    """Check whether an error carries Vault's 403 signal."""
    if isinstance(error, PermissionDeniedError):
        return True
    if isinstance(error, VaultAPIError) and error.status == 403:
        return True
    return "Code: 403" in str(error)
