"""Command-line interface for the Vault sidecar.

This is the only place where an error turns into a process exit code.
"""

import asyncio
import signal
from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError
from rich.console import Console

from . import __version__
from .containers import SidecarContainer, create_container, shutdown_container
from .core.config import Settings
from .core.exceptions import VaultSidecarError
from .core.logging import get_logger, setup_logging

logger = get_logger(__name__)

app = typer.Typer(
    name="vault-sidecar",
    help="Authenticate to Vault, fetch secrets for a workload and keep the token alive.",
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
    add_completion=False,
)
console = Console(stderr=True)

VaultTokenOption = typer.Option(
    None, "--vault-token", help="Vault token; takes priority over VAULT_TOKEN", show_default=False
)
SecretsFileOption = typer.Option(None, "--secrets-file", "-c", help="YAML list of secrets")
SecretPrefixOption = typer.Option(None, "--secret-prefix", help="Prefix for relative secret paths")
RoleOption = typer.Option(None, "--k8s-auth-role", help="Vault role for Kubernetes auth")
LoginPathOption = typer.Option(None, "--k8s-login-path", help="Kubernetes auth mount path")
SATokenOption = typer.Option(
    None, "--service-account-token", help="Service account token file"
)
LeaseFileOption = typer.Option(None, "--lease-file", help="Lease snapshot file")
OutputOption = typer.Option(None, "--output", "-o", help="Write fetched secrets here (JSON)")
LogLevelOption = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR")


def build_settings(**cli_values: Any) -> Settings:
    """Settings from the environment, with explicit CLI values on top."""
    overrides = {k: v for k, v in cli_values.items() if v is not None}
    try:
        return Settings(**overrides)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(code=2) from e


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))


async def _run(container: SidecarContainer) -> None:
    stop = asyncio.Event()
    _install_signal_handlers(stop)
    try:
        await container.sidecar().run(stop)
    finally:
        await shutdown_container(container)


async def _fetch(container: SidecarContainer) -> int:
    try:
        secrets = await container.sidecar().fetch_once()
    finally:
        await shutdown_container(container)
    return len(secrets)


def _exit_on_error(error: VaultSidecarError) -> typer.Exit:
    logger.error("Sidecar failed", error_code=error.code, details=error.details)
    console.print(f"[red]Error:[/red] {error}")
    return typer.Exit(code=error.exit_code)


@app.command()
def run(
    vault_token: str | None = VaultTokenOption,
    secrets_file: Path | None = SecretsFileOption,
    secret_prefix: str | None = SecretPrefixOption,
    k8s_auth_role: str | None = RoleOption,
    k8s_login_path: str | None = LoginPathOption,
    service_account_token: Path | None = SATokenOption,
    lease_file: Path | None = LeaseFileOption,
    output: Path | None = OutputOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Fetch secrets, then renew the Vault token until SIGTERM."""
    settings = build_settings(
        secrets_file=secrets_file,
        secret_prefix=secret_prefix,
        k8s_auth_role=k8s_auth_role,
        k8s_login_path=k8s_login_path,
        service_account_token_path=service_account_token,
        lease_file=lease_file,
        output_file=output,
        log_level=log_level,
    )
    setup_logging(settings)
    container = create_container(settings, cli_token=vault_token)

    try:
        asyncio.run(_run(container))
    except VaultSidecarError as e:
        raise _exit_on_error(e) from e

    logger.info("Sidecar stopped")


@app.command()
def fetch(
    vault_token: str | None = VaultTokenOption,
    secrets_file: Path | None = SecretsFileOption,
    secret_prefix: str | None = SecretPrefixOption,
    k8s_auth_role: str | None = RoleOption,
    k8s_login_path: str | None = LoginPathOption,
    service_account_token: Path | None = SATokenOption,
    lease_file: Path | None = LeaseFileOption,
    output: Path | None = OutputOption,
    log_level: str | None = LogLevelOption,
) -> None:
    """Fetch secrets once and exit."""
    settings = build_settings(
        secrets_file=secrets_file,
        secret_prefix=secret_prefix,
        k8s_auth_role=k8s_auth_role,
        k8s_login_path=k8s_login_path,
        service_account_token_path=service_account_token,
        lease_file=lease_file,
        output_file=output,
        log_level=log_level,
    )
    setup_logging(settings)
    container = create_container(settings, cli_token=vault_token)

    try:
        count = asyncio.run(_fetch(container))
    except VaultSidecarError as e:
        raise _exit_on_error(e) from e

    console.print(f"[green]Fetched {count} secret(s)[/green]")


@app.command()
def version() -> None:
    """Show the sidecar version."""
    typer.echo(__version__)


if __name__ == "__main__":
    app()
