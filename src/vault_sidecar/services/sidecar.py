"""Sidecar lifecycle.

    restore leases -> authenticate -> fetch secrets -> write them
        -> renew until stopped -> revoke -> flush lease file

Everything below this class raises; nothing here exits the process.
"""

import asyncio

from ..core.config import SecretRequest, Settings
from ..core.logging import get_logger, log_context
from ..core.retry import RetryPolicy
from ..vault.models import AuthSession, SecretRecord
from .auth_resolver import AuthResolver
from .lease_registry import LeaseFile, LeaseRegistry
from .lease_renewer import LeaseRenewer, revoke_self
from .secret_fetcher import SecretFetcher
from .secret_writer import SecretWriter

logger = get_logger(__name__)


class Sidecar:
    """Wires the components together for one process lifetime."""

    def __init__(
        self,
        settings: Settings,
        registry: LeaseRegistry,
        resolver: AuthResolver,
        fetcher: SecretFetcher,
        writer: SecretWriter,
        retry_policy: RetryPolicy,
        requests: list[SecretRequest],
        lease_file: LeaseFile | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.resolver = resolver
        self.fetcher = fetcher
        self.writer = writer
        self.retry_policy = retry_policy
        self.requests = requests
        self.lease_file = lease_file
        self.session: AuthSession | None = None
        self.secrets: dict[str, SecretRecord] = {}

    async def restore_leases(self) -> None:
        if self.lease_file is None:
            return
        await self.registry.restore(await self.lease_file.load())
        self.registry.add_listener(self.lease_file)

    async def bootstrap(self) -> AuthSession:
        """Authenticate, then fetch and write every configured secret."""
        await self.restore_leases()
        self.session = await self.resolver.resolve()
        self.secrets = await self.fetcher.fetch_all(self.session, self.requests)
        await self.writer.write(self.secrets)
        return self.session

    async def fetch_once(self) -> dict[str, SecretRecord]:
        """One-shot mode: bootstrap, then shut down straight away."""
        with log_context(vault_addr=self.settings.vault_addr, mode="fetch"):
            try:
                await self.bootstrap()
            finally:
                await self.shutdown()
        return self.secrets

    async def run(self, stop: asyncio.Event) -> None:
        """Bootstrap and keep the token alive until ``stop`` is set.

        Raises:
            PermissionDeniedError: If the token was revoked under us
            RetryTimeoutError: If Vault stayed unreachable for a whole window
        """
        with log_context(vault_addr=self.settings.vault_addr, mode="run"):
            try:
                session = await self.bootstrap()
                await self._keep_alive(session, stop)
            finally:
                await self.shutdown()

    async def _keep_alive(self, session: AuthSession, stop: asyncio.Event) -> None:
        lease = session.lease
        if lease is None or not lease.renewable:
            logger.info("Auth token is not renewable; waiting for shutdown")
            await stop.wait()
            return

        renewal = self.settings.renewal
        renewer = LeaseRenewer(
            session,
            self.registry,
            self.retry_policy,
            window=renewal.window_seconds,
            increment=renewal.token_increment_seconds,
        )
        renewal_task = asyncio.create_task(renewer.run(stop), name="token-renewal")
        stop_task = asyncio.create_task(stop.wait(), name="stop-signal")
        try:
            done, _ = await asyncio.wait(
                {renewal_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if renewal_task in done:
                # Raises renewal failures; a clean return means nothing left to renew
                renewal_task.result()
                logger.info("Token renewal finished; waiting for shutdown")
                await stop_task
            else:
                await renewal_task
        finally:
            for task in (renewal_task, stop_task):
                task.cancel()
            await asyncio.gather(renewal_task, stop_task, return_exceptions=True)

    async def shutdown(self) -> None:
        """Revoke the token (best effort) and flush the lease file."""
        if self.session is not None and not self.session.revoked and self.settings.revoke_on_exit:
            await revoke_self(self.session, self.registry)

        if self.lease_file is not None:
            snapshot = await self.registry.snapshot()
            await self.lease_file.save(snapshot)
            logger.debug("Flushed lease file", path=str(self.lease_file.path))
