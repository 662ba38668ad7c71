"""Auth token renewal.

Keeps the session's token alive by calling renew-self shortly before the
lease expires. Each renewal retries transient failures with exponential
backoff for at most ``window`` seconds. A 403 means the token was revoked or
lost its policy; renewing stops at once.
"""

import asyncio
import time
from collections.abc import Callable

from ..core.exceptions import (
    PermissionDeniedError,
    RetryCancelledError,
    VaultSidecarError,
    is_permission_denied,
)
from ..core.logging import get_logger
from ..core.retry import RetryOutcome, RetryPolicy
from ..vault.models import AuthSession, Lease
from .lease_registry import LeaseRegistry

logger = get_logger(__name__)

# Never reschedule a renewal sooner than this
MIN_RENEW_DELAY: float = 1.0


class LeaseRenewer:
    """Renews one AuthSession's token until stopped or it becomes unusable."""

    def __init__(
        self,
        session: AuthSession,
        registry: LeaseRegistry,
        retry_policy: RetryPolicy,
        window: float,
        increment: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        lease = session.lease
        if lease is None or not lease.renewable:
            raise ValueError("LeaseRenewer requires a session with a renewable lease")

        self.session = session
        self.registry = registry
        self.retry_policy = retry_policy
        self.window = window
        # Full period, not the remaining ttl
        self.increment = increment or lease.period or lease.ttl
        self._clock = clock
        self.renewals = 0
        self.logger = logger.bind(auth_method=session.method)

    def next_delay(self) -> float:
        """Seconds to wait before the next renewal."""
        lease = self.session.lease
        if lease is None:
            return MIN_RENEW_DELAY
        remaining = lease.seconds_remaining(self._clock())
        return max(MIN_RENEW_DELAY, remaining - self.window)

    async def renew_once(self, cancel: asyncio.Event | None = None) -> Lease:
        """Renew the token, retrying transient errors within the window.

        Raises:
            PermissionDeniedError: If Vault answered 403
            RetryTimeoutError: If the window ran out
            RetryCancelledError: If ``cancel`` was set while backing off
        """
        increment = self.increment
        self.logger.info("Renewing Vault authentication token", increment=increment)

        async def op() -> RetryOutcome[Lease]:
            token = await self.session.token()
            try:
                lease = await self.session.client.renew_self(token, increment)
            except VaultSidecarError as e:
                self.logger.error("Error renewing authentication token", error=str(e))
                if is_permission_denied(e):
                    return RetryOutcome.permanent(PermissionDeniedError(cause=e))
                return RetryOutcome.retry(e)
            return RetryOutcome.ok(lease)

        lease = await self.retry_policy.run(
            op, max_elapsed=self.window, cancel=cancel, name="Token renewal"
        )

        credential = await self.session.replace_lease(lease)
        await self.registry.enroll_auth_token(credential.token, lease)
        self.renewals += 1
        self.logger.info("Vault authentication token renewed", ttl=lease.ttl)
        return lease

    async def run(self, stop: asyncio.Event) -> None:
        """Renew until ``stop`` is set.

        Returns normally once stopped. Permission and timeout failures end
        the loop and propagate.
        """
        while not stop.is_set():
            delay = self.next_delay()
            self.logger.debug("Next token renewal scheduled", in_seconds=round(delay, 1))
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
            except TimeoutError:
                pass
            else:
                break

            try:
                lease = await self.renew_once(cancel=stop)
            except RetryCancelledError:
                break
            if not lease.renewable:
                self.logger.warning("Vault returned a non-renewable lease; stopping renewal")
                return

        self.logger.debug("Token renewal stopped", renewals=self.renewals)


async def revoke_self(session: AuthSession, registry: LeaseRegistry | None = None) -> bool:
    """Revoke the session's token, logging instead of raising on failure.

    Returns:
        True if Vault confirmed the revocation
    """
    logger.debug("Revoking Vault token")
    token = await session.token()
    try:
        await session.client.revoke_self(token)
    except VaultSidecarError as e:
        logger.error(
            "Failed to revoke Vault token; it stays valid until it expires",
            vault_addr=session.client.address,
            error=str(e),
        )
        return False

    session.revoked = True
    if registry is not None:
        await registry.discard_auth_token()
    return True
