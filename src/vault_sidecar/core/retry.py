"""Exponential backoff retry policy.

Operations report their result as a tagged ``RetryOutcome`` so the policy
never has to know how a caller classifies its errors:

    async def op() -> RetryOutcome[Lease]:
        try:
            return RetryOutcome.ok(await client.renew_self(token, 3600))
        except VaultAPIError as e:
            if is_permission_denied(e):
                return RetryOutcome.permanent(PermissionDeniedError(cause=e))
            return RetryOutcome.retry(e)

    lease = await policy.run(op, max_elapsed=60, cancel=stop_event)
"""

import asyncio
import random
import time
from collections.abc import Awaitable, Callable, Generator
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from .exceptions import RetryCancelledError, RetryTimeoutError
from .logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


class OutcomeKind(str, Enum):
    OK = "ok"
    RETRY = "retry"
    PERMANENT = "permanent"


@dataclass(frozen=True, slots=True)
class RetryOutcome(Generic[T]):
    """Result of a single attempt."""

    kind: OutcomeKind
    value: T | None = None
    error: BaseException | None = None

    @classmethod
    def ok(cls, value: T) -> "RetryOutcome[T]":
        return cls(OutcomeKind.OK, value=value)

    @classmethod
    def retry(cls, error: BaseException) -> "RetryOutcome[T]":
        return cls(OutcomeKind.RETRY, error=error)

    @classmethod
    def permanent(cls, error: BaseException) -> "RetryOutcome[T]":
        return cls(OutcomeKind.PERMANENT, error=error)


class RetryPolicy:
    """Retry an async operation with jittered exponential backoff.

    Each delay is drawn uniformly from
    ``[interval * (1 - randomization_factor), interval * (1 + randomization_factor)]``
    and the interval grows by ``multiplier`` after every attempt, capped at
    ``max_interval``. The loop gives up once the next wait would take the total
    elapsed time past ``max_elapsed``.
    """

    def __init__(
        self,
        initial_interval: float = 0.5,
        multiplier: float = 2.0,
        randomization_factor: float = 0.5,
        max_interval: float = 60.0,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if initial_interval <= 0:
            raise ValueError("initial_interval must be positive")
        if multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if not 0.0 <= randomization_factor <= 1.0:
            raise ValueError("randomization_factor must be within [0, 1]")

        self.initial_interval = initial_interval
        self.multiplier = multiplier
        self.randomization_factor = randomization_factor
        self.max_interval = max_interval
        self._rng = rng or random.Random()
        self._clock = clock

    def delays(self) -> Generator[float, None, None]:
        """Yield the successive jittered delays (unbounded)."""
        interval = self.initial_interval
        while True:
            delta = self.randomization_factor * interval
            yield self._rng.uniform(interval - delta, interval + delta)
            interval = min(interval * self.multiplier, self.max_interval)

    async def run(
        self,
        operation: Callable[[], Awaitable[RetryOutcome[T]]],
        max_elapsed: float,
        cancel: asyncio.Event | None = None,
        name: str = "operation",
    ) -> T:
        """Run ``operation`` until it succeeds, fails permanently or time runs out.

        Args:
            operation: Zero-argument coroutine function returning a RetryOutcome
            max_elapsed: Total time budget in seconds
            cancel: Setting this event aborts the loop before the next attempt
            name: Used in log messages and errors

        Returns:
            The value carried by the first ``ok`` outcome

        Raises:
            BaseException: The error carried by a ``permanent`` outcome
            RetryTimeoutError: If the budget is exhausted
            RetryCancelledError: If ``cancel`` is set
        """
        started = self._clock()
        attempts = 0
        last_error: BaseException | None = None

        for delay in self.delays():
            if cancel is not None and cancel.is_set():
                raise RetryCancelledError(f"{name} cancelled", attempts=attempts)

            attempts += 1
            outcome = await operation()

            if outcome.kind is OutcomeKind.OK:
                if attempts > 1:
                    logger.info(f"{name} succeeded after retry", attempts=attempts)
                return outcome.value  # type: ignore[return-value]

            if outcome.kind is OutcomeKind.PERMANENT:
                logger.debug(f"{name} failed permanently", attempts=attempts)
                raise outcome.error  # type: ignore[misc]

            last_error = outcome.error
            elapsed = self._clock() - started
            if elapsed + delay > max_elapsed:
                raise RetryTimeoutError(
                    f"{name} did not succeed within {max_elapsed}s: {last_error}",
                    attempts=attempts,
                    elapsed=elapsed,
                    cause=last_error if isinstance(last_error, Exception) else None,
                ) from last_error

            logger.debug(
                f"{name} failed, retrying",
                attempt=attempts,
                delay_seconds=round(delay, 3),
                error=str(last_error),
            )
            if await self._wait(delay, cancel):
                raise RetryCancelledError(f"{name} cancelled", attempts=attempts)

        raise AssertionError("unreachable")

    @staticmethod
    async def _wait(delay: float, cancel: asyncio.Event | None) -> bool:
        """Sleep for ``delay``; return True if ``cancel`` fired first."""
        if cancel is None:
            await asyncio.sleep(delay)
            return False
        try:
            await asyncio.wait_for(cancel.wait(), timeout=delay)
        except TimeoutError:
            return False
        return True

