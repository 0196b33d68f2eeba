"""Exponential backoff shared by every remote primitive."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from subspace.concurrency import sleep_unless_stopped, wait_until_stopped
from subspace.errors import CallCancelledError, RetryExhaustedError

BACKOFF_BASE_SECONDS = 1.0


def backoff_delay(failed_attempt: int, *, base: float = BACKOFF_BASE_SECONDS) -> float:
    """Delay after the n-th failed attempt (1-based): 1s, 2s, 4s, ..."""

    if failed_attempt < 1:
        raise ValueError(f"attempt numbers start at 1, got {failed_attempt}")
    return base * 2 ** (failed_attempt - 1)


def total_backoff(max_attempts: int, *, base: float = BACKOFF_BASE_SECONDS) -> float:
    """Total sleep spent by a call that fails ``max_attempts`` times."""

    return sum(backoff_delay(n, base=base) for n in range(1, max_attempts))


class RetryPolicy:
    """Run a fallible coroutine up to ``max_attempts`` times with exponential backoff.

    The caller's cancellation event interrupts both a running attempt and a
    backoff sleep, raising ``CallCancelledError`` rather than
    ``RetryExhaustedError``.
    """

    def __init__(
        self,
        *,
        base_delay: float = BACKOFF_BASE_SECONDS,
        retry_on: tuple[type[BaseException], ...] = (Exception,),
    ) -> None:
        self.base_delay = base_delay
        self.retry_on = retry_on

    def delay(self, failed_attempt: int) -> float:
        return backoff_delay(failed_attempt, base=self.base_delay)

    def budget(self, max_attempts: int) -> float:
        return total_backoff(max_attempts, base=self.base_delay)

    async def execute[T](
        self,
        attempt: Callable[[], Awaitable[T]],
        max_attempts: int,
        *,
        cancel: asyncio.Event | None = None,
        label: str = "call",
    ) -> T:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        last_error: BaseException | None = None
        for number in range(1, max_attempts + 1):
            try:
                return await wait_until_stopped(attempt(), cancel)
            except CallCancelledError:
                logger.info("retry.cancelled label={} attempt={}", label, number)
                raise
            except self.retry_on as exc:
                last_error = exc
                logger.warning(
                    "retry.attempt_failed label={} attempt={}/{} error={!r}",
                    label,
                    number,
                    max_attempts,
                    exc,
                )
            if number < max_attempts:
                try:
                    await sleep_unless_stopped(self.delay(number), cancel)
                except CallCancelledError:
                    logger.info("retry.cancelled label={} attempt={}", label, number)
                    raise

        assert last_error is not None
        logger.error("retry.exhausted label={} attempts={}", label, max_attempts)
        raise RetryExhaustedError(max_attempts, last_error) from last_error
