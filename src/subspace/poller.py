"""Poll independently cached views until they all reflect one operation."""

from __future__ import annotations

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from loguru import logger

from subspace.concurrency import sleep_unless_stopped
from subspace.errors import CallCancelledError, PollExhaustedError, PollTimedOutError, RetryExhaustedError
from subspace.retry import RetryPolicy

type ProbeFn = Callable[[], Awaitable[Any]]
type Predicate = Callable[[list[Any]], bool]
type ProgressObserver = Callable[[PollProgress], Any]

UNKNOWN = None
MAX_POLLING_PERCENT = 95


class PollState(StrEnum):
    POLLING = "polling"
    CONVERGED = "converged"
    TIMED_OUT = "timed_out"
    EXHAUSTED = "exhausted"


def default_interval(attempt: int) -> float:
    """Seconds to wait after ``attempt``: short early on, coarser later."""

    if attempt <= 3:
        return 1.0
    if attempt <= 6:
        return 2.0
    if attempt <= 10:
        return 3.0
    return 5.0


@dataclass(frozen=True)
class PollProgress:
    attempt: int
    max_attempts: int
    percent: int
    phase: str
    elapsed: float
    state: PollState = PollState.POLLING


@dataclass
class ConvergenceState:
    """Mutable state of one poll loop; never outlives ``ConvergencePoller.run``."""

    started_at: float
    max_attempts: int
    max_total_duration: float
    sources: dict[str, ProbeFn]
    predicate: Predicate
    attempt: int = 0
    state: PollState = PollState.POLLING
    values: list[Any] = field(default_factory=list)


@dataclass(frozen=True)
class PollResult:
    state: PollState
    attempts: int
    elapsed: float
    values: dict[str, Any] = field(default_factory=dict)

    @property
    def converged(self) -> bool:
        return self.state is PollState.CONVERGED

    def raise_for_state(self) -> PollResult:
        if self.state is PollState.TIMED_OUT:
            raise PollTimedOutError(self)
        if self.state is PollState.EXHAUSTED:
            raise PollExhaustedError(self)
        return self


class ConvergencePoller:
    """Drive a bounded polling loop over several sources until a joint predicate holds.

    Each tick probes every source concurrently. A probe that still fails after
    its retries counts as ``UNKNOWN`` for that tick instead of ending the loop.
    The loop stops converged, timed out (wall clock), or exhausted (attempts),
    whichever comes first.
    """

    def __init__(
        self,
        sources: Mapping[str, ProbeFn] | Sequence[ProbeFn],
        predicate: Predicate,
        *,
        max_attempts: int = 20,
        max_total_duration: float = 60.0,
        probe_retries: int = 1,
        retry: RetryPolicy | None = None,
        interval: Callable[[int], float] = default_interval,
        on_progress: ProgressObserver | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if isinstance(sources, Mapping):
            self.sources = dict(sources)
        else:
            self.sources = {f"source-{index}": probe for index, probe in enumerate(sources)}
        if not self.sources:
            raise ValueError("at least one source is required")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        if max_total_duration <= 0:
            raise ValueError(f"max_total_duration must be > 0, got {max_total_duration}")
        self.predicate = predicate
        self.max_attempts = max_attempts
        self.max_total_duration = max_total_duration
        self.probe_retries = probe_retries
        self.retry = retry or RetryPolicy()
        self.interval = interval
        self.on_progress = on_progress
        self._clock = clock

    async def run(self, *, cancel: asyncio.Event | None = None) -> PollResult:
        state = ConvergenceState(
            started_at=self._clock(),
            max_attempts=self.max_attempts,
            max_total_duration=self.max_total_duration,
            sources=self.sources,
            predicate=self.predicate,
        )

        while state.state is PollState.POLLING:
            remaining = state.max_total_duration - self._elapsed(state)
            if remaining <= 0:
                state.state = PollState.TIMED_OUT
                break

            state.attempt += 1
            try:
                state.values = await asyncio.wait_for(self._probe_all(state, cancel), timeout=remaining)
            except TimeoutError:
                state.state = PollState.TIMED_OUT
                break

            logger.debug(
                "poll.tick attempt={}/{} known={}/{}",
                state.attempt,
                state.max_attempts,
                _known(state.values),
                len(state.sources),
            )
            if state.predicate(list(state.values)):
                state.state = PollState.CONVERGED
                break

            await self._emit(state, f"Waiting for replication ({_known(state.values)}/{len(state.sources)} sources responding)")

            if state.attempt >= state.max_attempts:
                state.state = PollState.EXHAUSTED
                break
            remaining = state.max_total_duration - self._elapsed(state)
            if remaining <= 0:
                state.state = PollState.TIMED_OUT
                break
            await sleep_unless_stopped(min(self.interval(state.attempt), remaining), cancel)

        result = PollResult(
            state=state.state,
            attempts=state.attempt,
            elapsed=self._elapsed(state),
            values=dict(zip(state.sources, state.values, strict=False)),
        )
        logger.info("poll.finished state={} attempts={} elapsed={:.2f}", result.state.value, result.attempts, result.elapsed)
        await self._emit(state, _TERMINAL_PHASES[state.state])
        return result

    def _elapsed(self, state: ConvergenceState) -> float:
        return self._clock() - state.started_at

    async def _probe_all(self, state: ConvergenceState, cancel: asyncio.Event | None) -> list[Any]:
        return list(
            await asyncio.gather(*(self._probe(name, probe, cancel) for name, probe in state.sources.items()))
        )

    async def _probe(self, name: str, probe: ProbeFn, cancel: asyncio.Event | None) -> Any:
        try:
            return await self.retry.execute(probe, self.probe_retries, cancel=cancel, label=f"probe:{name}")
        except CallCancelledError:
            raise
        except RetryExhaustedError as exc:
            logger.debug("poll.probe_unknown source={} error={!r}", name, exc.last_error)
            return UNKNOWN
        except Exception as exc:
            logger.debug("poll.probe_unknown source={} error={!r}", name, exc)
            return UNKNOWN

    async def _emit(self, state: ConvergenceState, phase: str) -> None:
        if self.on_progress is None:
            return
        progress = PollProgress(
            attempt=state.attempt,
            max_attempts=state.max_attempts,
            percent=self._percent(state),
            phase=phase,
            elapsed=self._elapsed(state),
            state=state.state,
        )
        try:
            value = self.on_progress(progress)
            if inspect.isawaitable(value):
                await value
        except Exception:
            logger.opt(exception=True).warning("poll.observer_failed attempt={}", state.attempt)

    def _percent(self, state: ConvergenceState) -> int:
        if state.state is PollState.CONVERGED:
            return 100
        by_attempts = state.attempt / state.max_attempts
        by_time = self._elapsed(state) / state.max_total_duration
        return min(MAX_POLLING_PERCENT, int(max(by_attempts, by_time) * 100))


_TERMINAL_PHASES = {
    PollState.POLLING: "Polling",
    PollState.CONVERGED: "Converged",
    PollState.TIMED_OUT: "Timed out waiting for replication",
    PollState.EXHAUSTED: "Gave up after the maximum number of attempts",
}


def _known(values: Sequence[Any]) -> int:
    return sum(1 for value in values if value is not UNKNOWN)
