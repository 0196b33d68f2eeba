from __future__ import annotations

import asyncio
from collections.abc import Awaitable

from subspace.errors import CallCancelledError


async def wait_until_stopped[T](coro: Awaitable[T], stop_event: asyncio.Event | None) -> T:
    """Wait for the given coroutine to complete, unless the stop_event is set first.

    A stop observed this way raises ``CallCancelledError``; cancellation of the
    awaiting task itself still surfaces as ``asyncio.CancelledError``.
    """
    if stop_event is None:
        return await coro
    if stop_event.is_set():
        if asyncio.iscoroutine(coro):
            coro.close()
        raise CallCancelledError()
    fut = asyncio.ensure_future(coro)
    waiter = asyncio.ensure_future(stop_event.wait())
    waiter.add_done_callback(lambda _: fut.cancel())
    try:
        return await fut
    except asyncio.CancelledError:
        task = asyncio.current_task()
        if stop_event.is_set() and (task is None or not task.cancelling()):
            raise CallCancelledError() from None
        raise
    finally:
        waiter.cancel()


async def sleep_unless_stopped(delay: float, stop_event: asyncio.Event | None) -> None:
    """Sleep for ``delay`` seconds; a stop signal ends the sleep with ``CallCancelledError``."""
    if stop_event is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=delay)
    except TimeoutError:
        return
    raise CallCancelledError("Cancelled during backoff")
