"""Concurrency primitives shared by the dispatcher, gates, and verification loop."""

from __future__ import annotations

import asyncio
import inspect
import threading
from contextlib import contextmanager, suppress
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation token.

    ``cancel`` may be called from any thread. Each waiting event loop gets its
    own ``asyncio.Event``, set through ``call_soon_threadsafe`` when the
    cancelling thread is not that loop's thread.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._events: dict[asyncio.AbstractEventLoop, asyncio.Event] = {}

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            events = list(self._events.items())
            self._events.clear()
        try:
            current: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            current = None
        for loop, event in events:
            if loop is current:
                event.set()
            elif not loop.is_closed():
                loop.call_soon_threadsafe(event.set)

    @property
    def is_cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    async def wait(self) -> None:
        loop = asyncio.get_running_loop()
        with self._lock:
            if self._cancelled:
                return
            event = self._events.get(loop)
            if event is None:
                event = self._events[loop] = asyncio.Event()
        await event.wait()

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise asyncio.CancelledError("operation cancelled")


class KeyedLocks:
    """Registry of re-entrant locks, one per key (project id).

    Components that mutate the same project's state share one registry so that
    queue mutation and worker status changes happen under a single critical section.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield

    def discard(self, key: str) -> None:
        with self._guard:
            self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


async def run_with_timeout(
    coroutine: Awaitable[T],
    timeout_seconds: float,
    cancel_token: CancellationToken | None = None,
) -> T:
    """Await ``coroutine`` for at most ``timeout_seconds``.

    Raises ``TimeoutError`` when time runs out and ``asyncio.CancelledError``
    when ``cancel_token`` fires first; the inner work is cancelled either way.
    """

    if timeout_seconds <= 0 or (cancel_token is not None and cancel_token.is_cancelled):
        if inspect.iscoroutine(coroutine):
            # Never scheduled; close it so the interpreter does not warn at GC.
            coroutine.close()
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        raise asyncio.CancelledError("operation cancelled")

    work = asyncio.ensure_future(coroutine)
    watchers: set[asyncio.Future[object]] = {work}
    cancelled = None
    if cancel_token is not None:
        cancelled = asyncio.ensure_future(cancel_token.wait())
        watchers.add(cancelled)

    try:
        done, _ = await asyncio.wait(
            watchers, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED
        )
        if work in done:
            return work.result()
        if cancelled is not None and cancelled in done:
            raise asyncio.CancelledError("operation cancelled")
        raise TimeoutError(f"operation timed out after {timeout_seconds} seconds")
    finally:
        for future in watchers:
            await _cancel_quietly(future)


async def maybe_await(value: T | Awaitable[T]) -> T:
    """Await ``value`` when it is awaitable; plain values pass straight through."""
    if inspect.isawaitable(value):
        return await value
    return value


async def call_off_loop(func: Callable[..., T | Awaitable[T]], *args: object) -> T:
    """Call ``func`` without blocking the event loop.

    Coroutine functions run on the loop; plain callables run in the default
    executor. A worker thread cannot be interrupted, so when the caller stops
    waiting the thread finishes on its own and its result is dropped.
    """
    if inspect.iscoroutinefunction(func):
        return await func(*args)
    return await maybe_await(await asyncio.to_thread(func, *args))


async def _cancel_quietly(future: asyncio.Future[object]) -> None:
    if future.done():
        return
    future.cancel()
    with suppress(asyncio.CancelledError):
        await future


__all__ = [
    "CancellationToken",
    "KeyedLocks",
    "call_off_loop",
    "maybe_await",
    "run_with_timeout",
]
