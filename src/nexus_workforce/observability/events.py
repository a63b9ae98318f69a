"""In-process event bus.

Every workforce component announces state changes here. The bus keeps a
bounded replay buffer, fans events out to sync and async subscribers, and
forwards entity-changed events to an optional persistence callback (the
journal). A failing subscriber or persistence hook never interrupts the
publisher; the failure comes back as a ``DeliveryError`` and is kept in a
bounded error log.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import threading
from collections import deque
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Final

from nexus_workforce.domain.events import EventType, WorkforceEvent

Subscriber = Callable[[WorkforceEvent], object]
PersistenceCallback = Callable[[WorkforceEvent], object]

_ERROR_LOG_SIZE: Final[int] = 1024

# Advisory events (scores, warnings, per-attempt results) stay out of durable storage.
DEFAULT_PERSISTED_EVENT_TYPES: Final[frozenset[EventType]] = frozenset(EventType) - {
    EventType.WORKER_SCORED,
    EventType.BUDGET_WARNING,
    EventType.VERIFICATION_ATTEMPT_FAILED,
    EventType.VERIFICATION_PASSED,
}


@dataclass(frozen=True, slots=True)
class DeliveryError:
    stage: str
    event_id: str
    target: str
    error_type: str
    message: str

    @classmethod
    def capture(cls, stage: str, event: WorkforceEvent, target: object, exc: Exception) -> DeliveryError:
        name = getattr(target, "__qualname__", None) or type(target).__name__
        return cls(stage, event.event_id, str(name), type(exc).__name__, str(exc))


class EventBus:
    def __init__(
        self,
        *,
        buffer_size: int = 512,
        persistence_callback: PersistenceCallback | None = None,
        persisted_event_types: Sequence[str | EventType] | None = None,
    ) -> None:
        if isinstance(buffer_size, bool) or not isinstance(buffer_size, int) or buffer_size <= 0:
            raise ValueError(f"buffer_size must be a positive integer, got {buffer_size!r}")

        self._lock = threading.RLock()
        self._history: deque[WorkforceEvent] = deque(maxlen=buffer_size)
        self._errors: deque[DeliveryError] = deque(maxlen=_ERROR_LOG_SIZE)
        self._subscribers: dict[int, tuple[EventType | None, Subscriber]] = {}
        self._tokens = itertools.count(1)
        self._scheduled: set[asyncio.Task[None]] = set()
        self._persist = persistence_callback
        self._persisted = (
            DEFAULT_PERSISTED_EVENT_TYPES
            if persisted_event_types is None
            else frozenset(_as_event_type(item) for item in persisted_event_types)
        )

    def set_persistence_callback(self, callback: PersistenceCallback | None) -> None:
        with self._lock:
            self._persist = callback

    def subscribe(self, event_type: str | EventType | None, callback: Subscriber) -> int:
        """Deliver events of ``event_type`` (every event when ``None``) to ``callback``."""

        if not callable(callback):
            raise ValueError("callback must be callable")
        wanted = None if event_type is None else _as_event_type(event_type)
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = (wanted, callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscribers.pop(token, None) is not None

    def emit(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        project_id: str | None = None,
        correlation_id: str | None = None,
    ) -> tuple[WorkforceEvent, tuple[DeliveryError, ...]]:
        event = _build(event_type, payload, project_id, correlation_id)
        return event, self.publish(event)

    async def emit_async(
        self,
        event_type: str | EventType,
        payload: Mapping[str, object],
        *,
        project_id: str | None = None,
        correlation_id: str | None = None,
    ) -> tuple[WorkforceEvent, tuple[DeliveryError, ...]]:
        event = _build(event_type, payload, project_id, correlation_id)
        return event, await self.publish_async(event)

    def publish(self, event: WorkforceEvent) -> tuple[DeliveryError, ...]:
        """Deliver ``event`` synchronously.

        Coroutine results are scheduled on the running loop when there is one
        (collect them with ``drain_async``) and run to completion otherwise.
        """

        try:
            loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        errors = []
        for stage, callback in self._accept(event):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    self._run_or_schedule(result, loop, stage, event, callback)
            except Exception as exc:  # noqa: BLE001 - isolated per target
                errors.append(DeliveryError.capture(stage, event, callback, exc))
        return self._record(errors)

    async def publish_async(self, event: WorkforceEvent) -> tuple[DeliveryError, ...]:
        errors = []
        for stage, callback in self._accept(event):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001 - isolated per target
                errors.append(DeliveryError.capture(stage, event, callback, exc))
        return self._record(errors)

    async def drain_async(self) -> tuple[DeliveryError, ...]:
        """Wait for coroutines scheduled by ``publish``; returns the error log."""

        with self._lock:
            pending = tuple(self._scheduled)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        return self.delivery_errors()

    def replay(
        self,
        *,
        since: datetime | None = None,
        event_type: str | EventType | None = None,
        project_id: str | None = None,
        limit: int | None = None,
    ) -> tuple[WorkforceEvent, ...]:
        """Buffered events in publish order, oldest first."""

        if since is not None:
            if since.utcoffset() is None:
                raise ValueError("since datetime must be timezone-aware")
            since = since.astimezone(UTC)
        wanted = None if event_type is None else _as_event_type(event_type)
        with self._lock:
            history = tuple(self._history)

        matched = tuple(
            event
            for event in history
            if (since is None or event.timestamp > since)
            and (wanted is None or event.event_type is wanted)
            and (project_id is None or event.project_id == project_id)
        )
        return _tail(matched, limit)

    def delivery_errors(self, *, limit: int | None = None) -> tuple[DeliveryError, ...]:
        with self._lock:
            return _tail(tuple(self._errors), limit)

    def _accept(self, event: WorkforceEvent) -> list[tuple[str, Callable[[WorkforceEvent], object]]]:
        if not isinstance(event, WorkforceEvent):
            raise ValueError(f"event must be WorkforceEvent, got {type(event).__name__}")
        with self._lock:
            self._history.append(event)
            targets: list[tuple[str, Callable[[WorkforceEvent], object]]] = []
            if self._persist is not None and event.event_type in self._persisted:
                targets.append(("persistence", self._persist))
            targets.extend(
                ("subscriber", callback)
                for wanted, callback in self._subscribers.values()
                if wanted is None or wanted is event.event_type
            )
        return targets

    def _record(self, errors: list[DeliveryError]) -> tuple[DeliveryError, ...]:
        if errors:
            with self._lock:
                self._errors.extend(errors)
        return tuple(errors)

    def _run_or_schedule(
        self,
        awaitable: Awaitable[object],
        loop: asyncio.AbstractEventLoop | None,
        stage: str,
        event: WorkforceEvent,
        callback: object,
    ) -> None:
        if loop is None:
            asyncio.run(_await(awaitable))
            return

        task = loop.create_task(_await(awaitable))
        with self._lock:
            self._scheduled.add(task)

        def done(finished: asyncio.Task[None]) -> None:
            with self._lock:
                self._scheduled.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if isinstance(exc, Exception):
                self._record([DeliveryError.capture(stage, event, callback, exc)])

        task.add_done_callback(done)


async def _await(awaitable: Awaitable[object]) -> None:
    await awaitable


def _build(
    event_type: str | EventType,
    payload: Mapping[str, object],
    project_id: str | None,
    correlation_id: str | None,
) -> WorkforceEvent:
    return WorkforceEvent(
        event_type=_as_event_type(event_type),
        payload=dict(payload),  # type: ignore[arg-type]
        project_id=project_id,
        correlation_id=correlation_id,
    )


def _as_event_type(value: str | EventType) -> EventType:
    try:
        return EventType(value)
    except ValueError as exc:
        raise ValueError(f"invalid event_type {value!r}") from exc


def _tail(items: tuple[Any, ...], limit: int | None) -> tuple[Any, ...]:
    if limit is None:
        return items
    return items[-limit:] if limit > 0 else ()


__all__ = [
    "DEFAULT_PERSISTED_EVENT_TYPES",
    "DeliveryError",
    "EventBus",
    "PersistenceCallback",
    "Subscriber",
]
