"""
nexus-workforce: unit tests for observability event bus

File: tests/unit/observability/test_events.py

Purpose
- Validate event bus fanout resilience, replay semantics, and persistence hooks.

What this test file should cover
- Sync+async subscriber support.
- Subscriber exception isolation.
- Ring-buffer replay ordering and filters.
- Persistence filtering to entity-changed event types.

Non-functional requirements
- No sleep-based synchronization.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from nexus_workforce.domain.events import EventType, WorkforceEvent
from nexus_workforce.observability.events import EventBus


def test_subscribers_receive_events_in_publish_order() -> None:
    bus = EventBus(buffer_size=10)
    sub_a: list[str] = []
    sub_b: list[str] = []

    bus.subscribe(None, lambda event: sub_a.append(event.event_type.value))
    bus.subscribe(None, lambda event: sub_b.append(event.event_type.value))

    _, errors_1 = bus.emit("TaskEnqueued", {"x": 1})
    _, errors_2 = bus.emit("TaskAssigned", {"x": 2})

    assert errors_1 == ()
    assert errors_2 == ()
    assert sub_a == ["TaskEnqueued", "TaskAssigned"]
    assert sub_b == ["TaskEnqueued", "TaskAssigned"]


def test_typed_subscription_only_sees_its_event_type() -> None:
    bus = EventBus()
    seen: list[str] = []
    bus.subscribe(EventType.GATE_CREATED, lambda event: seen.append(event.payload["gate_id"]))

    bus.emit(EventType.GATE_CREATED, {"gate_id": "gate-1"})
    bus.emit(EventType.GATE_RESOLVED, {"gate_id": "gate-1"})

    assert seen == ["gate-1"]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen: list[WorkforceEvent] = []
    token = bus.subscribe(None, seen.append)

    assert bus.unsubscribe(token) is True
    assert bus.unsubscribe(token) is False
    bus.emit(EventType.TASK_ENQUEUED, {})

    assert seen == []


async def test_async_subscriber_supports_publish_async_and_sync_publish() -> None:
    bus = EventBus(buffer_size=10)
    received: list[str] = []

    async def async_sub(event: WorkforceEvent) -> None:
        received.append(event.event_type.value)

    bus.subscribe(None, async_sub)

    _, async_errors = await bus.emit_async("WorkerSpawned", {"n": 1})
    assert async_errors == ()

    _, sync_errors = bus.emit("WorkerRetired", {"n": 2})
    assert sync_errors == ()

    await bus.drain_async()
    assert received == ["WorkerSpawned", "WorkerRetired"]


def test_subscriber_exception_does_not_break_other_subscribers() -> None:
    bus = EventBus(buffer_size=10)
    received: list[str] = []

    def broken(_event: WorkforceEvent) -> None:
        raise RuntimeError("boom")

    bus.subscribe(None, broken)
    bus.subscribe(None, lambda event: received.append(event.event_type.value))

    _, errors = bus.emit("TaskFailed", {"reason": "x"})

    assert received == ["TaskFailed"]
    assert len(errors) == 1
    assert errors[0].stage == "subscriber"
    assert errors[0].error_type == "RuntimeError"
    assert bus.delivery_errors() == errors


def test_persistence_only_sees_entity_changed_events() -> None:
    persisted: list[str] = []
    bus = EventBus(persistence_callback=lambda event: persisted.append(event.event_type.value))

    bus.emit(EventType.TASK_COMPLETED, {"task_id": "task-1"})
    bus.emit(EventType.WORKER_SCORED, {"score": 0.7})
    bus.emit(EventType.BUDGET_WARNING, {"spent_usd": 80.0})

    assert persisted == ["TaskCompleted"]


def test_persistence_failure_is_recorded_and_event_stays_replayable() -> None:
    def persist(_event: WorkforceEvent) -> None:
        raise OSError("disk full")

    bus = EventBus(persistence_callback=persist)
    event, errors = bus.emit(EventType.GATE_CREATED, {"gate_id": "gate-1"})

    assert [error.stage for error in errors] == ["persistence"]
    assert bus.replay() == (event,)


def test_replay_ring_buffer_is_bounded_and_ordered() -> None:
    bus = EventBus(buffer_size=2)
    bus.emit("TaskEnqueued", {"v": 1})
    bus.emit("TaskAssigned", {"v": 2})
    bus.emit("TaskCompleted", {"v": 3})

    replay = bus.replay()

    assert [event.event_type.value for event in replay] == ["TaskAssigned", "TaskCompleted"]


def test_replay_filters_by_time_type_and_project() -> None:
    bus = EventBus()
    base = datetime(2026, 3, 1, tzinfo=UTC)
    first = WorkforceEvent(EventType.TASK_ENQUEUED, {}, project_id="a", timestamp=base)
    second = WorkforceEvent(
        EventType.TASK_ENQUEUED, {}, project_id="b", timestamp=base + timedelta(seconds=1)
    )
    third = WorkforceEvent(
        EventType.TASK_COMPLETED, {}, project_id="a", timestamp=base + timedelta(seconds=2)
    )
    for event in (first, second, third):
        bus.publish(event)

    assert bus.replay(since=base) == (second, third)
    assert bus.replay(event_type=EventType.TASK_ENQUEUED) == (first, second)
    assert bus.replay(project_id="a") == (first, third)
    assert bus.replay(limit=1) == (third,)
    assert bus.replay(limit=0) == ()


def test_replay_rejects_naive_since() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        EventBus().replay(since=datetime(2026, 3, 1))


@pytest.mark.parametrize("size", [0, -1, True])
def test_invalid_buffer_size(size: object) -> None:
    with pytest.raises(ValueError):
        EventBus(buffer_size=size)  # type: ignore[arg-type]


def test_emit_rejects_unknown_event_type() -> None:
    with pytest.raises(ValueError, match="invalid event_type"):
        EventBus().emit("WorkerExploded", {})
