"""
nexus-workforce: unit tests for the task dispatcher

File: tests/unit/control_plane/test_dispatcher.py

Purpose
- Validate FIFO-per-role ordering, cross-role arrival ordering, senior-role
  fallback, requeue position, drain, and mutual exclusion under threads.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from nexus_workforce.control_plane.dispatcher import TaskDispatcher
from nexus_workforce.control_plane.lifecycle import WorkerLifecycleManager
from nexus_workforce.domain.events import EventType, WorkforceEvent
from nexus_workforce.domain.models import (
    AllocationComposition,
    TaskStatus,
    WorkerRole,
    WorkerStatus,
)
from nexus_workforce.errors import (
    InvalidTaskTransitionError,
    ProjectClosedError,
    TaskNotFoundError,
)
from nexus_workforce.observability.events import EventBus


def _engine(
    composition: dict[str, int],
    *,
    auto_dispatch: bool = True,
    allow_role_fallback: bool | None = None,
    bus: EventBus | None = None,
) -> tuple[WorkerLifecycleManager, TaskDispatcher]:
    lifecycle = WorkerLifecycleManager(event_bus=bus)
    lifecycle.spawn("acme", AllocationComposition.from_mapping(composition))
    dispatcher = TaskDispatcher(
        lifecycle=lifecycle,
        event_bus=bus,
        auto_dispatch=auto_dispatch,
        allow_role_fallback=allow_role_fallback,
    )
    return lifecycle, dispatcher


def _finish(dispatcher: TaskDispatcher, task_id: str) -> None:
    dispatcher.mark_executing(task_id)
    dispatcher.complete(task_id, result="ok")


def test_tasks_of_one_role_are_assigned_in_arrival_order() -> None:
    _, dispatcher = _engine({"builder": 1})

    first = dispatcher.submit("acme", "builder", {"n": 1})
    second = dispatcher.submit("acme", "builder", {"n": 2})
    third = dispatcher.submit("acme", "builder", {"n": 3})

    assert first.status is TaskStatus.ASSIGNED
    assert dispatcher.queued_task_ids("acme") == [second.id, third.id]

    _finish(dispatcher, first.id)

    assert second.status is TaskStatus.ASSIGNED
    assert second.assigned_worker_id == "acme/builder/001"
    assert dispatcher.queued_task_ids("acme", WorkerRole.BUILDER) == [third.id]


@settings(max_examples=50, deadline=None)
@given(roles=st.lists(st.sampled_from(["builder", "reviewer"]), min_size=1, max_size=24))
def test_fifo_per_role_holds_for_any_arrival_sequence(roles: list[str]) -> None:
    bus = EventBus(buffer_size=4096)
    _, dispatcher = _engine({"builder": 1, "reviewer": 1}, allow_role_fallback=False, bus=bus)
    submitted = [dispatcher.submit("acme", role) for role in roles]

    while any(task.status is TaskStatus.ASSIGNED for task in submitted):
        for task in submitted:
            if task.status is TaskStatus.ASSIGNED:
                _finish(dispatcher, task.id)

    assigned = [event.payload["task_id"] for event in bus.replay(event_type=EventType.TASK_ASSIGNED)]
    assert all(task.status is TaskStatus.COMPLETED for task in submitted)
    for role in set(roles):
        arrival = [task.id for task in submitted if task.required_role.value == role]
        assert [task_id for task_id in assigned if task_id in arrival] == arrival


def test_heads_are_served_by_lowest_arrival_sequence_across_roles() -> None:
    _, dispatcher = _engine({"builder": 1, "reviewer": 1}, auto_dispatch=False)
    review = dispatcher.submit("acme", "reviewer")
    build = dispatcher.submit("acme", "builder")

    result = dispatcher.try_assign("acme")

    assert result.assigned_task_ids == (review.id, build.id)
    assert result.violations == ()


def test_fallback_borrows_nearest_senior_role_only_after_exact_pass() -> None:
    _, dispatcher = _engine({"reviewer": 1, "senior_builder": 1}, auto_dispatch=False)
    build = dispatcher.submit("acme", "builder")
    review = dispatcher.submit("acme", "reviewer")

    result = dispatcher.try_assign("acme")

    assert result.assigned_task_ids == (review.id, build.id)
    exact, borrowed = result.assignments
    assert not exact.fallback
    assert borrowed.fallback
    assert borrowed.worker_role is WorkerRole.SENIOR_BUILDER


def test_fallback_can_be_disabled() -> None:
    _, dispatcher = _engine({"senior_builder": 1}, allow_role_fallback=False)

    task = dispatcher.submit("acme", "builder")

    assert task.status is TaskStatus.QUEUED
    assert dispatcher.snapshot("acme").queued == {"builder": 1}


def test_higher_scoring_idle_worker_is_preferred() -> None:
    lifecycle, dispatcher = _engine({"builder": 2}, auto_dispatch=False)
    lifecycle.record_outcome("acme/builder/002", True)
    task = dispatcher.submit("acme", "builder")

    dispatcher.try_assign("acme")

    assert task.assigned_worker_id == "acme/builder/002"


def test_requeue_restores_arrival_position_and_frees_worker() -> None:
    lifecycle, dispatcher = _engine({"builder": 1}, auto_dispatch=False)
    first = dispatcher.submit("acme", "builder")
    second = dispatcher.submit("acme", "builder")
    dispatcher.try_assign("acme")
    dispatcher.mark_executing(first.id)

    dispatcher.requeue(first.id, reason="worker_lost")

    assert first.status is TaskStatus.QUEUED
    assert first.retry_count == 1
    assert first.assigned_worker_id is None
    assert lifecycle.get("acme/builder/001").status is WorkerStatus.IDLE
    assert dispatcher.queued_task_ids("acme") == [first.id, second.id]


def test_illegal_transitions_and_unknown_tasks_raise() -> None:
    _, dispatcher = _engine({"builder": 1}, auto_dispatch=False)
    task = dispatcher.submit("acme", "builder")

    with pytest.raises(InvalidTaskTransitionError, match="queued -> completed"):
        dispatcher.complete(task.id)
    with pytest.raises(InvalidTaskTransitionError):
        dispatcher.resume_executing(task.id)
    with pytest.raises(TaskNotFoundError):
        dispatcher.get("task-missing")


def test_gate_round_trip_keeps_worker_busy() -> None:
    lifecycle, dispatcher = _engine({"builder": 1})
    task = dispatcher.submit("acme", "builder", gate_kind="pre_commit")
    dispatcher.mark_executing(task.id)

    dispatcher.mark_awaiting_gate(task.id, "gate-1")
    assert lifecycle.get("acme/builder/001").status is WorkerStatus.BUSY
    dispatcher.resume_executing(task.id)
    dispatcher.complete(task.id, "done", cost_usd=0.5)

    assert task.status is TaskStatus.COMPLETED
    assert task.cost_usd == 0.5
    assert lifecycle.get("acme/builder/001").status is WorkerStatus.IDLE


def test_fail_records_reason_and_feedback() -> None:
    _, dispatcher = _engine({"builder": 1})
    task = dispatcher.submit("acme", "builder")
    dispatcher.mark_executing(task.id)

    dispatcher.fail(task.id, "verification_exhausted", feedback="tests still red")

    assert task.status is TaskStatus.FAILED
    assert task.failure_reason == "verification_exhausted"
    assert task.last_feedback == "tests still red"
    assert task.assigned_worker_id is None


def test_drain_cancels_everything_and_closes_project() -> None:
    bus = EventBus()
    lifecycle, dispatcher = _engine({"builder": 1}, bus=bus)
    active = dispatcher.submit("acme", "builder")
    queued = dispatcher.submit("acme", "builder")

    cancelled = dispatcher.drain("acme")

    assert {task.id for task in cancelled} == {active.id, queued.id}
    assert all(task.status is TaskStatus.CANCELLED for task in cancelled)
    assert lifecycle.get("acme/builder/001").status is WorkerStatus.IDLE
    assert dispatcher.is_closed("acme")
    assert dispatcher.snapshot("acme").to_dict()["queue_depth"] == 0
    assert len(bus.replay(event_type=EventType.TASK_CANCELLED)) == 2
    with pytest.raises(ProjectClosedError):
        dispatcher.submit("acme", "builder")


def test_assignments_are_mutually_exclusive_under_concurrency() -> None:
    bus = EventBus(buffer_size=4096)
    _, dispatcher = _engine({"builder": 4, "reviewer": 2}, bus=bus)
    holding: dict[str, str] = {}
    violations: list[str] = []
    guard = threading.Lock()

    def track(event: WorkforceEvent) -> None:
        worker_id = event.payload.get("worker_id")
        if not isinstance(worker_id, str):
            return
        with guard:
            if event.event_type is EventType.TASK_ASSIGNED:
                if worker_id in holding:
                    violations.append(f"{worker_id} double-booked")
                holding[worker_id] = str(event.payload["task_id"])
            elif holding.get(worker_id) == event.payload["task_id"]:
                del holding[worker_id]

    bus.subscribe(EventType.TASK_ASSIGNED, track)
    bus.subscribe(EventType.TASK_COMPLETED, track)

    roles = ["builder", "builder", "reviewer"]
    with ThreadPoolExecutor(max_workers=8) as pool:
        submitted = list(
            pool.map(lambda n: dispatcher.submit("acme", roles[n % 3], {"n": n}), range(120))
        )
        for _ in range(200):
            assigned = [task.id for task in dispatcher.tasks("acme", statuses={TaskStatus.ASSIGNED})]
            if not assigned:
                break
            list(pool.map(lambda task_id: _finish(dispatcher, task_id), assigned))

    assert violations == []
    assert all(task.status is TaskStatus.COMPLETED for task in submitted)
    assert len(bus.replay(event_type=EventType.TASK_ASSIGNED)) == 120
