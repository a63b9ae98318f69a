"""
Per-project task queues and worker assignment.

Purpose
- Keep one FIFO sub-queue per required role for every project.
- Assign queued tasks to idle workers under the project's critical section, so
  queue mutation and the worker Idle -> Busy compare-and-set are atomic together.

Assignment order
- Exact-role pass first: among roles whose head task has an idle worker of that
  role, the head with the lowest arrival sequence is assigned first.
- Fallback pass second: only once no exact-role idle worker remains for any
  waiting role, heads may borrow an idle worker of the nearest more-senior role.
- A task is never skipped inside its own role's sub-queue.
"""

from __future__ import annotations

import bisect
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from nexus_workforce.domain import ids
from nexus_workforce.domain.events import EventType
from nexus_workforce.domain.models import (
    TASK_TRANSITIONS,
    GateKind,
    Task,
    TaskStatus,
    Worker,
    WorkerRole,
    json_safe,
    more_senior_roles,
)
from nexus_workforce.errors import (
    InvalidTaskTransitionError,
    ProjectClosedError,
    TaskNotFoundError,
)
from nexus_workforce.persistence.stores import InMemoryTaskStore, TaskStore

if TYPE_CHECKING:
    from nexus_workforce.control_plane.lifecycle import WorkerLifecycleManager
    from nexus_workforce.observability.events import EventBus


@dataclass(frozen=True, slots=True)
class Assignment:
    task_id: str
    worker_id: str
    required_role: WorkerRole
    worker_role: WorkerRole

    @property
    def fallback(self) -> bool:
        return self.worker_role is not self.required_role

    def to_dict(self) -> dict[str, object]:
        return {
            "task_id": self.task_id,
            "worker_id": self.worker_id,
            "required_role": self.required_role.value,
            "worker_role": self.worker_role.value,
            "fallback": self.fallback,
        }


@dataclass(frozen=True, slots=True)
class DispatchViolation:
    """An assignment attempt that observed state only a concurrency bug can produce."""

    task_id: str
    worker_id: str | None
    reason: str


@dataclass(frozen=True, slots=True)
class DispatchResult:
    assignments: tuple[Assignment, ...] = ()
    violations: tuple[DispatchViolation, ...] = ()

    @property
    def assigned_task_ids(self) -> tuple[str, ...]:
        return tuple(assignment.task_id for assignment in self.assignments)


@dataclass(frozen=True, slots=True)
class DispatchSnapshot:
    """Eventually-consistent view for reporting."""

    project_id: str
    queued: dict[str, int]
    active: dict[str, str]
    closed: bool

    @property
    def queue_depth(self) -> int:
        return sum(self.queued.values())

    def to_dict(self) -> dict[str, object]:
        return {
            "project_id": self.project_id,
            "queued": dict(self.queued),
            "queue_depth": self.queue_depth,
            "active": dict(self.active),
            "closed": self.closed,
        }


class TaskDispatcher:
    """FIFO-per-role dispatcher sharing the lifecycle manager's project locks."""

    def __init__(
        self,
        *,
        lifecycle: WorkerLifecycleManager,
        store: TaskStore | None = None,
        event_bus: EventBus | None = None,
        allow_role_fallback: bool | None = None,
        auto_dispatch: bool = True,
        logger: Any | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._locks = lifecycle.locks
        self._store = store if store is not None else InMemoryTaskStore()
        self._bus = event_bus
        self._allow_role_fallback = (
            lifecycle.settings.allow_role_fallback
            if allow_role_fallback is None
            else allow_role_fallback
        )
        self._auto_dispatch = auto_dispatch
        self._queues: dict[str, dict[WorkerRole, deque[str]]] = {}
        self._closed: set[str] = set()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def store(self) -> TaskStore:
        return self._store

    def get(self, task_id: str) -> Task:
        task = self._store.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def is_closed(self, project_id: str) -> bool:
        # Closed is final, so no project lock is taken (or re-created) to read it.
        return project_id in self._closed

    def submit(
        self,
        project_id: str,
        required_role: WorkerRole | str,
        payload: object = None,
        *,
        gate_kind: GateKind | str | None = None,
        task_id: str | None = None,
    ) -> Task:
        """Create a task and enqueue it."""

        ids.validate_project_id(project_id)
        task = Task(
            id=task_id or ids.generate_task_id(),
            project_id=project_id,
            required_role=WorkerRole.parse(required_role),
            payload=payload,
            gate_kind=GateKind.parse(gate_kind) if gate_kind is not None else None,
        )
        return self.enqueue(task)

    def enqueue(self, task: Task) -> Task:
        if task.status is not TaskStatus.QUEUED or task.assigned_worker_id is not None:
            raise InvalidTaskTransitionError(task.id, task.status.value, TaskStatus.QUEUED.value)
        if self.is_closed(task.project_id):
            raise ProjectClosedError(task.project_id)
        with self._locks.hold(task.project_id):
            if task.project_id in self._closed:
                raise ProjectClosedError(task.project_id)
            if task.sequence == 0:
                task.sequence = self._store.next_sequence()
            self._store.add(task)
            self._role_queue(task.project_id, task.required_role).append(task.id)
            self._logger.info(
                "task_enqueued",
                project_id=task.project_id,
                task_id=task.id,
                required_role=task.required_role.value,
                sequence=task.sequence,
            )
            self._emit(
                EventType.TASK_ENQUEUED,
                task,
                required_role=task.required_role.value,
                sequence=task.sequence,
            )
            if self._auto_dispatch:
                self.try_assign(task.project_id)
        return task

    def try_assign(self, project_id: str) -> DispatchResult:
        """Assign as many queued tasks as idle workers allow."""

        assignments: list[Assignment] = []
        violations: list[DispatchViolation] = []
        with self._locks.hold(project_id):
            queues = self._queues.get(project_id)
            if not queues or project_id in self._closed:
                return DispatchResult()
            excluded: set[str] = set()

            while True:
                picked = self._next_exact(project_id, queues, excluded)
                if picked is None and self._allow_role_fallback:
                    picked = self._next_fallback(project_id, queues, excluded)
                if picked is None:
                    break
                role, task_id, worker = picked
                assignment, violation = self._assign_locked(project_id, role, task_id, worker)
                if assignment is not None:
                    assignments.append(assignment)
                if violation is not None:
                    violations.append(violation)
                    if violation.worker_id is not None:
                        excluded.add(violation.worker_id)

        return DispatchResult(assignments=tuple(assignments), violations=tuple(violations))

    def mark_executing(self, task_id: str) -> Task:
        task = self.get(task_id)
        with self._locks.hold(task.project_id):
            self._transition(task, TaskStatus.EXECUTING)
            self._store.save(task)
            self._emit(EventType.TASK_EXECUTING, task, worker_id=task.assigned_worker_id)
        return task

    def mark_awaiting_gate(self, task_id: str, gate_id: str) -> Task:
        task = self.get(task_id)
        with self._locks.hold(task.project_id):
            self._transition(task, TaskStatus.AWAITING_GATE)
            self._store.save(task)
            self._emit(EventType.TASK_AWAITING_GATE, task, gate_id=gate_id)
        return task

    def resume_executing(self, task_id: str) -> Task:
        task = self.get(task_id)
        with self._locks.hold(task.project_id):
            if task.status is not TaskStatus.AWAITING_GATE:
                raise InvalidTaskTransitionError(
                    task.id, task.status.value, TaskStatus.EXECUTING.value
                )
            self._transition(task, TaskStatus.EXECUTING)
            self._store.save(task)
            self._emit(EventType.TASK_EXECUTING, task, worker_id=task.assigned_worker_id)
        return task

    def complete(
        self,
        task_id: str,
        result: object = None,
        *,
        cost_usd: float | None = None,
    ) -> Task:
        task = self.get(task_id)
        with self._locks.hold(task.project_id):
            self._transition(task, TaskStatus.COMPLETED)
            task.result = result
            if cost_usd is not None:
                task.cost_usd = cost_usd
            worker_id = self._detach_worker(task)
            self._store.save(task)
            self._logger.info(
                "task_completed", project_id=task.project_id, task_id=task.id, worker_id=worker_id
            )
            self._emit(
                EventType.TASK_COMPLETED,
                task,
                worker_id=worker_id,
                cost_usd=round(task.cost_usd, 6),
            )
            self._after_release(task.project_id)
        return task

    def fail(
        self,
        task_id: str,
        reason: str,
        *,
        feedback: str | None = None,
        details: object = None,
    ) -> Task:
        task = self.get(task_id)
        with self._locks.hold(task.project_id):
            self._transition(task, TaskStatus.FAILED)
            task.failure_reason = reason
            if feedback is not None:
                task.last_feedback = feedback
            if details is not None:
                task.result = details
            worker_id = self._detach_worker(task)
            self._store.save(task)
            self._logger.warning(
                "task_failed",
                project_id=task.project_id,
                task_id=task.id,
                worker_id=worker_id,
                reason=reason,
            )
            self._emit(
                EventType.TASK_FAILED,
                task,
                worker_id=worker_id,
                reason=reason,
                last_feedback=task.last_feedback,
            )
            self._after_release(task.project_id)
        return task

    def requeue(self, task_id: str, *, reason: str) -> Task:
        """Return an active task to its role queue at its original arrival position."""

        task = self.get(task_id)
        with self._locks.hold(task.project_id):
            if task.project_id in self._closed:
                raise ProjectClosedError(task.project_id)
            self._transition(task, TaskStatus.QUEUED)
            task.retry_count += 1
            worker_id = self._detach_worker(task)
            self._store.save(task)
            queue = self._role_queue(task.project_id, task.required_role)
            sequences = [self._sequence_of(queued_id) for queued_id in queue]
            queue.insert(bisect.bisect_left(sequences, task.sequence), task.id)
            self._logger.info(
                "task_requeued",
                project_id=task.project_id,
                task_id=task.id,
                worker_id=worker_id,
                reason=reason,
                retry_count=task.retry_count,
            )
            self._emit(
                EventType.TASK_REQUEUED,
                task,
                worker_id=worker_id,
                reason=reason,
                retry_count=task.retry_count,
            )
            self._after_release(task.project_id)
        return task

    def cancel(self, task_id: str, *, reason: str) -> Task:
        task = self.get(task_id)
        with self._locks.hold(task.project_id):
            self._cancel_locked(task, reason=reason)
        return task

    def drain(self, project_id: str, *, reason: str = "project_closed") -> list[Task]:
        """Close the project to new work and cancel every non-terminal task."""

        with self._locks.hold(project_id):
            self._closed.add(project_id)
            cancelled: list[Task] = []
            for task in self._store.list_for_project(project_id):
                if task.is_terminal:
                    continue
                self._cancel_locked(task, reason=reason)
                cancelled.append(task)
            self._queues.pop(project_id, None)
        self._logger.info("project_drained", project_id=project_id, cancelled=len(cancelled))
        return cancelled

    def tasks(self, project_id: str, *, statuses: set[TaskStatus] | None = None) -> list[Task]:
        return self._store.list_for_project(project_id, statuses=statuses)

    def queued_task_ids(self, project_id: str, role: WorkerRole | None = None) -> list[str]:
        with self._locks.hold(project_id):
            queues = self._queues.get(project_id, {})
            if role is not None:
                return list(queues.get(role, ()))
            merged = [task_id for queue in queues.values() for task_id in queue]
        return sorted(merged, key=self._sequence_of)

    def snapshot(self, project_id: str) -> DispatchSnapshot:
        with self._locks.hold(project_id):
            queued = {
                role.value: len(queue)
                for role, queue in self._queues.get(project_id, {}).items()
                if queue
            }
            closed = project_id in self._closed
        active = {
            task.id: task.assigned_worker_id
            for task in self._store.list_for_project(
                project_id,
                statuses={TaskStatus.ASSIGNED, TaskStatus.EXECUTING, TaskStatus.AWAITING_GATE},
            )
            if task.assigned_worker_id is not None
        }
        return DispatchSnapshot(project_id=project_id, queued=queued, active=active, closed=closed)

    def _next_exact(
        self,
        project_id: str,
        queues: dict[WorkerRole, deque[str]],
        excluded: set[str],
    ) -> tuple[WorkerRole, str, Worker] | None:
        for role, head in self._heads_by_sequence(queues):
            worker = self._best_idle(project_id, role, excluded)
            if worker is not None:
                return role, head, worker
        return None

    def _next_fallback(
        self,
        project_id: str,
        queues: dict[WorkerRole, deque[str]],
        excluded: set[str],
    ) -> tuple[WorkerRole, str, Worker] | None:
        for role, head in self._heads_by_sequence(queues):
            for senior_role in more_senior_roles(role):
                worker = self._best_idle(project_id, senior_role, excluded)
                if worker is not None:
                    return role, head, worker
        return None

    def _heads_by_sequence(
        self, queues: dict[WorkerRole, deque[str]]
    ) -> list[tuple[WorkerRole, str]]:
        heads = [(role, queue[0]) for role, queue in queues.items() if queue]
        return sorted(heads, key=lambda item: self._sequence_of(item[1]))

    def _best_idle(
        self, project_id: str, role: WorkerRole, excluded: set[str]
    ) -> Worker | None:
        candidates = [
            worker
            for worker in self._lifecycle.idle_workers(project_id, role)
            if worker.id not in excluded and not worker.retire_requested
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda worker: (-worker.score, worker.id))

    def _assign_locked(
        self, project_id: str, role: WorkerRole, task_id: str, worker: Worker
    ) -> tuple[Assignment | None, DispatchViolation | None]:
        task = self._store.get(task_id)
        queue = self._queues[project_id][role]
        if task is None or task.status is not TaskStatus.QUEUED:
            queue.remove(task_id)
            status = "missing" if task is None else task.status.value
            self._logger.error(
                "dispatch_invariant_violation",
                project_id=project_id,
                task_id=task_id,
                reason="queued_entry_not_queued",
                status=status,
            )
            return None, DispatchViolation(task_id, None, f"queued entry has status {status}")

        if not self._lifecycle.claim(worker.id, task.id):
            current = self._lifecycle.get(worker.id)
            self._logger.error(
                "dispatch_invariant_violation",
                project_id=project_id,
                task_id=task.id,
                worker_id=worker.id,
                reason="worker_not_idle",
                worker_status=current.status.value,
                worker_task_id=current.current_task_id,
            )
            return None, DispatchViolation(
                task.id, worker.id, f"worker {worker.id} is {current.status.value}, not idle"
            )

        queue.popleft()
        self._transition(task, TaskStatus.ASSIGNED)
        task.assigned_worker_id = worker.id
        self._store.save(task)
        assignment = Assignment(
            task_id=task.id,
            worker_id=worker.id,
            required_role=task.required_role,
            worker_role=worker.role,
        )
        self._logger.info("task_assigned", project_id=project_id, **assignment.to_dict())
        self._emit(EventType.TASK_ASSIGNED, task, **assignment.to_dict())
        return assignment, None

    def _cancel_locked(self, task: Task, *, reason: str) -> None:
        if task.is_terminal:
            return
        if task.status is TaskStatus.QUEUED:
            queue = self._queues.get(task.project_id, {}).get(task.required_role)
            if queue is not None and task.id in queue:
                queue.remove(task.id)
        self._transition(task, TaskStatus.CANCELLED)
        task.failure_reason = reason
        worker_id = self._detach_worker(task)
        self._store.save(task)
        self._logger.info(
            "task_cancelled",
            project_id=task.project_id,
            task_id=task.id,
            worker_id=worker_id,
            reason=reason,
        )
        self._emit(EventType.TASK_CANCELLED, task, worker_id=worker_id, reason=reason)

    def _detach_worker(self, task: Task) -> str | None:
        worker_id = task.assigned_worker_id
        task.assigned_worker_id = None
        if worker_id is not None:
            self._lifecycle.release(worker_id)
        return worker_id

    def _after_release(self, project_id: str) -> None:
        if self._auto_dispatch and project_id not in self._closed:
            self.try_assign(project_id)

    def _transition(self, task: Task, new_status: TaskStatus) -> None:
        if new_status not in TASK_TRANSITIONS[task.status]:
            raise InvalidTaskTransitionError(task.id, task.status.value, new_status.value)
        task.status = new_status

    def _role_queue(self, project_id: str, role: WorkerRole) -> deque[str]:
        return self._queues.setdefault(project_id, {}).setdefault(role, deque())

    def _sequence_of(self, task_id: str) -> int:
        task = self._store.get(task_id)
        return task.sequence if task is not None else 0

    def _emit(self, event_type: EventType, task: Task, **fields: object) -> None:
        if self._bus is None:
            return
        payload: dict[str, object] = {"task_id": task.id, "status": task.status.value}
        payload.update({key: json_safe(value) for key, value in fields.items()})
        self._bus.emit(event_type, payload, project_id=task.project_id)


__all__ = [
    "Assignment",
    "DispatchResult",
    "DispatchSnapshot",
    "DispatchViolation",
    "TaskDispatcher",
]
