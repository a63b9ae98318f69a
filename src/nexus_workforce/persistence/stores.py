"""
Store interfaces for workers, tasks, and approval gates, plus in-memory implementations.

The engine only talks to the ``WorkerStore`` / ``TaskStore`` / ``GateStore``
protocols. Durable backends subscribe to entity-changed events on the event bus
(see ``persistence.journal``) or implement these protocols directly.
"""

from __future__ import annotations

import itertools
import threading
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from nexus_workforce.domain.models import TaskStatus, WorkerStatus, utc_now

if TYPE_CHECKING:
    from collections.abc import Collection

    from nexus_workforce.domain.models import ApprovalGate, Task, Worker


@runtime_checkable
class WorkerStore(Protocol):
    def add(self, worker: Worker) -> Worker:
        """Insert ``worker``; an existing record with the same id wins and is returned."""
        ...

    def get(self, worker_id: str) -> Worker | None: ...

    def save(self, worker: Worker) -> None: ...

    def list_for_project(self, project_id: str, *, include_retired: bool = False) -> list[Worker]: ...

    def compare_and_set_status(
        self,
        worker_id: str,
        expected: WorkerStatus,
        new: WorkerStatus,
        *,
        current_task_id: str | None,
    ) -> bool:
        """Atomically move ``expected -> new``; ``False`` when the worker is not in ``expected``."""
        ...


@runtime_checkable
class TaskStore(Protocol):
    def add(self, task: Task) -> Task: ...

    def get(self, task_id: str) -> Task | None: ...

    def save(self, task: Task) -> None: ...

    def list_for_project(
        self, project_id: str, *, statuses: Collection[TaskStatus] | None = None
    ) -> list[Task]: ...

    def next_sequence(self) -> int:
        """Monotonic arrival counter shared across projects."""
        ...


@runtime_checkable
class GateStore(Protocol):
    def add(self, gate: ApprovalGate) -> ApprovalGate: ...

    def get(self, gate_id: str) -> ApprovalGate | None: ...

    def save(self, gate: ApprovalGate) -> None: ...

    def list_for_project(self, project_id: str, *, pending_only: bool = False) -> list[ApprovalGate]: ...


class InMemoryWorkerStore:
    """Process-lifetime worker roster keyed by worker id."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._workers: dict[str, Worker] = {}

    def add(self, worker: Worker) -> Worker:
        with self._lock:
            existing = self._workers.get(worker.id)
            if existing is not None:
                return existing
            self._workers[worker.id] = worker
            return worker

    def get(self, worker_id: str) -> Worker | None:
        with self._lock:
            return self._workers.get(worker_id)

    def save(self, worker: Worker) -> None:
        with self._lock:
            worker.updated_at = utc_now()
            self._workers[worker.id] = worker

    def list_for_project(self, project_id: str, *, include_retired: bool = False) -> list[Worker]:
        with self._lock:
            return [
                worker
                for worker in self._workers.values()
                if worker.project_id == project_id
                and (include_retired or worker.status is not WorkerStatus.RETIRED)
            ]

    def compare_and_set_status(
        self,
        worker_id: str,
        expected: WorkerStatus,
        new: WorkerStatus,
        *,
        current_task_id: str | None,
    ) -> bool:
        with self._lock:
            worker = self._workers.get(worker_id)
            if worker is None or worker.status is not expected:
                return False
            worker.status = new
            worker.current_task_id = current_task_id
            worker.updated_at = utc_now()
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._workers)


class InMemoryTaskStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}
        self._sequence = itertools.count(1)

    def add(self, task: Task) -> Task:
        with self._lock:
            if task.id in self._tasks:
                raise ValueError(f"duplicate task id: {task.id}")
            self._tasks[task.id] = task
            return task

    def get(self, task_id: str) -> Task | None:
        with self._lock:
            return self._tasks.get(task_id)

    def save(self, task: Task) -> None:
        with self._lock:
            task.updated_at = utc_now()
            self._tasks[task.id] = task

    def list_for_project(
        self, project_id: str, *, statuses: Collection[TaskStatus] | None = None
    ) -> list[Task]:
        with self._lock:
            tasks = [
                task
                for task in self._tasks.values()
                if task.project_id == project_id and (statuses is None or task.status in statuses)
            ]
        return sorted(tasks, key=lambda task: task.sequence)

    def next_sequence(self) -> int:
        with self._lock:
            return next(self._sequence)


class InMemoryGateStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._gates: dict[str, ApprovalGate] = {}

    def add(self, gate: ApprovalGate) -> ApprovalGate:
        with self._lock:
            if gate.id in self._gates:
                raise ValueError(f"duplicate gate id: {gate.id}")
            self._gates[gate.id] = gate
            return gate

    def get(self, gate_id: str) -> ApprovalGate | None:
        with self._lock:
            return self._gates.get(gate_id)

    def save(self, gate: ApprovalGate) -> None:
        with self._lock:
            self._gates[gate.id] = gate

    def list_for_project(self, project_id: str, *, pending_only: bool = False) -> list[ApprovalGate]:
        with self._lock:
            return [
                gate
                for gate in self._gates.values()
                if gate.project_id == project_id and (not pending_only or gate.is_pending)
            ]


__all__ = [
    "GateStore",
    "InMemoryGateStore",
    "InMemoryTaskStore",
    "InMemoryWorkerStore",
    "TaskStore",
    "WorkerStore",
]
