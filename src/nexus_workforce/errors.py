"""Typed error hierarchy shared by the workforce engine."""

from __future__ import annotations


class WorkforceError(RuntimeError):
    """Base class for every error raised by the engine."""


class WorkerNotFoundError(WorkforceError, LookupError):
    def __init__(self, worker_id: str) -> None:
        super().__init__(f"worker not found: {worker_id}")
        self.worker_id = worker_id


class TaskNotFoundError(WorkforceError, LookupError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"task not found: {task_id}")
        self.task_id = task_id


class InvalidTaskTransitionError(WorkforceError):
    def __init__(self, task_id: str, current: str, requested: str) -> None:
        super().__init__(f"task {task_id}: illegal transition {current} -> {requested}")
        self.task_id = task_id
        self.current = current
        self.requested = requested


class GateError(WorkforceError):
    """Base class for approval-gate failures."""


class GateNotFoundError(GateError, LookupError):
    def __init__(self, gate_id: str) -> None:
        super().__init__(f"gate not found: {gate_id}")
        self.gate_id = gate_id


class GateAlreadyResolvedError(GateError):
    def __init__(self, gate_id: str, status: str, resolved_by: str | None) -> None:
        by = f" by {resolved_by}" if resolved_by else ""
        super().__init__(f"gate {gate_id} already resolved as {status}{by}")
        self.gate_id = gate_id
        self.status = status
        self.resolved_by = resolved_by


class ProjectClosedError(WorkforceError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"project {project_id} is closed")
        self.project_id = project_id


__all__ = [
    "GateAlreadyResolvedError",
    "GateError",
    "GateNotFoundError",
    "InvalidTaskTransitionError",
    "ProjectClosedError",
    "TaskNotFoundError",
    "WorkerNotFoundError",
    "WorkforceError",
]
