"""
Workforce engine facade.

Wires sizing, worker lifecycle, dispatch, approval gates, verification and
budget tracking into one object per process. Project state is project-scoped
throughout; no operation reaches across projects.

Task execution path:
    Assigned -> Executing -> verification loop -> [AwaitingGate -> gate] -> Completed | Failed
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from nexus_workforce.config.settings import EngineSettings
from nexus_workforce.control_plane.budgets import BudgetAction, BudgetDecision, BudgetTracker
from nexus_workforce.control_plane.dispatcher import TaskDispatcher
from nexus_workforce.control_plane.feedback import synthesize_feedback
from nexus_workforce.control_plane.gates import (
    ApprovalGateController,
    GateWaitResult,
    WaitOutcome,
)
from nexus_workforce.control_plane.lifecycle import RescaleResult, WorkerLifecycleManager
from nexus_workforce.control_plane.sizing import SizingReport, SizingRules, WorkloadSizer
from nexus_workforce.control_plane.verification import (
    AttemptRecord,
    GenerateFn,
    VerificationOutcome,
    VerifiedExecutionLoop,
    VerifyFn,
)
from nexus_workforce.domain import ids
from nexus_workforce.domain.events import EventType
from nexus_workforce.domain.models import (
    AllocationComposition,
    GateKind,
    GateStatus,
    Task,
    TaskStatus,
    WorkerRole,
    WorkloadProfile,
    json_safe,
)
from nexus_workforce.errors import ProjectClosedError
from nexus_workforce.observability.events import EventBus
from nexus_workforce.observability.logging import correlation_scope
from nexus_workforce.persistence.journal import SQLiteEventJournal
from nexus_workforce.persistence.stores import GateStore, TaskStore, WorkerStore
from nexus_workforce.utils.concurrency import CancellationToken, KeyedLocks

TaskHandler = Callable[[Task], tuple[GenerateFn, VerifyFn]]
ProfileSource = Callable[[], WorkloadProfile | Mapping[str, object] | None]

REASON_VERIFICATION_EXHAUSTED = "verification_exhausted"
REASON_CANCELLED = "cancelled"
REASON_VERIFIER_ERROR = "verifier_error"
REASON_GATE_ABORTED = "gate_wait_aborted"


@dataclass(frozen=True, slots=True)
class ProjectHandle:
    project_id: str
    sizing: SizingReport
    worker_ids: tuple[str, ...]

    @property
    def composition(self) -> AllocationComposition:
        return self.sizing.composition

    def to_dict(self) -> dict[str, object]:
        return {
            "project_id": self.project_id,
            "sizing": self.sizing.to_dict(),
            "worker_ids": list(self.worker_ids),
        }


@dataclass(frozen=True, slots=True)
class TaskRunResult:
    task_id: str
    status: TaskStatus
    verified: bool
    outcome: VerificationOutcome | None = None
    gates: tuple[GateWaitResult, ...] = ()
    budget: BudgetDecision | None = None
    failure_reason: str | None = None
    feedback: dict[str, object] | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is TaskStatus.COMPLETED

    def to_dict(self) -> dict[str, object]:
        return {
            "task_id": self.task_id,
            "status": self.status.value,
            "verified": self.verified,
            "attempts": self.outcome.attempt_count if self.outcome is not None else 0,
            "cost_usd": self.outcome.total_cost_usd if self.outcome is not None else 0.0,
            "gates": [gate.to_dict() for gate in self.gates],
            "budget": self.budget.to_dict() if self.budget is not None else None,
            "failure_reason": self.failure_reason,
            "feedback": self.feedback,
        }


@dataclass(frozen=True, slots=True)
class ProjectCloseReport:
    project_id: str
    gates_rejected: int
    tasks_cancelled: int
    workers_retired: int
    cost_usd: float = 0.0

    def to_dict(self) -> dict[str, object]:
        return {
            "project_id": self.project_id,
            "gates_rejected": self.gates_rejected,
            "tasks_cancelled": self.tasks_cancelled,
            "workers_retired": self.workers_retired,
            "cost_usd": self.cost_usd,
        }


class WorkforceController:
    """Engine facade; owns one instance of every control-plane component."""

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        event_bus: EventBus | None = None,
        worker_store: WorkerStore | None = None,
        task_store: TaskStore | None = None,
        gate_store: GateStore | None = None,
        sizer: WorkloadSizer | None = None,
        journal: SQLiteEventJournal | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings or EngineSettings()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._bus = event_bus if event_bus is not None else EventBus()
        self._journal = journal
        if journal is not None:
            journal.attach(self._bus)

        workforce = self._settings.workforce
        self._sizer = sizer or WorkloadSizer(
            SizingRules(min_workers=workforce.min_workers, max_workers=workforce.max_workers)
        )
        self._lifecycle = WorkerLifecycleManager(
            store=worker_store,
            settings=workforce,
            event_bus=self._bus,
            locks=KeyedLocks(),
            clock=clock,
        )
        self._dispatcher = TaskDispatcher(
            lifecycle=self._lifecycle, store=task_store, event_bus=self._bus
        )
        self._gates = ApprovalGateController(
            settings=self._settings.gates, store=gate_store, event_bus=self._bus
        )
        self._verifier = VerifiedExecutionLoop(self._settings.verification)
        self._budgets = BudgetTracker(self._settings.budgets, event_bus=self._bus)
        self._profiles: dict[str, WorkloadProfile | Mapping[str, object] | None] = {}

    @classmethod
    def from_settings(cls, settings: EngineSettings, **kwargs: Any) -> WorkforceController:
        """Build a controller, attaching the SQLite journal when one is configured."""

        journal_path = settings.observability.journal_path
        if journal_path and "journal" not in kwargs:
            kwargs["journal"] = SQLiteEventJournal(journal_path)
        return cls(settings, **kwargs)

    @property
    def settings(self) -> EngineSettings:
        return self._settings

    @property
    def event_bus(self) -> EventBus:
        return self._bus

    @property
    def sizer(self) -> WorkloadSizer:
        return self._sizer

    @property
    def lifecycle(self) -> WorkerLifecycleManager:
        return self._lifecycle

    @property
    def dispatcher(self) -> TaskDispatcher:
        return self._dispatcher

    @property
    def gates(self) -> ApprovalGateController:
        return self._gates

    @property
    def budgets(self) -> BudgetTracker:
        return self._budgets

    def create_project(
        self,
        profile: WorkloadProfile | Mapping[str, object] | None,
        *,
        project_id: str | None = None,
        enabled_gate_kinds: Iterable[GateKind | str] | None = None,
    ) -> ProjectHandle:
        """Size the workload and spawn the initial roster. Never blocked by a bad profile."""

        resolved_id = project_id or ids.generate_project_id()
        ids.validate_project_id(resolved_id)
        report = self._sizer.size_with_report(profile)
        if enabled_gate_kinds is not None:
            self._gates.configure_project(resolved_id, enabled_gate_kinds)
        self._profiles[resolved_id] = profile
        with correlation_scope(project_id=resolved_id):
            workers = self._lifecycle.spawn(resolved_id, report.composition)
            self._logger.info(
                "project_created",
                composition=report.composition.to_dict(),
                total_workers=report.composition.total,
                degraded=report.degraded,
            )
        return ProjectHandle(
            project_id=resolved_id,
            sizing=report,
            worker_ids=tuple(worker.id for worker in workers),
        )

    def submit_task(
        self,
        project_id: str,
        required_role: WorkerRole | str,
        payload: object = None,
        *,
        gate_kind: GateKind | str | None = None,
    ) -> Task:
        return self._dispatcher.submit(project_id, required_role, payload, gate_kind=gate_kind)

    def update_profile(
        self, project_id: str, profile: WorkloadProfile | Mapping[str, object] | None
    ) -> None:
        self._profiles[project_id] = profile

    def rescale(
        self,
        project_id: str,
        profile: WorkloadProfile | Mapping[str, object] | None = None,
        *,
        force: bool = False,
    ) -> RescaleResult:
        if self._dispatcher.is_closed(project_id):
            raise ProjectClosedError(project_id)
        if profile is not None:
            self._profiles[project_id] = profile
        composition = self._sizer.size(self._profiles.get(project_id))
        with correlation_scope(project_id=project_id):
            result = self._lifecycle.rescale(project_id, composition, force=force)
        if result.spawned or result.reinstated:
            self._dispatcher.try_assign(project_id)
        return result

    async def autoscale(
        self,
        project_id: str,
        *,
        cancel_token: CancellationToken,
        interval_seconds: float | None = None,
        profile_source: ProfileSource | None = None,
        max_cycles: int | None = None,
    ) -> int:
        """Periodically re-size the pool until cancelled; returns the cycles run."""

        interval = (
            self._settings.workforce.autoscale_interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        if interval <= 0:
            raise ValueError("interval_seconds must be > 0")
        cycles = 0
        while not cancel_token.is_cancelled:
            if self._dispatcher.is_closed(project_id):
                break
            profile = profile_source() if profile_source is not None else None
            self.rescale(project_id, profile)
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break
            try:
                await asyncio.wait_for(cancel_token.wait(), interval)
            except TimeoutError:
                continue
        self._logger.info("autoscale_stopped", project_id=project_id, cycles=cycles)
        return cycles

    async def run_task(
        self,
        task_id: str,
        generate: GenerateFn,
        verify: VerifyFn,
        *,
        max_attempts: int | None = None,
        gate_timeout_seconds: float | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> TaskRunResult:
        """Execute one assigned task end to end and leave it in a terminal state."""

        task = self._dispatcher.get(task_id)
        with correlation_scope(
            project_id=task.project_id, task_id=task.id, worker_id=task.assigned_worker_id
        ):
            try:
                return await self._run_task(
                    task,
                    generate,
                    verify,
                    max_attempts=max_attempts,
                    gate_timeout_seconds=gate_timeout_seconds,
                    cancel_token=cancel_token,
                )
            except asyncio.CancelledError:
                self._abandon(task)
                raise

    async def run_until_idle(
        self,
        project_id: str,
        handler: TaskHandler,
        *,
        cancel_token: CancellationToken | None = None,
        gate_timeout_seconds: float | None = None,
    ) -> list[TaskRunResult]:
        """Run every assigned task, picking up newly assigned ones, until none remain.

        If one task raises, or this coroutine is cancelled, the tasks still
        running are cancelled and awaited before the error propagates, so none
        is left executing on a busy worker.
        """

        results: list[TaskRunResult] = []
        started: set[str] = set()
        running: set[asyncio.Task[TaskRunResult]] = set()
        owners: dict[asyncio.Task[TaskRunResult], Task] = {}
        try:
            while True:
                for task in self._dispatcher.tasks(project_id, statuses={TaskStatus.ASSIGNED}):
                    if task.id in started:
                        continue
                    started.add(task.id)
                    generate, verify = handler(task)
                    runner = asyncio.create_task(
                        self.run_task(
                            task.id,
                            generate,
                            verify,
                            cancel_token=cancel_token,
                            gate_timeout_seconds=gate_timeout_seconds,
                        )
                    )
                    running.add(runner)
                    owners[runner] = task
                if not running:
                    break
                done, running = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for finished in done:
                    results.append(finished.result())
        except BaseException:
            await _cancel_all(running)
            # A runner cancelled before its first step never reached run_task.
            for runner in running:
                self._abandon(owners[runner])
            raise
        return results

    def close_project(self, project_id: str, *, reason: str = "project_closed") -> ProjectCloseReport:
        """Unblock gate waiters, drain queues, and retire the roster."""

        with correlation_scope(project_id=project_id):
            gates_rejected = self._gates.cancel_project(project_id, reason=reason)
            cancelled = self._dispatcher.drain(project_id, reason=reason)
            retired = self._lifecycle.retire_all(project_id, reason=reason)
            report = ProjectCloseReport(
                project_id=project_id,
                gates_rejected=gates_rejected,
                tasks_cancelled=len(cancelled),
                workers_retired=retired,
                cost_usd=self._budgets.project_cost(project_id),
            )
            self._logger.info("project_closed", **report.to_dict())
        self._profiles.pop(project_id, None)
        self._budgets.forget_project(project_id)
        self._gates.forget_project(project_id)
        self._lifecycle.forget_project(project_id)
        return report

    def snapshot(self, project_id: str) -> dict[str, object]:
        workers = self._lifecycle.live_workers(project_id)
        return {
            "project_id": project_id,
            "workers": [worker.to_dict() for worker in sorted(workers, key=lambda w: w.id)],
            "dispatch": self._dispatcher.snapshot(project_id).to_dict(),
            "pending_gates": [gate.to_dict() for gate in self._gates.pending(project_id)],
            "cost_usd": self._budgets.project_cost(project_id),
        }

    def close(self) -> None:
        if self._journal is not None:
            self._journal.close()

    async def _run_task(
        self,
        task: Task,
        generate: GenerateFn,
        verify: VerifyFn,
        *,
        max_attempts: int | None,
        gate_timeout_seconds: float | None,
        cancel_token: CancellationToken | None,
    ) -> TaskRunResult:
        self._dispatcher.mark_executing(task.id)
        worker_id = task.assigned_worker_id
        budget_decisions: list[BudgetDecision] = []

        def _on_attempt(record: AttemptRecord) -> None:
            budget_decisions.append(
                self._budgets.record_cost(task.project_id, task.id, record.cost_usd)
            )
            if not record.passed:
                self._bus.emit(
                    EventType.VERIFICATION_ATTEMPT_FAILED,
                    {"task_id": task.id, **record.to_dict()},
                    project_id=task.project_id,
                )

        def _budget_stops(_record: AttemptRecord) -> bool:
            return bool(budget_decisions) and budget_decisions[-1].should_stop

        try:
            outcome = await self._verifier.execute(
                generate,
                verify,
                max_attempts=max_attempts,
                cancel_token=cancel_token,
                on_attempt=_on_attempt,
                should_stop=_budget_stops,
            )
        except Exception as exc:
            if not task.is_terminal:
                self._record_outcome(worker_id, success=False)
                self._dispatcher.fail(
                    task.id, REASON_VERIFIER_ERROR, feedback=f"{type(exc).__name__}: {exc}"
                )
            raise

        if task.is_terminal:
            return self._result(task, outcome)

        task.retry_count = max(0, outcome.attempt_count - 1)
        task.last_feedback = outcome.last_feedback
        budget = budget_decisions[-1] if budget_decisions else None

        if budget is not None and budget.should_stop:
            return self._finish_failed(
                task, worker_id, outcome, reason=budget.reason_codes[0], budget=budget
            )

        if not outcome.verified:
            return await self._handle_exhaustion(
                task, worker_id, outcome, budget=budget, gate_timeout_seconds=gate_timeout_seconds
            )

        self._bus.emit(
            EventType.VERIFICATION_PASSED,
            {"task_id": task.id, "attempts": outcome.attempt_count},
            project_id=task.project_id,
        )
        kinds: list[GateKind] = []
        if budget is not None and budget.action is BudgetAction.GATE:
            kinds.append(GateKind.COST_THRESHOLD)
        if task.gate_kind is not None:
            kinds.append(task.gate_kind)

        result: object = outcome.output
        waits: list[GateWaitResult] = []
        for kind in kinds:
            gate_payload = {
                "task_id": task.id,
                "output": json_safe(result),
                "cost_usd": outcome.total_cost_usd,
            }
            wait, gate_result = await self._pass_gate(
                task, kind, gate_payload, timeout_seconds=gate_timeout_seconds
            )
            if wait is not None:
                waits.append(wait)
            if task.is_terminal:
                return self._result(task, outcome, gates=waits, budget=budget)
            if wait is not None and not wait.approved:
                return self._finish_failed(
                    task,
                    worker_id,
                    outcome,
                    reason=_gate_failure_reason(kind, wait),
                    feedback=wait.reviewer_notes,
                    gates=waits,
                    budget=budget,
                )
            if gate_result is not _UNCHANGED:
                result = gate_result

        self._record_outcome(worker_id, success=True)
        self._dispatcher.complete(task.id, result, cost_usd=outcome.total_cost_usd)
        return self._result(task, outcome, gates=waits, budget=budget)

    async def _handle_exhaustion(
        self,
        task: Task,
        worker_id: str | None,
        outcome: VerificationOutcome,
        *,
        budget: BudgetDecision | None,
        gate_timeout_seconds: float | None,
    ) -> TaskRunResult:
        feedback = synthesize_feedback(
            outcome, metadata={"task_id": task.id, "required_role": task.required_role.value}
        )
        self._bus.emit(
            EventType.VERIFICATION_EXHAUSTED,
            {"task_id": task.id, "feedback": feedback},
            project_id=task.project_id,
        )
        if self._settings.verification.on_exhaustion != "human_review":
            return self._finish_failed(
                task,
                worker_id,
                outcome,
                reason=REASON_VERIFICATION_EXHAUSTED,
                budget=budget,
                feedback_package=feedback,
            )

        gate = self._gates.create_gate(
            task.project_id,
            GateKind.ESCALATION,
            {"task_id": task.id, "output": json_safe(outcome.output), "feedback": feedback},
            task_id=task.id,
            title=f"verification exhausted for {task.id}",
        )
        if gate.auto_resolved:
            # Nobody reviewed it; unverified output is never accepted implicitly.
            return self._finish_failed(
                task,
                worker_id,
                outcome,
                reason=REASON_VERIFICATION_EXHAUSTED,
                budget=budget,
                feedback_package=feedback,
            )
        self._dispatcher.mark_awaiting_gate(task.id, gate.id)
        wait = await self._gates.wait_for_resolution(gate.id, gate_timeout_seconds)
        if task.is_terminal:
            return self._result(task, outcome, gates=(wait,), budget=budget)
        if not wait.approved:
            if wait.outcome is WaitOutcome.CANCELLED:
                self._gates.withdraw(gate.id, reason=REASON_GATE_ABORTED)
            return self._finish_failed(
                task,
                worker_id,
                outcome,
                reason=REASON_VERIFICATION_EXHAUSTED,
                feedback=wait.reviewer_notes or outcome.last_feedback,
                gates=(wait,),
                budget=budget,
                feedback_package=feedback,
            )
        self._dispatcher.resume_executing(task.id)
        resolved = self._gates.get(gate.id)
        result = (
            resolved.modified_payload
            if resolved.status is GateStatus.MODIFIED
            else outcome.output
        )
        self._record_outcome(worker_id, success=False)
        self._dispatcher.complete(task.id, result, cost_usd=outcome.total_cost_usd)
        return self._result(task, outcome, gates=(wait,), budget=budget, feedback=feedback)

    async def _pass_gate(
        self,
        task: Task,
        kind: GateKind,
        payload: dict[str, object],
        *,
        timeout_seconds: float | None,
    ) -> tuple[GateWaitResult | None, object]:
        gate = self._gates.create_gate(
            task.project_id, kind, payload, task_id=task.id, title=f"{kind.value} for {task.id}"
        )
        if not gate.is_pending:
            return None, _UNCHANGED
        self._dispatcher.mark_awaiting_gate(task.id, gate.id)
        wait = await self._gates.wait_for_resolution(gate.id, timeout_seconds)
        if task.is_terminal:
            return wait, _UNCHANGED
        self._dispatcher.resume_executing(task.id)
        if wait.outcome is WaitOutcome.CANCELLED:
            self._gates.withdraw(gate.id, reason=REASON_GATE_ABORTED)
            return wait, _UNCHANGED
        resolved = self._gates.get(gate.id)
        if resolved.status is GateStatus.MODIFIED:
            return wait, resolved.modified_payload
        return wait, _UNCHANGED

    def _finish_failed(
        self,
        task: Task,
        worker_id: str | None,
        outcome: VerificationOutcome,
        *,
        reason: str,
        feedback: str | None = None,
        gates: Iterable[GateWaitResult] = (),
        budget: BudgetDecision | None = None,
        feedback_package: dict[str, object] | None = None,
    ) -> TaskRunResult:
        self._record_outcome(worker_id, success=False)
        task.cost_usd = outcome.total_cost_usd
        self._dispatcher.fail(
            task.id,
            reason,
            feedback=feedback if feedback is not None else outcome.last_feedback,
            details=feedback_package,
        )
        return self._result(
            task, outcome, gates=tuple(gates), budget=budget, feedback=feedback_package
        )

    def _abandon(self, task: Task) -> None:
        """Cancel an interrupted task and withdraw any gate it was waiting on."""

        if task.is_terminal:
            return
        for gate in self._gates.pending(task.project_id):
            if gate.task_id == task.id:
                self._gates.withdraw(gate.id, reason=REASON_CANCELLED)
        self._dispatcher.cancel(task.id, reason=REASON_CANCELLED)

    def _record_outcome(self, worker_id: str | None, *, success: bool) -> None:
        if worker_id is not None:
            self._lifecycle.record_outcome(worker_id, success)

    def _result(
        self,
        task: Task,
        outcome: VerificationOutcome,
        *,
        gates: Iterable[GateWaitResult] = (),
        budget: BudgetDecision | None = None,
        feedback: dict[str, object] | None = None,
    ) -> TaskRunResult:
        return TaskRunResult(
            task_id=task.id,
            status=task.status,
            verified=outcome.verified,
            outcome=outcome,
            gates=tuple(gates),
            budget=budget,
            failure_reason=task.failure_reason,
            feedback=feedback,
        )


_UNCHANGED: object = object()


async def _cancel_all(tasks: Iterable[asyncio.Task[TaskRunResult]]) -> None:
    pending = [task for task in tasks if not task.done()]
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


def _gate_failure_reason(kind: GateKind, wait: GateWaitResult) -> str:
    if wait.outcome is WaitOutcome.CANCELLED:
        return f"gate_{kind.value}_cancelled"
    return f"gate_{kind.value}_{wait.status.value}"


__all__ = [
    "ProjectCloseReport",
    "ProjectHandle",
    "TaskHandler",
    "TaskRunResult",
    "WorkforceController",
]
