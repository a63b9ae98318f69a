"""Worker lifecycle: spawn, claim/release, scoring, rescale, and retirement."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from nexus_workforce.config.settings import WorkforceSettings
from nexus_workforce.domain import ids
from nexus_workforce.domain.events import EventType
from nexus_workforce.domain.models import (
    AllocationComposition,
    Worker,
    WorkerRole,
    WorkerStatus,
    utc_now,
)
from nexus_workforce.errors import WorkerNotFoundError
from nexus_workforce.persistence.stores import InMemoryWorkerStore, WorkerStore
from nexus_workforce.utils.concurrency import KeyedLocks

if TYPE_CHECKING:
    from nexus_workforce.observability.events import EventBus


class RetirementOutcome(StrEnum):
    RETIRED = "retired"
    DEFERRED = "deferred"
    NOOP = "noop"


@dataclass(frozen=True, slots=True)
class RescaleResult:
    spawned: tuple[str, ...] = ()
    retired: tuple[str, ...] = ()
    deferred: tuple[str, ...] = ()
    reinstated: tuple[str, ...] = ()
    skipped: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.spawned or self.retired or self.deferred or self.reinstated)

    def to_dict(self) -> dict[str, object]:
        return {
            "spawned": list(self.spawned),
            "retired": list(self.retired),
            "deferred": list(self.deferred),
            "reinstated": list(self.reinstated),
            "skipped": self.skipped,
        }


class WorkerLifecycleManager:
    """Owns worker identity and status for every project.

    All mutation for a project happens under that project's lock from the shared
    ``KeyedLocks`` registry, which the dispatcher also holds while assigning.
    """

    def __init__(
        self,
        *,
        store: WorkerStore | None = None,
        settings: WorkforceSettings | None = None,
        event_bus: EventBus | None = None,
        locks: KeyedLocks | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._store = store if store is not None else InMemoryWorkerStore()
        self._settings = settings or WorkforceSettings()
        self._bus = event_bus
        self._locks = locks if locks is not None else KeyedLocks()
        self._clock = clock
        self._last_rescale: dict[str, float] = {}
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def store(self) -> WorkerStore:
        return self._store

    @property
    def locks(self) -> KeyedLocks:
        return self._locks

    @property
    def settings(self) -> WorkforceSettings:
        return self._settings

    def get(self, worker_id: str) -> Worker:
        worker = self._store.get(worker_id)
        if worker is None:
            raise WorkerNotFoundError(worker_id)
        return worker

    def live_workers(self, project_id: str) -> list[Worker]:
        return self._store.list_for_project(project_id)

    def idle_workers(self, project_id: str, role: WorkerRole | None = None) -> list[Worker]:
        return [
            worker
            for worker in self._store.list_for_project(project_id)
            if worker.status is WorkerStatus.IDLE and (role is None or worker.role is role)
        ]

    def live_counts(self, project_id: str) -> dict[WorkerRole, int]:
        """Per-role count of live workers not already marked for retirement."""

        counts: dict[WorkerRole, int] = {}
        for worker in self._store.list_for_project(project_id):
            if worker.retire_requested:
                continue
            counts[worker.role] = counts.get(worker.role, 0) + 1
        return counts

    def spawn(self, project_id: str, composition: AllocationComposition) -> list[Worker]:
        """Create one worker per composition slot ``(role, 1..count)``.

        Slots that already hold a worker are left alone, so repeating the call
        converges on the same roster instead of growing it.
        """

        ids.validate_project_id(project_id)
        slot_workers: list[Worker] = []
        with self._locks.hold(project_id):
            for role, count in composition.counts:
                for ordinal in range(1, count + 1):
                    worker, created = self._spawn_slot(project_id, role, ordinal)
                    slot_workers.append(worker)
                    if created:
                        self._emit_spawned(worker)
        self._logger.info(
            "workers_spawned",
            project_id=project_id,
            composition=composition.to_dict(),
            slots=len(slot_workers),
        )
        return slot_workers

    def claim(self, worker_id: str, task_id: str) -> bool:
        """Idle -> Busy compare-and-set. ``False`` means someone else got there first."""

        worker = self.get(worker_id)
        with self._locks.hold(worker.project_id):
            if worker.retire_requested:
                return False
            return self._store.compare_and_set_status(
                worker_id, WorkerStatus.IDLE, WorkerStatus.BUSY, current_task_id=task_id
            )

    def release(self, worker_id: str) -> Worker:
        """Busy -> Idle; completes a deferred retirement instead when one is pending."""

        worker = self.get(worker_id)
        with self._locks.hold(worker.project_id):
            if worker.status is not WorkerStatus.BUSY:
                self._logger.debug(
                    "worker_release_noop", worker_id=worker_id, status=worker.status.value
                )
                return worker
            released = self._store.compare_and_set_status(
                worker_id, WorkerStatus.BUSY, WorkerStatus.IDLE, current_task_id=None
            )
            if released and worker.retire_requested:
                self._retire_locked(worker, reason="deferred")
            return worker

    def retire(self, worker_id: str, *, reason: str = "explicit") -> RetirementOutcome:
        worker = self.get(worker_id)
        with self._locks.hold(worker.project_id):
            return self._retire_or_defer_locked(worker, reason=reason)

    def retire_all(self, project_id: str, *, reason: str = "project_closed") -> int:
        """Retire every idle worker now and mark busy ones; returns the immediate count."""

        retired = 0
        with self._locks.hold(project_id):
            for worker in self._store.list_for_project(project_id):
                if self._retire_or_defer_locked(worker, reason=reason) is RetirementOutcome.RETIRED:
                    retired += 1
        self._logger.info("workers_retired_all", project_id=project_id, retired=retired)
        return retired

    def forget_project(self, project_id: str) -> None:
        """Drop the rescale cooldown and the shared project lock of a closed project."""

        with self._locks.hold(project_id):
            self._last_rescale.pop(project_id, None)
        self._locks.discard(project_id)

    def rescale(
        self,
        project_id: str,
        composition: AllocationComposition,
        *,
        force: bool = False,
    ) -> RescaleResult:
        """Move the live roster toward ``composition`` without ever retiring a busy worker."""

        now = self._clock()
        spawned: list[str] = []
        retired: list[str] = []
        deferred: list[str] = []
        reinstated: list[str] = []

        with self._locks.hold(project_id):
            last = self._last_rescale.get(project_id)
            cooldown = self._settings.rescale_cooldown_seconds
            if not force and last is not None and now - last < cooldown:
                self._logger.info(
                    "rescale_skipped_cooldown",
                    project_id=project_id,
                    seconds_remaining=round(cooldown - (now - last), 3),
                )
                return RescaleResult(skipped=True)
            self._last_rescale[project_id] = now

            roster = self._store.list_for_project(project_id, include_retired=True)
            for role in WorkerRole:
                target = composition.count(role)
                role_workers = [worker for worker in roster if worker.role is role]
                live = [worker for worker in role_workers if worker.is_live]
                active = [worker for worker in live if not worker.retire_requested]
                delta = target - len(active)

                if delta > 0:
                    # Cancel pending retirements before spawning fresh workers.
                    marked = sorted(
                        (worker for worker in live if worker.retire_requested),
                        key=lambda item: item.ordinal,
                    )[:delta]
                    for worker in marked:
                        worker.retire_requested = False
                        self._store.save(worker)
                        reinstated.append(worker.id)
                    remaining = delta - len(marked)
                    next_ordinal = max((worker.ordinal for worker in role_workers), default=0) + 1
                    for offset in range(remaining):
                        worker, created = self._spawn_slot(project_id, role, next_ordinal + offset)
                        if created:
                            self._emit_spawned(worker)
                            spawned.append(worker.id)
                elif delta < 0:
                    surplus = -delta
                    # Idle workers go first, newest ordinal first; busy ones are only marked.
                    victims = sorted(
                        active,
                        key=lambda item: (item.status is WorkerStatus.BUSY, -item.ordinal),
                    )[:surplus]
                    for worker in victims:
                        outcome = self._retire_or_defer_locked(worker, reason="downscale")
                        if outcome is RetirementOutcome.RETIRED:
                            retired.append(worker.id)
                        elif outcome is RetirementOutcome.DEFERRED:
                            deferred.append(worker.id)

        result = RescaleResult(
            spawned=tuple(spawned),
            retired=tuple(retired),
            deferred=tuple(deferred),
            reinstated=tuple(reinstated),
        )
        if result.changed and self._bus is not None:
            self._bus.emit(
                EventType.POOL_RESCALED,
                {**result.to_dict(), "target": composition.to_dict()},
                project_id=project_id,
            )
        self._logger.info(
            "pool_rescaled",
            project_id=project_id,
            target=composition.to_dict(),
            spawned=len(spawned),
            retired=len(retired),
            deferred=len(deferred),
            reinstated=len(reinstated),
        )
        return result

    def record_outcome(self, worker_id: str, success: bool) -> Worker:
        """Fold one task outcome into the worker's exponential moving average score."""

        worker = self.get(worker_id)
        with self._locks.hold(worker.project_id):
            if not worker.is_live:
                self._logger.debug("worker_outcome_ignored_retired", worker_id=worker_id)
                return worker
            alpha = self._settings.smoothing_factor
            outcome = 1.0 if success else 0.0
            worker.score = alpha * outcome + (1.0 - alpha) * worker.score
            if success:
                worker.success_count += 1
            else:
                worker.fail_count += 1
            self._store.save(worker)

            if self._bus is not None:
                self._bus.emit(
                    EventType.WORKER_SCORED,
                    {
                        "worker_id": worker.id,
                        "success": success,
                        "score": round(worker.score, 6),
                        "samples": worker.sample_count,
                    },
                    project_id=worker.project_id,
                )

            if (
                worker.sample_count >= self._settings.retirement_min_samples
                and worker.score < self._settings.retirement_score_threshold
            ):
                self._logger.warning(
                    "worker_underperforming",
                    worker_id=worker.id,
                    score=round(worker.score, 6),
                    samples=worker.sample_count,
                    threshold=self._settings.retirement_score_threshold,
                )
                self._retire_or_defer_locked(worker, reason="performance")
            return worker

    def _spawn_slot(self, project_id: str, role: WorkerRole, ordinal: int) -> tuple[Worker, bool]:
        worker_id = ids.worker_id_for(project_id, role.value, ordinal)
        existing = self._store.get(worker_id)
        if existing is not None:
            return existing, False
        candidate = Worker(
            id=worker_id,
            project_id=project_id,
            role=role,
            ordinal=ordinal,
            score=self._settings.neutral_score,
        )
        stored = self._store.add(candidate)
        return stored, stored is candidate

    def _retire_or_defer_locked(self, worker: Worker, *, reason: str) -> RetirementOutcome:
        if not worker.is_live:
            return RetirementOutcome.NOOP
        if worker.status is WorkerStatus.BUSY:
            if not worker.retire_requested:
                worker.retire_requested = True
                self._store.save(worker)
                self._logger.info(
                    "worker_retirement_deferred",
                    worker_id=worker.id,
                    task_id=worker.current_task_id,
                    reason=reason,
                )
                if self._bus is not None:
                    self._bus.emit(
                        EventType.WORKER_RETIREMENT_DEFERRED,
                        {
                            "worker_id": worker.id,
                            "task_id": worker.current_task_id,
                            "reason": reason,
                        },
                        project_id=worker.project_id,
                    )
            return RetirementOutcome.DEFERRED
        self._retire_locked(worker, reason=reason)
        return RetirementOutcome.RETIRED

    def _retire_locked(self, worker: Worker, *, reason: str) -> None:
        worker.status = WorkerStatus.RETIRED
        worker.retire_requested = False
        worker.current_task_id = None
        worker.retired_at = utc_now()
        self._store.save(worker)
        self._logger.info("worker_retired", worker_id=worker.id, reason=reason)
        if self._bus is not None:
            self._bus.emit(
                EventType.WORKER_RETIRED,
                {"worker_id": worker.id, "role": worker.role.value, "reason": reason},
                project_id=worker.project_id,
            )

    def _emit_spawned(self, worker: Worker) -> None:
        self._logger.debug("worker_spawned", worker_id=worker.id, role=worker.role.value)
        if self._bus is not None:
            self._bus.emit(
                EventType.WORKER_SPAWNED,
                {"worker_id": worker.id, "role": worker.role.value, "ordinal": worker.ordinal},
                project_id=worker.project_id,
            )


__all__ = ["RescaleResult", "RetirementOutcome", "WorkerLifecycleManager"]
