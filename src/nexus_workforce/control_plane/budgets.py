"""
Cost accounting and deterministic budget decisions.

This module consumes the cost reported by each generation attempt and decides
what the engine does next:
- per-task cap breach -> ``gate`` (a cost_threshold gate decides)
- per-project cap breach -> ``stop`` (the task fails with ``project_budget_exhausted``)
- crossing ``warning_threshold`` of the project cap -> ``warn``

Decisions are logged through ``structlog``; warning and exhaustion are also
published once per project on the event bus.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from nexus_workforce.config.settings import BudgetSettings
from nexus_workforce.domain.events import EventType

if TYPE_CHECKING:
    from nexus_workforce.observability.events import EventBus

REASON_WITHIN_BUDGET = "within_budget"
REASON_PROJECT_WARNING = "project_cost_warning_threshold"
REASON_TASK_CAP = "task_cost_cap_exceeded"
REASON_PROJECT_CAP = "project_budget_exhausted"


class BudgetAction(StrEnum):
    CONTINUE = "continue"
    WARN = "warn"
    GATE = "gate"
    STOP = "stop"


@dataclass(frozen=True, slots=True)
class BudgetUsage:
    task_cost_usd: float
    project_cost_usd: float

    def to_dict(self) -> dict[str, object]:
        return {
            "task_cost_usd": self.task_cost_usd,
            "project_cost_usd": self.project_cost_usd,
        }


@dataclass(frozen=True, slots=True)
class BudgetDecision:
    action: BudgetAction
    reason_codes: tuple[str, ...]
    project_id: str
    task_id: str | None
    usage: BudgetUsage
    max_cost_per_task_usd: float
    max_cost_per_project_usd: float | None

    @property
    def should_stop(self) -> bool:
        return self.action is BudgetAction.STOP

    @property
    def requires_gate(self) -> bool:
        return self.action is BudgetAction.GATE

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action.value,
            "reason_codes": list(self.reason_codes),
            "project_id": self.project_id,
            "task_id": self.task_id,
            "usage": self.usage.to_dict(),
            "limits": {
                "max_cost_per_task_usd": self.max_cost_per_task_usd,
                "max_cost_per_project_usd": self.max_cost_per_project_usd,
            },
        }


class BudgetTracker:
    """Running per-task and per-project spend, safe to share across threads."""

    def __init__(
        self,
        settings: BudgetSettings | None = None,
        *,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings or BudgetSettings()
        if self._settings.max_cost_per_task_usd < 0:
            raise ValueError("max_cost_per_task_usd must be >= 0")
        cap = self._settings.max_cost_per_project_usd
        if cap is not None and cap < 0:
            raise ValueError("max_cost_per_project_usd must be >= 0")
        self._bus = event_bus
        self._lock = threading.Lock()
        self._task_costs: dict[tuple[str, str], float] = {}
        self._project_costs: dict[str, float] = {}
        self._warned: set[str] = set()
        self._exhausted: set[str] = set()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> BudgetSettings:
        return self._settings

    def record_cost(
        self, project_id: str, task_id: str | None, cost_usd: float
    ) -> BudgetDecision:
        if cost_usd < 0:
            raise ValueError("cost_usd must be >= 0")
        with self._lock:
            project_total = _round_cost(self._project_costs.get(project_id, 0.0) + cost_usd)
            self._project_costs[project_id] = project_total
            task_total = 0.0
            if task_id is not None:
                key = (project_id, task_id)
                task_total = _round_cost(self._task_costs.get(key, 0.0) + cost_usd)
                self._task_costs[key] = task_total
            decision = self._decide(project_id, task_id, task_total, project_total)
            first_warning = decision.action is BudgetAction.WARN and project_id not in self._warned
            first_exhaustion = decision.should_stop and project_id not in self._exhausted
            if first_warning:
                self._warned.add(project_id)
            if first_exhaustion:
                self._exhausted.add(project_id)

        self._log_decision(decision)
        if self._bus is not None and (first_warning or first_exhaustion):
            self._bus.emit(
                EventType.BUDGET_EXHAUSTED if first_exhaustion else EventType.BUDGET_WARNING,
                decision.to_dict(),
                project_id=project_id,
            )
        return decision

    def check(self, project_id: str, task_id: str | None = None) -> BudgetDecision:
        """Decision for the current spend without recording anything."""

        with self._lock:
            project_total = self._project_costs.get(project_id, 0.0)
            task_total = (
                self._task_costs.get((project_id, task_id), 0.0) if task_id is not None else 0.0
            )
            return self._decide(project_id, task_id, task_total, project_total)

    def project_cost(self, project_id: str) -> float:
        with self._lock:
            return self._project_costs.get(project_id, 0.0)

    def task_cost(self, project_id: str, task_id: str) -> float:
        with self._lock:
            return self._task_costs.get((project_id, task_id), 0.0)

    def forget_project(self, project_id: str) -> None:
        with self._lock:
            self._project_costs.pop(project_id, None)
            self._warned.discard(project_id)
            self._exhausted.discard(project_id)
            for key in [key for key in self._task_costs if key[0] == project_id]:
                del self._task_costs[key]

    def _decide(
        self,
        project_id: str,
        task_id: str | None,
        task_total: float,
        project_total: float,
    ) -> BudgetDecision:
        settings = self._settings
        project_cap = settings.max_cost_per_project_usd
        reasons: list[str] = []

        if project_cap is not None and project_total >= project_cap:
            action = BudgetAction.STOP
            reasons.append(REASON_PROJECT_CAP)
        elif task_id is not None and task_total > settings.max_cost_per_task_usd:
            action = BudgetAction.GATE
            reasons.append(REASON_TASK_CAP)
        elif project_cap is not None and project_total >= project_cap * settings.warning_threshold:
            action = BudgetAction.WARN
            reasons.append(REASON_PROJECT_WARNING)
        else:
            action = BudgetAction.CONTINUE
            reasons.append(REASON_WITHIN_BUDGET)

        return BudgetDecision(
            action=action,
            reason_codes=tuple(reasons),
            project_id=project_id,
            task_id=task_id,
            usage=BudgetUsage(task_cost_usd=task_total, project_cost_usd=project_total),
            max_cost_per_task_usd=settings.max_cost_per_task_usd,
            max_cost_per_project_usd=project_cap,
        )

    def _log_decision(self, decision: BudgetDecision) -> None:
        log = self._logger.info if decision.action is BudgetAction.CONTINUE else self._logger.warning
        log(
            "budget_decision",
            action=decision.action.value,
            reason_codes=list(decision.reason_codes),
            project_id=decision.project_id,
            task_id=decision.task_id,
            usage=decision.usage.to_dict(),
        )


def _round_cost(value: float) -> float:
    return float(round(value, 12))


__all__ = [
    "REASON_PROJECT_CAP",
    "REASON_PROJECT_WARNING",
    "REASON_TASK_CAP",
    "REASON_WITHIN_BUDGET",
    "BudgetAction",
    "BudgetDecision",
    "BudgetTracker",
    "BudgetUsage",
]
