"""Unit tests for budget tracking and decisions."""

from __future__ import annotations

import pytest

from nexus_workforce.config.settings import BudgetSettings
from nexus_workforce.control_plane.budgets import (
    REASON_PROJECT_CAP,
    REASON_TASK_CAP,
    BudgetAction,
    BudgetTracker,
)
from nexus_workforce.domain.events import EventType
from nexus_workforce.observability.events import EventBus


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def tracker(bus: EventBus) -> BudgetTracker:
    settings = BudgetSettings(
        max_cost_per_task_usd=5.0, max_cost_per_project_usd=10.0, warning_threshold=0.8
    )
    return BudgetTracker(settings, event_bus=bus)


def test_spend_within_budget_continues(tracker: BudgetTracker) -> None:
    decision = tracker.record_cost("acme", "task-1", 1.0)

    assert decision.action is BudgetAction.CONTINUE
    assert tracker.project_cost("acme") == 1.0
    assert tracker.task_cost("acme", "task-1") == 1.0


def test_task_cap_breach_requires_gate(tracker: BudgetTracker) -> None:
    tracker.record_cost("acme", "task-1", 3.0)
    decision = tracker.record_cost("acme", "task-1", 2.5)

    assert decision.requires_gate
    assert decision.reason_codes == (REASON_TASK_CAP,)
    assert decision.usage.task_cost_usd == 5.5


def test_warning_is_published_once(tracker: BudgetTracker, bus: EventBus) -> None:
    tracker.record_cost("acme", "task-1", 4.0)
    tracker.record_cost("acme", "task-2", 4.0)
    second = tracker.record_cost("acme", "task-3", 0.5)

    assert second.action is BudgetAction.WARN
    assert len(bus.replay(event_type=EventType.BUDGET_WARNING)) == 1


def test_project_cap_stops_and_is_published_once(tracker: BudgetTracker, bus: EventBus) -> None:
    for index in range(3):
        tracker.record_cost("acme", f"task-{index}", 4.0)

    decision = tracker.check("acme")

    assert decision.should_stop
    assert decision.reason_codes == (REASON_PROJECT_CAP,)
    (event,) = bus.replay(event_type=EventType.BUDGET_EXHAUSTED)
    assert event.payload["action"] == "stop"


def test_projects_are_tracked_independently(tracker: BudgetTracker) -> None:
    tracker.record_cost("acme", None, 9.5)

    assert tracker.check("other").action is BudgetAction.CONTINUE
    tracker.forget_project("acme")
    assert tracker.project_cost("acme") == 0.0


def test_uncapped_project_never_stops() -> None:
    tracker = BudgetTracker(BudgetSettings(max_cost_per_project_usd=None))

    assert tracker.record_cost("acme", None, 10_000.0).action is BudgetAction.CONTINUE


def test_negative_cost_is_rejected(tracker: BudgetTracker) -> None:
    with pytest.raises(ValueError, match="cost_usd"):
        tracker.record_cost("acme", "task-1", -0.01)
