"""Unit tests for workforce domain models."""

from __future__ import annotations

import pytest

from nexus_workforce.domain.models import (
    AllocationComposition,
    ApprovalGate,
    GateDecision,
    GateKind,
    GateStatus,
    ScaleTier,
    SecurityTier,
    Task,
    TaskStatus,
    WorkerRole,
    WorkloadProfile,
    json_safe,
    more_senior_roles,
    roles_by_seniority,
)


@pytest.mark.parametrize(
    "raw", ["SeniorBuilder", "senior-builder", "senior_builder", " SENIOR_BUILDER "]
)
def test_worker_role_parse_is_case_and_separator_insensitive(raw: str) -> None:
    assert WorkerRole.parse(raw) is WorkerRole.SENIOR_BUILDER


def test_worker_role_parse_rejects_unknown_role() -> None:
    with pytest.raises(ValueError, match="unknown worker role"):
        WorkerRole.parse("architect")


def test_seniority_table_orders_builder_lowest_and_coordinator_highest() -> None:
    ordered = roles_by_seniority()
    assert ordered[0] is WorkerRole.BUILDER
    assert ordered[-1] is WorkerRole.COORDINATOR
    assert WorkerRole.REVIEWER.outranks(WorkerRole.OPERATIONS_BUILDER)


def test_more_senior_roles_are_nearest_first() -> None:
    assert more_senior_roles(WorkerRole.REVIEWER) == (
        WorkerRole.SENIOR_BUILDER,
        WorkerRole.COORDINATOR,
    )
    assert more_senior_roles(WorkerRole.COORDINATOR) == ()


def test_workload_profile_parse_accepts_short_keys() -> None:
    profile = WorkloadProfile.parse(
        {
            "features": 3,
            "integrations": "2",
            "security": "Elevated",
            "scale": "medium",
            "workflowsPerHour": 12,
        }
    )

    assert profile == WorkloadProfile(
        feature_count=3,
        integration_count=2,
        security_tier=SecurityTier.ELEVATED,
        scale_tier=ScaleTier.MEDIUM,
        workflows_per_hour=12.0,
    )


@pytest.mark.parametrize(
    "payload",
    [None, {}, [], "features=3", {"unrelated": 1}, {"features": -1}, {"security": "ultra"}],
)
def test_workload_profile_parse_returns_none_for_unusable_input(payload: object) -> None:
    assert WorkloadProfile.parse(payload) is None


def test_workload_profile_dominates_is_signalwise() -> None:
    small = WorkloadProfile(feature_count=3)
    large = WorkloadProfile(feature_count=10, security_tier=SecurityTier.CRITICAL)
    mixed = WorkloadProfile(feature_count=20, complexity_score=10.0)

    assert large.dominates(small)
    assert not small.dominates(large)
    assert not mixed.dominates(small)


def test_composition_drops_zero_entries_and_orders_by_seniority() -> None:
    composition = AllocationComposition.from_mapping(
        {"builder": 2, "coordinator": 1, "reviewer": 0}
    )

    assert composition.counts == ((WorkerRole.COORDINATOR, 1), (WorkerRole.BUILDER, 2))
    assert composition.total == 3
    assert composition.count("reviewer") == 0
    assert composition.to_dict() == {"coordinator": 1, "builder": 2}


def test_task_invariant_requires_worker_iff_active() -> None:
    task = Task(id="task-1", project_id="acme", required_role=WorkerRole.BUILDER)
    task.check_invariants()

    task.status = TaskStatus.ASSIGNED
    with pytest.raises(ValueError, match="without an assigned worker"):
        task.check_invariants()

    task.assigned_worker_id = "acme/builder/001"
    task.check_invariants()


def test_gate_decision_maps_to_status_and_effective_payload() -> None:
    gate = ApprovalGate(id="gate-1", project_id="acme", kind=GateKind.PRE_COMMIT, payload="diff")
    assert gate.is_pending
    assert GateDecision.MODIFY.resulting_status is GateStatus.MODIFIED

    gate.status = GateStatus.MODIFIED
    gate.modified_payload = "edited diff"
    assert gate.is_approved
    assert gate.effective_payload == "edited diff"


def test_gate_kind_parse_accepts_aliases() -> None:
    assert GateKind.parse("architecture") is GateKind.ARCHITECTURE_DECISION
    assert GateKind.parse("PreCommit") is GateKind.PRE_COMMIT


def test_json_safe_projects_opaque_values() -> None:
    projected = json_safe({"set": {2, 1}, "nan": float("nan"), "obj": object, "nested": (1, "a")})

    assert projected["set"] == [1, 2]
    assert projected["nan"] == "nan"
    assert isinstance(projected["obj"], str)
    assert projected["nested"] == [1, "a"]
