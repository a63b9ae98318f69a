"""
nexus-workforce: unit tests for approval gates

File: tests/unit/control_plane/test_gates.py

Purpose
- Validate one-way resolution, disabled-kind auto approval, timeout policies,
  waiter wake-up across threads, and project cancellation.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest

from nexus_workforce.config.settings import GateSettings
from nexus_workforce.control_plane.gates import ApprovalGateController, WaitOutcome
from nexus_workforce.domain.events import EventType
from nexus_workforce.domain.models import GateKind, GateStatus, GateTimeoutPolicy
from nexus_workforce.errors import GateAlreadyResolvedError, GateNotFoundError, ProjectClosedError
from nexus_workforce.observability.events import EventBus


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def gates(bus: EventBus) -> ApprovalGateController:
    return ApprovalGateController(event_bus=bus)


def test_enabled_kind_starts_pending(gates: ApprovalGateController, bus: EventBus) -> None:
    gate = gates.create_gate("acme", "security", {"diff": "+auth"}, task_id="task-1")

    assert gate.status is GateStatus.PENDING
    assert gate.title == "security"
    assert gates.pending("acme") == [gate]
    assert [event.event_type for event in bus.replay()] == [EventType.GATE_CREATED]


def test_disabled_kind_is_auto_approved(gates: ApprovalGateController, bus: EventBus) -> None:
    gate = gates.create_gate("acme", GateKind.DEPLOYMENT)

    assert gate.status is GateStatus.APPROVED
    assert gate.auto_resolved
    assert gate.resolved_by == "system:auto"
    assert [event.event_type for event in bus.replay()] == [
        EventType.GATE_CREATED,
        EventType.GATE_RESOLVED,
    ]


def test_project_specific_kinds_override_defaults(gates: ApprovalGateController) -> None:
    gates.configure_project("acme", ["deployment"])

    assert gates.create_gate("acme", "deployment").is_pending
    assert gates.create_gate("acme", "security").auto_resolved
    assert gates.create_gate("other", "security").is_pending


def test_resolution_is_never_reversed(gates: ApprovalGateController) -> None:
    gate = gates.create_gate("acme", "pre_commit", "diff")
    gates.reject(gate.id, resolved_by="alice", notes="needs tests")

    with pytest.raises(GateAlreadyResolvedError, match="already resolved as rejected by alice"):
        gates.approve(gate.id, resolved_by="bob")

    assert gates.get(gate.id).status is GateStatus.REJECTED
    assert gates.get(gate.id).reviewer_notes == "needs tests"


def test_modify_keeps_original_and_exposes_effective_payload(
    gates: ApprovalGateController,
) -> None:
    gate = gates.create_gate("acme", "architecture", {"db": "mongo"})

    gates.modify(gate.id, {"db": "postgres"}, resolved_by="alice")

    assert gate.status is GateStatus.MODIFIED
    assert gate.payload == {"db": "mongo"}
    assert gate.effective_payload == {"db": "postgres"}


def test_unknown_gate_raises(gates: ApprovalGateController) -> None:
    with pytest.raises(GateNotFoundError):
        gates.approve("gate-missing")


def test_concurrent_resolutions_have_exactly_one_winner(gates: ApprovalGateController) -> None:
    gate = gates.create_gate("acme", "security")

    def attempt(index: int) -> str | None:
        decision = "approve" if index % 2 else "reject"
        try:
            gates.resolve(gate.id, decision, resolved_by=f"reviewer-{index}")
        except GateAlreadyResolvedError:
            return None
        return f"reviewer-{index}"

    with ThreadPoolExecutor(max_workers=16) as pool:
        winners = [name for name in pool.map(attempt, range(64)) if name is not None]

    assert len(winners) == 1
    assert gates.get(gate.id).resolved_by == winners[0]


async def test_waiter_wakes_when_resolved_from_another_thread(
    gates: ApprovalGateController,
) -> None:
    gate = gates.create_gate("acme", "security")

    async def approve_once_waiting() -> None:
        while gates.waiter_count(gate.id) == 0:
            await asyncio.sleep(0)
        await asyncio.to_thread(gates.approve, gate.id, resolved_by="alice", notes="lgtm")

    approver = asyncio.create_task(approve_once_waiting())
    result = await gates.wait_for_resolution(gate.id, timeout_seconds=5.0)
    await approver

    assert result.outcome is WaitOutcome.RESOLVED
    assert result.approved
    assert result.resolved_by == "alice"
    assert result.reviewer_notes == "lgtm"
    assert gates.waiter_count(gate.id) == 0


async def test_wait_on_already_resolved_gate_returns_immediately(
    gates: ApprovalGateController,
) -> None:
    gate = gates.create_gate("acme", "security")
    gates.reject(gate.id)

    result = await gates.wait_for_resolution(gate.id, timeout_seconds=0.01)

    assert result.outcome is WaitOutcome.RESOLVED
    assert not result.approved


@pytest.mark.parametrize(
    ("kind", "expected_status", "expected_policy"),
    [
        ("pre_commit", GateStatus.APPROVED, GateTimeoutPolicy.AUTO_APPROVE),
        ("security", GateStatus.REJECTED, GateTimeoutPolicy.FAIL_SAFE),
    ],
)
async def test_timeout_applies_per_kind_policy(
    gates: ApprovalGateController,
    bus: EventBus,
    kind: str,
    expected_status: GateStatus,
    expected_policy: GateTimeoutPolicy,
) -> None:
    gate = gates.create_gate("acme", kind)

    result = await gates.wait_for_resolution(gate.id, timeout_seconds=0.01)

    assert result.outcome is WaitOutcome.TIMED_OUT
    assert result.status is expected_status
    assert result.applied_policy is expected_policy
    assert result.resolved_by == "system:timeout"
    assert len(bus.replay(event_type=EventType.GATE_TIMED_OUT)) == 1


async def test_configured_policy_override_is_used() -> None:
    settings = GateSettings(timeout_policy={GateKind.SECURITY: GateTimeoutPolicy.AUTO_APPROVE})
    gates = ApprovalGateController(settings=settings)
    gate = gates.create_gate("acme", "security")

    result = await gates.wait_for_resolution(gate.id, timeout_seconds=0.01)

    assert result.approved


async def test_non_positive_timeout_is_rejected(gates: ApprovalGateController) -> None:
    gate = gates.create_gate("acme", "security")

    with pytest.raises(ValueError, match="timeout_seconds"):
        await gates.wait_for_resolution(gate.id, timeout_seconds=0)


async def test_abort_releases_waiters_with_cancelled_outcome(
    gates: ApprovalGateController,
) -> None:
    gate = gates.create_gate("acme", "security")
    waiter = asyncio.create_task(gates.wait_for_resolution(gate.id, timeout_seconds=5.0))
    while gates.waiter_count(gate.id) == 0:
        await asyncio.sleep(0)

    assert gates.abort(gate.id) == 1
    result = await waiter

    assert result.outcome is WaitOutcome.CANCELLED
    assert not result.approved
    assert gates.get(gate.id).is_pending


async def test_cancel_project_rejects_pending_and_refuses_new_gates(
    gates: ApprovalGateController,
) -> None:
    first = gates.create_gate("acme", "security")
    second = gates.create_gate("acme", "escalation")
    gates.approve(second.id)
    waiter = asyncio.create_task(gates.wait_for_resolution(first.id, timeout_seconds=5.0))
    while gates.waiter_count(first.id) == 0:
        await asyncio.sleep(0)

    assert gates.cancel_project("acme") == 1
    result = await waiter

    assert result.outcome is WaitOutcome.CANCELLED
    assert gates.get(first.id).status is GateStatus.REJECTED
    assert gates.get(first.id).resolved_by == "system:cancelled"
    with pytest.raises(ProjectClosedError):
        gates.create_gate("acme", "security")


def test_withdraw_rejects_only_pending_gates(gates: ApprovalGateController) -> None:
    pending = gates.create_gate("acme", "security")
    settled = gates.create_gate("acme", "architecture_decision")
    gates.approve(settled.id, resolved_by="lead")

    assert gates.withdraw(pending.id, reason="task abandoned")
    assert not gates.withdraw(settled.id, reason="task abandoned")
    assert pending.status is GateStatus.REJECTED
    assert pending.resolved_by == "system:cancelled"
    assert pending.reviewer_notes == "task abandoned"
    assert settled.resolved_by == "lead"


async def test_settled_gates_do_not_keep_locks(gates: ApprovalGateController) -> None:
    gate_ids = [gates.create_gate("acme", "security").id for _ in range(20)]
    waiter = asyncio.create_task(gates.wait_for_resolution(gate_ids[0], 5.0))
    while gates.waiter_count(gate_ids[0]) == 0:
        await asyncio.sleep(0)

    for gate_id in gate_ids:
        gates.approve(gate_id)
    with pytest.raises(GateAlreadyResolvedError):
        gates.reject(gate_ids[1])
    result = await waiter
    await gates.wait_for_resolution(gate_ids[2], 5.0)

    assert result.approved
    assert gates.lock_count() == 0


def test_forget_project_restores_default_kinds(gates: ApprovalGateController) -> None:
    gates.configure_project("acme", ["deployment"])

    gates.forget_project("acme")

    assert gates.enabled_kinds("acme") == gates.settings.enabled_kinds
