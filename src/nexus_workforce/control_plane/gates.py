"""
Approval gates: Pending -> {Approved, Rejected, Modified}, never reversed.

Resolution is linearizable per gate id: ``resolve`` runs under the gate's lock,
so of two concurrent resolutions exactly one observes ``PENDING``. Waiters are
asyncio futures signalled thread-safely from whichever thread resolves the gate.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog

from nexus_workforce.config.settings import GateSettings
from nexus_workforce.constants import (
    SYSTEM_AUTO_RESOLVER,
    SYSTEM_CANCEL_RESOLVER,
    SYSTEM_TIMEOUT_RESOLVER,
)
from nexus_workforce.domain import ids
from nexus_workforce.domain.events import EventType
from nexus_workforce.domain.models import (
    ApprovalGate,
    GateDecision,
    GateKind,
    GateStatus,
    GateTimeoutPolicy,
    utc_now,
)
from nexus_workforce.errors import (
    GateAlreadyResolvedError,
    GateNotFoundError,
    ProjectClosedError,
)
from nexus_workforce.persistence.stores import GateStore, InMemoryGateStore
from nexus_workforce.utils.concurrency import KeyedLocks

if TYPE_CHECKING:
    from nexus_workforce.observability.events import EventBus


class WaitOutcome(StrEnum):
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


_SIGNAL_RESOLVED = "resolved"
_SIGNAL_CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class GateWaitResult:
    """What a waiter observed. ``TIMED_OUT`` means no human decided in time."""

    gate_id: str
    outcome: WaitOutcome
    status: GateStatus
    resolved_by: str | None = None
    reviewer_notes: str | None = None
    applied_policy: GateTimeoutPolicy | None = None

    @property
    def approved(self) -> bool:
        return self.outcome is not WaitOutcome.CANCELLED and self.status in {
            GateStatus.APPROVED,
            GateStatus.MODIFIED,
        }

    def to_dict(self) -> dict[str, object]:
        return {
            "gate_id": self.gate_id,
            "outcome": self.outcome.value,
            "status": self.status.value,
            "resolved_by": self.resolved_by,
            "reviewer_notes": self.reviewer_notes,
            "applied_policy": self.applied_policy.value if self.applied_policy else None,
        }


class ApprovalGateController:
    def __init__(
        self,
        *,
        settings: GateSettings | None = None,
        store: GateStore | None = None,
        event_bus: EventBus | None = None,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings or GateSettings()
        self._store = store if store is not None else InMemoryGateStore()
        self._bus = event_bus
        self._gate_locks = KeyedLocks()
        self._guard = threading.Lock()
        self._waiters: dict[str, list[tuple[asyncio.AbstractEventLoop, asyncio.Future[str]]]] = {}
        self._project_kinds: dict[str, frozenset[GateKind]] = {}
        self._cancelled_projects: set[str] = set()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> GateSettings:
        return self._settings

    @property
    def store(self) -> GateStore:
        return self._store

    def configure_project(self, project_id: str, enabled_kinds: Iterable[GateKind | str]) -> None:
        kinds = frozenset(GateKind.parse(kind) for kind in enabled_kinds)
        with self._guard:
            self._project_kinds[project_id] = kinds
            self._cancelled_projects.discard(project_id)
        self._logger.info(
            "gate_kinds_configured",
            project_id=project_id,
            enabled_kinds=sorted(kind.value for kind in kinds),
        )

    def enabled_kinds(self, project_id: str) -> frozenset[GateKind]:
        with self._guard:
            return self._project_kinds.get(project_id, self._settings.enabled_kinds)

    def is_enabled(self, project_id: str, kind: GateKind | str) -> bool:
        return GateKind.parse(kind) in self.enabled_kinds(project_id)

    def get(self, gate_id: str) -> ApprovalGate:
        gate = self._store.get(gate_id)
        if gate is None:
            raise GateNotFoundError(gate_id)
        return gate

    def pending(self, project_id: str) -> list[ApprovalGate]:
        return self._store.list_for_project(project_id, pending_only=True)

    def create_gate(
        self,
        project_id: str,
        kind: GateKind | str,
        payload: object = None,
        *,
        task_id: str | None = None,
        title: str = "",
    ) -> ApprovalGate:
        """Open a gate; a kind disabled for the project comes back already approved."""

        ids.validate_project_id(project_id)
        gate_kind = GateKind.parse(kind)
        with self._guard:
            if project_id in self._cancelled_projects:
                raise ProjectClosedError(project_id)

        gate = ApprovalGate(
            id=ids.generate_gate_id(),
            project_id=project_id,
            kind=gate_kind,
            payload=payload,
            task_id=task_id,
            title=title or gate_kind.value,
        )
        if not self.is_enabled(project_id, gate_kind):
            gate.status = GateStatus.APPROVED
            gate.resolved_at = gate.created_at
            gate.resolved_by = SYSTEM_AUTO_RESOLVER
            gate.reviewer_notes = f"gate kind {gate_kind.value} is not enabled for this project"
            gate.auto_resolved = True

        self._store.add(gate)
        self._logger.info(
            "gate_created",
            project_id=project_id,
            gate_id=gate.id,
            task_id=task_id,
            kind=gate_kind.value,
            status=gate.status.value,
            auto_resolved=gate.auto_resolved,
        )
        self._emit(EventType.GATE_CREATED, gate)
        if gate.auto_resolved:
            self._emit(EventType.GATE_RESOLVED, gate)
        return gate

    def resolve(
        self,
        gate_id: str,
        decision: GateDecision | str,
        *,
        resolved_by: str = "human",
        notes: str | None = None,
        modified_payload: object = None,
    ) -> ApprovalGate:
        """Apply a decision to a pending gate.

        Raises:
            GateNotFoundError: no gate has this id.
            GateAlreadyResolvedError: the gate already left ``PENDING``; its stored
                decision is left untouched.
        """

        parsed = GateDecision(decision)
        with self._gate_locks.hold(gate_id):
            gate = self.get(gate_id)
            if not gate.is_pending:
                self._logger.warning(
                    "gate_resolution_rejected",
                    gate_id=gate_id,
                    status=gate.status.value,
                    resolved_by=gate.resolved_by,
                    attempted_by=resolved_by,
                )
                self._gate_locks.discard(gate_id)
                raise GateAlreadyResolvedError(gate_id, gate.status.value, gate.resolved_by)
            gate.status = parsed.resulting_status
            gate.resolved_at = utc_now()
            gate.resolved_by = resolved_by
            gate.reviewer_notes = notes
            if parsed is GateDecision.MODIFY:
                gate.modified_payload = modified_payload
            self._store.save(gate)
        self._gate_locks.discard(gate_id)

        self._logger.info(
            "gate_resolved",
            project_id=gate.project_id,
            gate_id=gate.id,
            kind=gate.kind.value,
            status=gate.status.value,
            resolved_by=resolved_by,
        )
        self._emit(EventType.GATE_RESOLVED, gate)
        self._signal(gate_id, _SIGNAL_RESOLVED)
        return gate

    def approve(
        self, gate_id: str, *, resolved_by: str = "human", notes: str | None = None
    ) -> ApprovalGate:
        return self.resolve(gate_id, GateDecision.APPROVE, resolved_by=resolved_by, notes=notes)

    def reject(
        self, gate_id: str, *, resolved_by: str = "human", notes: str | None = None
    ) -> ApprovalGate:
        return self.resolve(gate_id, GateDecision.REJECT, resolved_by=resolved_by, notes=notes)

    def modify(
        self,
        gate_id: str,
        modified_payload: object,
        *,
        resolved_by: str = "human",
        notes: str | None = None,
    ) -> ApprovalGate:
        return self.resolve(
            gate_id,
            GateDecision.MODIFY,
            resolved_by=resolved_by,
            notes=notes,
            modified_payload=modified_payload,
        )

    async def wait_for_resolution(
        self, gate_id: str, timeout_seconds: float | None = None
    ) -> GateWaitResult:
        """Suspend until the gate leaves ``PENDING``, times out, or is aborted.

        On timeout the per-kind policy is applied through ``resolve`` so it races
        fairly with a late human decision; whichever lands first stands.
        """

        gate = self.get(gate_id)
        timeout = (
            self._settings.default_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        if timeout <= 0:
            raise ValueError("timeout_seconds must be > 0")

        if not gate.is_pending:
            return self._resolved_result(gate)

        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()
        with self._gate_locks.hold(gate_id):
            gate = self.get(gate_id)
            if not gate.is_pending:
                self._gate_locks.discard(gate_id)
                return self._resolved_result(gate)
            with self._guard:
                self._waiters.setdefault(gate_id, []).append((loop, future))

        try:
            signal = await asyncio.wait_for(future, timeout)
        except TimeoutError:
            return self._apply_timeout_policy(gate_id, timeout)
        finally:
            self._forget_waiter(gate_id, future)

        gate = self.get(gate_id)
        if signal == _SIGNAL_CANCELLED:
            self._logger.info("gate_wait_cancelled", gate_id=gate_id, status=gate.status.value)
            return GateWaitResult(
                gate_id=gate_id,
                outcome=WaitOutcome.CANCELLED,
                status=gate.status,
                resolved_by=gate.resolved_by,
                reviewer_notes=gate.reviewer_notes,
            )
        return self._resolved_result(gate)

    def abort(self, gate_id: str, *, reason: str = "aborted") -> int:
        """Unblock every waiter on ``gate_id`` with a cancellation result."""

        self.get(gate_id)
        released = self._signal(gate_id, _SIGNAL_CANCELLED)
        self._logger.info("gate_wait_aborted", gate_id=gate_id, reason=reason, waiters=released)
        return released

    def cancel_project(self, project_id: str, *, reason: str = "project_closed") -> int:
        """Refuse new gates, unblock all waiters, and reject still-pending gates."""

        with self._guard:
            self._cancelled_projects.add(project_id)
        rejected = 0
        for gate in self._store.list_for_project(project_id, pending_only=True):
            self._signal(gate.id, _SIGNAL_CANCELLED)
            if self.withdraw(gate.id, reason=reason):
                rejected += 1
        self._logger.info("gates_cancelled", project_id=project_id, rejected=rejected, reason=reason)
        return rejected

    def withdraw(self, gate_id: str, *, reason: str) -> bool:
        """Reject ``gate_id`` as ``system:cancelled``; False when it was already settled."""

        if not self.get(gate_id).is_pending:
            return False
        try:
            self.resolve(
                gate_id, GateDecision.REJECT, resolved_by=SYSTEM_CANCEL_RESOLVER, notes=reason
            )
        except GateAlreadyResolvedError:
            return False
        return True

    def forget_project(self, project_id: str) -> None:
        """Drop per-project configuration. The closed-project marker is kept."""

        with self._guard:
            self._project_kinds.pop(project_id, None)

    def lock_count(self) -> int:
        return len(self._gate_locks)

    def waiter_count(self, gate_id: str) -> int:
        with self._guard:
            return len(self._waiters.get(gate_id, ()))

    def _apply_timeout_policy(self, gate_id: str, timeout: float) -> GateWaitResult:
        gate = self.get(gate_id)
        policy = self._settings.policy_for(gate.kind)
        decision = (
            GateDecision.APPROVE if policy is GateTimeoutPolicy.AUTO_APPROVE else GateDecision.REJECT
        )
        try:
            gate = self.resolve(
                gate_id,
                decision,
                resolved_by=SYSTEM_TIMEOUT_RESOLVER,
                notes=f"no decision within {timeout:g}s; timeout policy {policy.value}",
            )
        except GateAlreadyResolvedError:
            return self._resolved_result(self.get(gate_id))

        self._logger.warning(
            "gate_timed_out",
            project_id=gate.project_id,
            gate_id=gate_id,
            kind=gate.kind.value,
            policy=policy.value,
            status=gate.status.value,
        )
        if self._bus is not None:
            self._bus.emit(
                EventType.GATE_TIMED_OUT,
                {
                    "gate_id": gate_id,
                    "kind": gate.kind.value,
                    "policy": policy.value,
                    "status": gate.status.value,
                    "task_id": gate.task_id,
                },
                project_id=gate.project_id,
            )
        return GateWaitResult(
            gate_id=gate_id,
            outcome=WaitOutcome.TIMED_OUT,
            status=gate.status,
            resolved_by=gate.resolved_by,
            reviewer_notes=gate.reviewer_notes,
            applied_policy=policy,
        )

    def _resolved_result(self, gate: ApprovalGate) -> GateWaitResult:
        return GateWaitResult(
            gate_id=gate.id,
            outcome=WaitOutcome.RESOLVED,
            status=gate.status,
            resolved_by=gate.resolved_by,
            reviewer_notes=gate.reviewer_notes,
        )

    def _signal(self, gate_id: str, signal: str) -> int:
        with self._guard:
            waiters = self._waiters.pop(gate_id, [])
        for loop, future in waiters:
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_settle, future, signal)
        return len(waiters)

    def _forget_waiter(self, gate_id: str, future: asyncio.Future[str]) -> None:
        with self._guard:
            waiters = self._waiters.get(gate_id)
            if not waiters:
                return
            remaining = [entry for entry in waiters if entry[1] is not future]
            if remaining:
                self._waiters[gate_id] = remaining
            else:
                self._waiters.pop(gate_id, None)

    def _emit(self, event_type: EventType, gate: ApprovalGate) -> None:
        if self._bus is not None:
            self._bus.emit(event_type, gate.to_dict(), project_id=gate.project_id)


def _settle(future: asyncio.Future[str], signal: str) -> None:
    if not future.done():
        future.set_result(signal)


__all__ = ["ApprovalGateController", "GateWaitResult", "WaitOutcome"]
