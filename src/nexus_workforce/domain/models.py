"""Dataclass domain models for workers, tasks, workload profiles, and approval gates."""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
from typing import Final

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

NEUTRAL_SCORE: Final[float] = 0.5
_MAX_JSON_DEPTH: Final[int] = 16


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


class WorkerRole(StrEnum):
    """Closed set of worker roles; see ``ROLE_SENIORITY`` for ordering."""

    COORDINATOR = "coordinator"
    SENIOR_BUILDER = "senior_builder"
    BUILDER = "builder"
    REVIEWER = "reviewer"
    QUALITY_CHECKER = "quality_checker"
    OPERATIONS_BUILDER = "operations_builder"

    @property
    def seniority(self) -> int:
        return ROLE_SENIORITY[self]

    def outranks(self, other: WorkerRole) -> bool:
        return self.seniority > other.seniority

    @classmethod
    def parse(cls, value: WorkerRole | str) -> WorkerRole:
        """Parse ``SeniorBuilder``, ``senior-builder`` or ``senior_builder`` alike."""

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"role must be a WorkerRole or string, got {type(value).__name__}")
        normalized = _normalize_identifier(value)
        try:
            return cls(normalized)
        except ValueError as exc:
            allowed = ", ".join(role.value for role in roles_by_seniority())
            raise ValueError(f"unknown worker role {value!r}; expected one of: {allowed}") from exc


# Ascending seniority. Fallback dispatch only ever moves up this table.
ROLE_SENIORITY: Final[Mapping[WorkerRole, int]] = MappingProxyType(
    {
        WorkerRole.BUILDER: 10,
        WorkerRole.QUALITY_CHECKER: 20,
        WorkerRole.OPERATIONS_BUILDER: 30,
        WorkerRole.REVIEWER: 40,
        WorkerRole.SENIOR_BUILDER: 50,
        WorkerRole.COORDINATOR: 60,
    }
)


def roles_by_seniority(*, descending: bool = False) -> tuple[WorkerRole, ...]:
    return tuple(sorted(ROLE_SENIORITY, key=lambda role: ROLE_SENIORITY[role], reverse=descending))


def more_senior_roles(role: WorkerRole) -> tuple[WorkerRole, ...]:
    """Roles that outrank ``role``, nearest first."""

    return tuple(candidate for candidate in roles_by_seniority() if candidate.outranks(role))


class WorkerStatus(StrEnum):
    IDLE = "idle"
    BUSY = "busy"
    RETIRED = "retired"


class TaskStatus(StrEnum):
    QUEUED = "queued"
    ASSIGNED = "assigned"
    EXECUTING = "executing"
    AWAITING_GATE = "awaiting_gate"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_TASK_STATUSES: Final[frozenset[TaskStatus]] = frozenset(
    {TaskStatus.ASSIGNED, TaskStatus.EXECUTING, TaskStatus.AWAITING_GATE}
)
TERMINAL_TASK_STATUSES: Final[frozenset[TaskStatus]] = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)
TASK_TRANSITIONS: Final[Mapping[TaskStatus, frozenset[TaskStatus]]] = MappingProxyType(
    {
        TaskStatus.QUEUED: frozenset({TaskStatus.ASSIGNED, TaskStatus.CANCELLED}),
        TaskStatus.ASSIGNED: frozenset(
            {TaskStatus.EXECUTING, TaskStatus.QUEUED, TaskStatus.FAILED, TaskStatus.CANCELLED}
        ),
        TaskStatus.EXECUTING: frozenset(
            {
                TaskStatus.AWAITING_GATE,
                TaskStatus.COMPLETED,
                TaskStatus.FAILED,
                TaskStatus.CANCELLED,
                TaskStatus.QUEUED,
            }
        ),
        TaskStatus.AWAITING_GATE: frozenset(
            {TaskStatus.EXECUTING, TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
        ),
        TaskStatus.COMPLETED: frozenset(),
        TaskStatus.FAILED: frozenset(),
        TaskStatus.CANCELLED: frozenset(),
    }
)


class GateKind(StrEnum):
    PRE_COMMIT = "pre_commit"
    ARCHITECTURE_DECISION = "architecture_decision"
    SECURITY = "security"
    DEPLOYMENT = "deployment"
    COST_THRESHOLD = "cost_threshold"
    TASK_COMPLETE = "task_complete"
    ESCALATION = "escalation"

    @classmethod
    def parse(cls, value: GateKind | str) -> GateKind:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"gate kind must be a GateKind or string, got {type(value).__name__}")
        normalized = _normalize_identifier(value)
        aliases = {"architecture": cls.ARCHITECTURE_DECISION, "cost": cls.COST_THRESHOLD}
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError as exc:
            allowed = ", ".join(kind.value for kind in cls)
            raise ValueError(f"unknown gate kind {value!r}; expected one of: {allowed}") from exc


class GateStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"


class GateDecision(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    MODIFY = "modify"

    @property
    def resulting_status(self) -> GateStatus:
        return _DECISION_STATUS[self]


_DECISION_STATUS: Final[Mapping[GateDecision, GateStatus]] = MappingProxyType(
    {
        GateDecision.APPROVE: GateStatus.APPROVED,
        GateDecision.REJECT: GateStatus.REJECTED,
        GateDecision.MODIFY: GateStatus.MODIFIED,
    }
)


class GateTimeoutPolicy(StrEnum):
    AUTO_APPROVE = "auto_approve"
    FAIL_SAFE = "fail_safe"


DEFAULT_ENABLED_GATE_KINDS: Final[frozenset[GateKind]] = frozenset(
    {
        GateKind.PRE_COMMIT,
        GateKind.ARCHITECTURE_DECISION,
        GateKind.SECURITY,
        GateKind.ESCALATION,
    }
)

DEFAULT_GATE_TIMEOUT_POLICY: Final[Mapping[GateKind, GateTimeoutPolicy]] = MappingProxyType(
    {
        GateKind.PRE_COMMIT: GateTimeoutPolicy.AUTO_APPROVE,
        GateKind.TASK_COMPLETE: GateTimeoutPolicy.AUTO_APPROVE,
        GateKind.ARCHITECTURE_DECISION: GateTimeoutPolicy.FAIL_SAFE,
        GateKind.SECURITY: GateTimeoutPolicy.FAIL_SAFE,
        GateKind.DEPLOYMENT: GateTimeoutPolicy.FAIL_SAFE,
        GateKind.COST_THRESHOLD: GateTimeoutPolicy.FAIL_SAFE,
        GateKind.ESCALATION: GateTimeoutPolicy.FAIL_SAFE,
    }
)


class SecurityTier(StrEnum):
    BASIC = "basic"
    STANDARD = "standard"
    ELEVATED = "elevated"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SECURITY_ORDER.index(self)


class ScaleTier(StrEnum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    ENTERPRISE = "enterprise"

    @property
    def rank(self) -> int:
        return _SCALE_ORDER.index(self)


_SECURITY_ORDER: Final[tuple[SecurityTier, ...]] = tuple(SecurityTier)
_SCALE_ORDER: Final[tuple[ScaleTier, ...]] = tuple(ScaleTier)

_PROFILE_KEY_ALIASES: Final[Mapping[str, str]] = MappingProxyType(
    {
        "features": "feature_count",
        "feature_count": "feature_count",
        "integrations": "integration_count",
        "integration_count": "integration_count",
        "security": "security_tier",
        "security_tier": "security_tier",
        "scale": "scale_tier",
        "scale_tier": "scale_tier",
        "complexity": "complexity_score",
        "complexity_score": "complexity_score",
        "workflows_per_hour": "workflows_per_hour",
    }
)


@dataclass(frozen=True, slots=True)
class WorkloadProfile:
    """Scalar signal bag produced by requirements analysis."""

    feature_count: int = 0
    integration_count: int = 0
    security_tier: SecurityTier = SecurityTier.BASIC
    scale_tier: ScaleTier = ScaleTier.SMALL
    complexity_score: float = 50.0
    workflows_per_hour: float = 5.0

    def __post_init__(self) -> None:
        _require_non_negative_int(self.feature_count, "WorkloadProfile.feature_count")
        _require_non_negative_int(self.integration_count, "WorkloadProfile.integration_count")
        object.__setattr__(self, "security_tier", SecurityTier(self.security_tier))
        object.__setattr__(self, "scale_tier", ScaleTier(self.scale_tier))
        complexity = _require_finite(self.complexity_score, "WorkloadProfile.complexity_score")
        if not 0.0 <= complexity <= 100.0:
            raise ValueError("WorkloadProfile.complexity_score must be within [0, 100]")
        object.__setattr__(self, "complexity_score", complexity)
        workflows = _require_finite(self.workflows_per_hour, "WorkloadProfile.workflows_per_hour")
        if workflows < 0:
            raise ValueError("WorkloadProfile.workflows_per_hour must be >= 0")
        object.__setattr__(self, "workflows_per_hour", workflows)

    @classmethod
    def parse(cls, payload: object) -> WorkloadProfile | None:
        """Lenient parse; ``None`` means empty or unparseable input."""

        if isinstance(payload, cls):
            return payload
        if not isinstance(payload, Mapping) or not payload:
            return None

        values: dict[str, object] = {}
        for raw_key, raw_value in payload.items():
            if not isinstance(raw_key, str):
                return None
            key = _PROFILE_KEY_ALIASES.get(_normalize_identifier(raw_key))
            if key is None:
                continue
            values[key] = raw_value
        if not values:
            return None

        try:
            for tier_key, tier_type in (("security_tier", SecurityTier), ("scale_tier", ScaleTier)):
                if tier_key in values:
                    raw_tier = values[tier_key]
                    if not isinstance(raw_tier, str):
                        return None
                    values[tier_key] = tier_type(_normalize_identifier(raw_tier))
            for count_key in ("feature_count", "integration_count"):
                if count_key in values:
                    values[count_key] = _coerce_int(values[count_key])
            for float_key in ("complexity_score", "workflows_per_hour"):
                if float_key in values:
                    values[float_key] = _coerce_float(values[float_key])
            return cls(**values)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return None

    def dominates(self, other: WorkloadProfile) -> bool:
        """True when every signal of ``self`` is at least the matching signal of ``other``."""

        return (
            self.feature_count >= other.feature_count
            and self.integration_count >= other.integration_count
            and self.security_tier.rank >= other.security_tier.rank
            and self.scale_tier.rank >= other.scale_tier.rank
            and self.complexity_score >= other.complexity_score
            and self.workflows_per_hour >= other.workflows_per_hour
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "feature_count": self.feature_count,
            "integration_count": self.integration_count,
            "security_tier": self.security_tier.value,
            "scale_tier": self.scale_tier.value,
            "complexity_score": self.complexity_score,
            "workflows_per_hour": self.workflows_per_hour,
        }


@dataclass(frozen=True, slots=True)
class AllocationComposition:
    """Target worker count per role. Zero entries are dropped on construction."""

    counts: tuple[tuple[WorkerRole, int], ...] = ()

    def __post_init__(self) -> None:
        merged: dict[WorkerRole, int] = {}
        for entry in self.counts:
            if not isinstance(entry, tuple) or len(entry) != 2:
                raise ValueError("AllocationComposition.counts entries must be (role, count) pairs")
            role = WorkerRole.parse(entry[0])
            count = _require_non_negative_int(entry[1], f"AllocationComposition[{role.value}]")
            merged[role] = merged.get(role, 0) + count
        ordered = tuple(
            (role, merged[role])
            for role in roles_by_seniority(descending=True)
            if merged.get(role, 0) > 0
        )
        object.__setattr__(self, "counts", ordered)

    @classmethod
    def from_mapping(cls, payload: Mapping[WorkerRole | str, int]) -> AllocationComposition:
        return cls(tuple((WorkerRole.parse(role), count) for role, count in payload.items()))

    @classmethod
    def minimum_viable(cls) -> AllocationComposition:
        return cls(((WorkerRole.COORDINATOR, 1),))

    @property
    def total(self) -> int:
        return sum(count for _, count in self.counts)

    def count(self, role: WorkerRole | str) -> int:
        parsed = WorkerRole.parse(role)
        for candidate, count in self.counts:
            if candidate is parsed:
                return count
        return 0

    def roles(self) -> tuple[WorkerRole, ...]:
        return tuple(role for role, _ in self.counts)

    def as_mapping(self) -> Mapping[WorkerRole, int]:
        return MappingProxyType(dict(self.counts))

    def to_dict(self) -> dict[str, int]:
        return {role.value: count for role, count in self.counts}


@dataclass(slots=True)
class Worker:
    """A stateful executor holding at most one task at a time."""

    id: str
    project_id: str
    role: WorkerRole
    ordinal: int
    status: WorkerStatus = WorkerStatus.IDLE
    score: float = NEUTRAL_SCORE
    success_count: int = 0
    fail_count: int = 0
    current_task_id: str | None = None
    retire_requested: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    retired_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return self.status is not WorkerStatus.RETIRED

    @property
    def sample_count(self) -> int:
        return self.success_count + self.fail_count

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "role": self.role.value,
            "ordinal": self.ordinal,
            "status": self.status.value,
            "score": round(self.score, 6),
            "success_count": self.success_count,
            "fail_count": self.fail_count,
            "current_task_id": self.current_task_id,
            "retire_requested": self.retire_requested,
            "created_at": _iso(self.created_at),
            "retired_at": _iso(self.retired_at),
        }


@dataclass(slots=True)
class Task:
    """A unit of work requiring a specific worker role."""

    id: str
    project_id: str
    required_role: WorkerRole
    payload: object = None
    status: TaskStatus = TaskStatus.QUEUED
    assigned_worker_id: str | None = None
    retry_count: int = 0
    gate_kind: GateKind | None = None
    sequence: int = 0
    last_feedback: str | None = None
    failure_reason: str | None = None
    result: object = None
    cost_usd: float = 0.0
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TASK_STATUSES

    def check_invariants(self) -> None:
        """``assigned_worker_id`` is set iff the task is active."""

        if self.is_active and self.assigned_worker_id is None:
            raise ValueError(f"task {self.id} is {self.status.value} without an assigned worker")
        if not self.is_active and self.assigned_worker_id is not None:
            raise ValueError(
                f"task {self.id} is {self.status.value} but still references worker "
                f"{self.assigned_worker_id}"
            )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "required_role": self.required_role.value,
            "status": self.status.value,
            "assigned_worker_id": self.assigned_worker_id,
            "retry_count": self.retry_count,
            "gate_kind": self.gate_kind.value if self.gate_kind is not None else None,
            "sequence": self.sequence,
            "last_feedback": self.last_feedback,
            "failure_reason": self.failure_reason,
            "cost_usd": round(self.cost_usd, 6),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(slots=True)
class ApprovalGate:
    """Human-decision checkpoint. Status only ever leaves ``PENDING`` once."""

    id: str
    project_id: str
    kind: GateKind
    payload: object = None
    status: GateStatus = GateStatus.PENDING
    task_id: str | None = None
    title: str = ""
    modified_payload: object = None
    created_at: datetime = field(default_factory=utc_now)
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    reviewer_notes: str | None = None
    auto_resolved: bool = False

    @property
    def is_pending(self) -> bool:
        return self.status is GateStatus.PENDING

    @property
    def is_approved(self) -> bool:
        return self.status in {GateStatus.APPROVED, GateStatus.MODIFIED}

    @property
    def effective_payload(self) -> object:
        if self.status is GateStatus.MODIFIED and self.modified_payload is not None:
            return self.modified_payload
        return self.payload

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "task_id": self.task_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "title": self.title,
            "payload": json_safe(self.payload),
            "modified_payload": json_safe(self.modified_payload),
            "created_at": _iso(self.created_at),
            "resolved_at": _iso(self.resolved_at),
            "resolved_by": self.resolved_by,
            "reviewer_notes": self.reviewer_notes,
            "auto_resolved": self.auto_resolved,
        }


def json_safe(value: object, *, depth: int = 0) -> JSONValue:
    """Best-effort JSON projection of an opaque payload for events and reports."""

    if depth > _MAX_JSON_DEPTH:
        return "<max-depth>"
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, Mapping):
        return {str(key): json_safe(item, depth=depth + 1) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=repr) if isinstance(value, (set, frozenset)) else value
        return [json_safe(item, depth=depth + 1) for item in items]
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return json_safe(to_dict(), depth=depth + 1)
    return repr(value)


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _normalize_identifier(value: str) -> str:
    text = value.strip()
    chars: list[str] = []
    for index, char in enumerate(text):
        if char.isupper() and index > 0 and (text[index - 1].islower() or text[index - 1].isdigit()):
            chars.append("_")
        chars.append(char.lower())
    parts = "".join(chars).replace("-", " ").replace("_", " ").split()
    return "_".join(parts)


def _require_non_negative_int(value: object, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{path} must be >= 0")
    return value


def _require_finite(value: object, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{path} must be numeric, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        raise ValueError(f"{path} must be finite")
    return parsed


def _coerce_int(value: object) -> int:
    if isinstance(value, bool):
        raise ValueError("boolean is not a count")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        return int(value.strip())
    raise ValueError(f"cannot coerce {type(value).__name__} to int")


def _coerce_float(value: object) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not numeric")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return float(value.strip())
    raise ValueError(f"cannot coerce {type(value).__name__} to float")


__all__ = [
    "ACTIVE_TASK_STATUSES",
    "DEFAULT_ENABLED_GATE_KINDS",
    "DEFAULT_GATE_TIMEOUT_POLICY",
    "NEUTRAL_SCORE",
    "ROLE_SENIORITY",
    "TASK_TRANSITIONS",
    "TERMINAL_TASK_STATUSES",
    "AllocationComposition",
    "ApprovalGate",
    "GateDecision",
    "GateKind",
    "GateStatus",
    "GateTimeoutPolicy",
    "JSONScalar",
    "JSONValue",
    "ScaleTier",
    "SecurityTier",
    "Task",
    "TaskStatus",
    "Worker",
    "WorkerRole",
    "WorkerStatus",
    "WorkloadProfile",
    "json_safe",
    "more_senior_roles",
    "roles_by_seniority",
    "utc_now",
]
