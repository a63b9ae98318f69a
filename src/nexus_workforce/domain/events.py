"""Workforce event definitions, serialization, and payload redaction helpers."""

from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum

from nexus_workforce.domain import ids
from nexus_workforce.domain.models import JSONValue, utc_now

_SENSITIVE_KEY_TERMS = (
    "secret",
    "api_key",
    "apikey",
    "password",
    "passphrase",
    "access_token",
    "auth_token",
    "refresh_token",
    "authorization",
    "credential",
    "private_key",
)
# Token counts ("tokens", "total_tokens") are metrics, so bare "token" matches exactly.
_SENSITIVE_EXACT_KEYS = frozenset({"token", "bearer"})
_REDACTED_VALUE = "***REDACTED***"
_MAX_STRING_LENGTH = 65_536


class EventType(StrEnum):
    """Lifecycle events emitted by the workforce engine."""

    WORKER_SPAWNED = "WorkerSpawned"
    WORKER_RETIRED = "WorkerRetired"
    WORKER_RETIREMENT_DEFERRED = "WorkerRetirementDeferred"
    WORKER_SCORED = "WorkerScored"
    POOL_RESCALED = "PoolRescaled"

    TASK_ENQUEUED = "TaskEnqueued"
    TASK_ASSIGNED = "TaskAssigned"
    TASK_EXECUTING = "TaskExecuting"
    TASK_AWAITING_GATE = "TaskAwaitingGate"
    TASK_COMPLETED = "TaskCompleted"
    TASK_FAILED = "TaskFailed"
    TASK_CANCELLED = "TaskCancelled"
    TASK_REQUEUED = "TaskRequeued"

    GATE_CREATED = "GateCreated"
    GATE_RESOLVED = "GateResolved"
    GATE_TIMED_OUT = "GateTimedOut"

    VERIFICATION_ATTEMPT_FAILED = "VerificationAttemptFailed"
    VERIFICATION_PASSED = "VerificationPassed"
    VERIFICATION_EXHAUSTED = "VerificationExhausted"

    BUDGET_WARNING = "BudgetWarning"
    BUDGET_EXHAUSTED = "BudgetExhausted"


@dataclass(slots=True)
class WorkforceEvent:
    """Serializable event envelope shared by every workforce component."""

    event_type: EventType
    payload: dict[str, JSONValue]
    project_id: str | None = None
    correlation_id: str | None = None
    event_id: str = field(default_factory=ids.generate_event_id)
    timestamp: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        ids.validate_event_id(self.event_id)
        self.event_type = _as_event_type(self.event_type, "WorkforceEvent.event_type")
        self.timestamp = _as_utc_datetime(self.timestamp, "WorkforceEvent.timestamp")
        self.project_id = _as_optional_str(self.project_id, "WorkforceEvent.project_id")
        self.correlation_id = _as_optional_str(self.correlation_id, "WorkforceEvent.correlation_id")
        self.payload = _as_json_object(self.payload, "WorkforceEvent.payload")

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type.value,
            "timestamp": _datetime_to_iso8601z(self.timestamp),
            "project_id": self.project_id,
            "correlation_id": self.correlation_id,
            "payload": _as_json_object(self.payload, "WorkforceEvent.payload"),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> WorkforceEvent:
        if not isinstance(data, Mapping):
            raise ValueError(f"WorkforceEvent: expected object, got {type(data).__name__}")
        unknown = sorted(set(data) - _ENVELOPE_FIELDS)
        missing = sorted(_REQUIRED_FIELDS - set(data))
        if unknown or missing:
            raise ValueError(f"WorkforceEvent: unexpected fields {unknown}, missing {missing}")
        return cls(
            event_id=str(data["event_id"]),
            event_type=data["event_type"],  # type: ignore[arg-type]
            timestamp=data["timestamp"],  # type: ignore[arg-type]
            project_id=data.get("project_id"),  # type: ignore[arg-type]
            correlation_id=data.get("correlation_id"),  # type: ignore[arg-type]
            payload=data["payload"],  # type: ignore[arg-type]
        )

    @classmethod
    def from_json(cls, raw: str) -> WorkforceEvent:
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"WorkforceEvent: invalid JSON: {exc}") from exc
        if not isinstance(parsed, dict):
            raise ValueError("WorkforceEvent: JSON root must be an object")
        return cls.from_dict(parsed)


_REQUIRED_FIELDS = frozenset({"event_id", "event_type", "timestamp", "payload"})
_ENVELOPE_FIELDS = _REQUIRED_FIELDS | {"project_id", "correlation_id"}


def redact_sensitive(event: WorkforceEvent) -> WorkforceEvent:
    """Copy of ``event`` with sensitive payload keys redacted at any depth."""

    return replace(event, payload=redact_value(event.payload))


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return lowered in _SENSITIVE_EXACT_KEYS or any(term in lowered for term in _SENSITIVE_KEY_TERMS)


def redact_value(value: JSONValue, key_context: str | None = None) -> JSONValue:
    if key_context is not None and is_sensitive_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, list):
        return [redact_value(item) for item in value]
    if isinstance(value, dict):
        return {key: redact_value(item, key) for key, item in value.items()}
    return value


def _as_optional_str(value: object, path: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip() or len(value) > 256:
        raise ValueError(f"{path}: expected a non-empty string of at most 256 characters")
    return value.strip()


def _as_event_type(value: object, path: str) -> EventType:
    try:
        return EventType(value)
    except ValueError as exc:
        raise ValueError(f"{path}: unsupported event type {value!r}") from exc


def _as_utc_datetime(value: object, path: str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError as exc:
            raise ValueError(f"{path}: invalid ISO-8601 datetime: {value!r}") from exc
    if not isinstance(value, datetime) or value.utcoffset() is None:
        raise ValueError(f"{path}: expected a timezone-aware datetime")
    return value.astimezone(UTC)


def _datetime_to_iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _as_json_value(value: object, path: str, depth: int = 0) -> JSONValue:
    if depth > 16:
        raise ValueError(f"{path}: JSON nesting too deep")
    if value is None or isinstance(value, (bool, int)):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return value
    if isinstance(value, str) and len(value) <= _MAX_STRING_LENGTH:
        return value
    if isinstance(value, (list, tuple)):
        return [_as_json_value(item, f"{path}[{i}]", depth + 1) for i, item in enumerate(value)]
    if isinstance(value, dict) and all(isinstance(key, str) for key in value):
        return {
            key: _as_json_value(item, f"{path}.{key}", depth + 1) for key, item in value.items()
        }
    raise ValueError(f"{path}: not a JSON value ({type(value).__name__})")


def _as_json_object(value: object, path: str) -> dict[str, JSONValue]:
    if not isinstance(value, dict):
        raise ValueError(f"{path}: expected object")
    return _as_json_value(value, path)  # type: ignore[return-value]


__all__ = [
    "EventType",
    "WorkforceEvent",
    "is_sensitive_key",
    "redact_sensitive",
    "redact_value",
]
