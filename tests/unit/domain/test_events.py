"""Unit tests for the workforce event envelope and redaction helpers."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from nexus_workforce.domain.events import (
    EventType,
    WorkforceEvent,
    is_sensitive_key,
    redact_sensitive,
)


def _event(payload: dict[str, object]) -> WorkforceEvent:
    return WorkforceEvent(
        event_type=EventType.TASK_COMPLETED,
        payload=payload,  # type: ignore[arg-type]
        project_id="acme",
        timestamp=datetime(2026, 2, 1, 12, 0, tzinfo=UTC),
    )


def test_event_json_roundtrip_preserves_envelope() -> None:
    event = _event({"task_id": "task-1", "cost_usd": 0.25})

    restored = WorkforceEvent.from_json(event.to_json())

    assert restored == event
    assert restored.event_type is EventType.TASK_COMPLETED


def test_event_type_accepts_string_values() -> None:
    event = WorkforceEvent(event_type="GateCreated", payload={})  # type: ignore[arg-type]
    assert event.event_type is EventType.GATE_CREATED


def test_event_rejects_unknown_type() -> None:
    with pytest.raises(ValueError):
        WorkforceEvent(event_type="Exploded", payload={})  # type: ignore[arg-type]


def test_from_json_rejects_non_object_root() -> None:
    with pytest.raises(ValueError, match="JSON root must be an object"):
        WorkforceEvent.from_json("[1, 2]")


@pytest.mark.parametrize("key", ["api_key", "Authorization", "db_password", "token"])
def test_sensitive_keys(key: str) -> None:
    assert is_sensitive_key(key)


@pytest.mark.parametrize("key", ["tokens", "total_tokens", "task_id"])
def test_metric_keys_are_not_sensitive(key: str) -> None:
    assert not is_sensitive_key(key)


def test_redact_sensitive_is_deep_and_leaves_original_untouched() -> None:
    event = _event({"nested": {"api_key": "sk-live", "tokens": 42}, "items": [{"secret": "x"}]})

    redacted = redact_sensitive(event)

    assert redacted.payload["nested"] == {"api_key": "***REDACTED***", "tokens": 42}
    assert redacted.payload["items"] == [{"secret": "***REDACTED***"}]
    assert event.payload["nested"]["api_key"] == "sk-live"  # type: ignore[index]
    assert redacted.event_id == event.event_id
