"""
nexus-workforce: unit tests for the SQLite event journal

File: tests/unit/persistence/test_journal.py

Purpose
- Validate idempotent migration, append/read ordering, redaction at rest, and
  bus attachment.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from nexus_workforce.domain.events import EventType, WorkforceEvent
from nexus_workforce.observability.events import EventBus
from nexus_workforce.persistence.journal import JournalError, SQLiteEventJournal


def _event(event_type: EventType, project_id: str = "acme", **payload: object) -> WorkforceEvent:
    return WorkforceEvent(event_type=event_type, payload=payload, project_id=project_id)  # type: ignore[arg-type]


def test_append_and_read_preserve_order_and_filters() -> None:
    with SQLiteEventJournal() as journal:
        first = _event(EventType.TASK_ENQUEUED, task_id="task-1")
        second = _event(EventType.TASK_COMPLETED, task_id="task-1")
        other = _event(EventType.TASK_ENQUEUED, project_id="other", task_id="task-2")
        for event in (first, second, other):
            assert journal.append(event) is True

        assert journal.read() == [first, second, other]
        assert journal.read(project_id="acme") == [first, second]
        assert journal.read(event_type="TaskEnqueued") == [first, other]
        assert journal.read(limit=1) == [first]
        assert journal.read(limit=0) == []
        assert journal.count() == 3
        assert journal.count(project_id="other") == 1


def test_duplicate_event_ids_are_ignored() -> None:
    with SQLiteEventJournal() as journal:
        event = _event(EventType.GATE_CREATED, gate_id="gate-1")

        assert journal.append(event) is True
        assert journal.append(event) is False
        assert journal.count() == 1


def test_sensitive_payload_is_redacted_at_rest() -> None:
    with SQLiteEventJournal() as journal:
        journal.append(_event(EventType.TASK_FAILED, api_key="sk-live-123", reason="boom"))

        (stored,) = journal.read()

    assert stored.payload == {"api_key": "***REDACTED***", "reason": "boom"}


def test_migrate_is_idempotent_and_file_backed_journal_persists(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "events.db"
    event = _event(EventType.WORKER_SPAWNED, worker_id="acme/builder/001")

    with SQLiteEventJournal(path) as journal:
        journal.migrate()
        journal.append(event)

    with SQLiteEventJournal(path) as reopened:
        assert reopened.read() == [event]


def test_attach_persists_only_entity_changed_events() -> None:
    bus = EventBus()
    journal = SQLiteEventJournal()
    journal.attach(bus)
    try:
        bus.emit(EventType.TASK_ASSIGNED, {"task_id": "task-1"}, project_id="acme")
        bus.emit(EventType.WORKER_SCORED, {"score": 0.4}, project_id="acme")

        assert [event.event_type for event in journal.read()] == [EventType.TASK_ASSIGNED]
    finally:
        journal.close()


def test_reading_before_migration_is_a_journal_error() -> None:
    journal = SQLiteEventJournal()
    try:
        with pytest.raises(JournalError, match="read events failed"):
            journal.read()
    finally:
        journal.close()


def test_negative_busy_timeout_is_rejected() -> None:
    with pytest.raises(ValueError, match="busy_timeout_ms"):
        SQLiteEventJournal(busy_timeout_ms=-1)
