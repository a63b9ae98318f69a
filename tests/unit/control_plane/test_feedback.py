"""Unit tests for verification feedback packages."""

from __future__ import annotations

import json

from nexus_workforce.constants import FEEDBACK_SCHEMA_VERSION
from nexus_workforce.control_plane.feedback import build_feedback_package, synthesize_feedback
from nexus_workforce.control_plane.verification import AttemptRecord, VerificationOutcome


def _record(number: int, *, passed: bool, reason: str | None, feedback: str | None) -> AttemptRecord:
    return AttemptRecord(
        attempt_number=number,
        passed=passed,
        reason_code=reason,
        feedback=feedback,
        cost_usd=0.1,
        tokens=50,
        duration_seconds=0.5,
    )


def _exhausted() -> VerificationOutcome:
    return VerificationOutcome(
        output="bad patch",
        verified=False,
        last_feedback="2 tests failing",
        attempts=(
            _record(1, passed=False, reason="attempt_timeout", feedback="timed out"),
            _record(2, passed=False, reason="verification_failed", feedback="2 tests failing"),
        ),
    )


def test_unverified_outcome_adds_exhaustion_reason_and_hints() -> None:
    package = build_feedback_package(_exhausted())

    assert package.schema_version == FEEDBACK_SCHEMA_VERSION
    assert package.reason_codes == (
        "attempt_timeout",
        "verification_exhausted",
        "verification_failed",
    )
    assert len(package.remediation_hints) == 3
    assert package.totals == {"attempt_count": 2, "cost_usd": 0.2, "tokens": 100}
    assert package.last_feedback == "2 tests failing"


def test_verified_outcome_has_no_exhaustion_reason() -> None:
    outcome = VerificationOutcome(
        output="good patch",
        verified=True,
        last_feedback=None,
        attempts=(_record(1, passed=True, reason=None, feedback=None),),
    )

    package = build_feedback_package(outcome)

    assert package.reason_codes == ()
    assert package.remediation_hints == ()
    assert "metadata" not in package.to_dict()


def test_package_json_is_deterministic() -> None:
    first = build_feedback_package(_exhausted(), metadata={"task_id": "task-1"}).to_json()
    second = build_feedback_package(_exhausted(), metadata={"task_id": "task-1"}).to_json()

    assert first == second
    assert json.loads(first)["metadata"] == {"task_id": "task-1"}


def test_synthesize_feedback_redacts_sensitive_metadata() -> None:
    payload = synthesize_feedback(
        _exhausted(), metadata={"task_id": "task-1", "api_key": "sk-live-0000"}
    )

    assert payload["metadata"] == {"task_id": "task-1", "api_key": "***REDACTED***"}
    assert payload["verified"] is False
