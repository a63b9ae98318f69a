"""
Verification feedback packages.

Builds a deterministic machine-readable summary of a ``VerificationOutcome``
that is attached to failed or escalated tasks. Packages are deep-redacted
before they leave this module.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from nexus_workforce.constants import FEEDBACK_SCHEMA_VERSION
from nexus_workforce.control_plane.verification import (
    REASON_ATTEMPT_TIMEOUT,
    REASON_GENERATION_ERROR,
    REASON_VERIFICATION_FAILED,
)
from nexus_workforce.domain.events import redact_value
from nexus_workforce.domain.models import JSONValue, json_safe

if TYPE_CHECKING:
    from nexus_workforce.control_plane.verification import VerificationOutcome

_REASON_HINTS: dict[str, str] = {
    REASON_VERIFICATION_FAILED: "Fold the verifier feedback into the next generation request.",
    REASON_ATTEMPT_TIMEOUT: "Reduce the request size or raise verification.attempt_timeout_seconds.",
    REASON_GENERATION_ERROR: "Inspect the generation error; the model call itself failed.",
    "verification_exhausted": "Escalate to human review or take a simpler fallback path.",
}


@dataclass(frozen=True, slots=True)
class FeedbackPackage:
    """Machine-readable feedback package with deterministic ordering."""

    schema_version: int
    verified: bool
    attempts: tuple[dict[str, JSONValue], ...]
    last_feedback: str | None
    reason_codes: tuple[str, ...]
    remediation_hints: tuple[str, ...]
    totals: dict[str, JSONValue]
    metadata: dict[str, JSONValue]

    def to_dict(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "schema_version": self.schema_version,
            "verified": self.verified,
            "attempts": list(self.attempts),
            "last_feedback": self.last_feedback,
            "reason_codes": list(self.reason_codes),
            "remediation_hints": list(self.remediation_hints),
            "totals": self.totals,
        }
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def build_feedback_package(
    outcome: VerificationOutcome,
    *,
    metadata: Mapping[str, object] | None = None,
) -> FeedbackPackage:
    reason_codes = list(outcome.reason_codes)
    if not outcome.verified:
        reason_codes.append("verification_exhausted")
    reason_codes = sorted(set(reason_codes))
    hints = tuple(_REASON_HINTS[code] for code in reason_codes if code in _REASON_HINTS)
    attempts = tuple(_as_json_object(attempt.to_dict()) for attempt in outcome.attempts)
    return FeedbackPackage(
        schema_version=FEEDBACK_SCHEMA_VERSION,
        verified=outcome.verified,
        attempts=attempts,
        last_feedback=outcome.last_feedback,
        reason_codes=tuple(reason_codes),
        remediation_hints=hints,
        totals={
            "attempt_count": outcome.attempt_count,
            "cost_usd": outcome.total_cost_usd,
            "tokens": outcome.total_tokens,
        },
        metadata=_as_json_object(dict(metadata or {})),
    )


def synthesize_feedback(
    outcome: VerificationOutcome,
    *,
    metadata: Mapping[str, object] | None = None,
) -> dict[str, JSONValue]:
    """Build and redact a package in one step."""

    redacted = redact_value(build_feedback_package(outcome, metadata=metadata).to_dict())
    if not isinstance(redacted, dict):
        raise TypeError("redacted feedback payload must be a mapping")
    return redacted


def _as_json_object(value: Mapping[str, object]) -> dict[str, JSONValue]:
    projected = json_safe(dict(value))
    if not isinstance(projected, dict):
        raise TypeError("feedback section must project to a JSON object")
    return projected


__all__ = ["FeedbackPackage", "build_feedback_package", "synthesize_feedback"]
