"""
Generate -> verify -> retry-with-feedback loop.

Purpose
- Run a caller-supplied ``generate`` step and check its output with a
  caller-supplied ``verify`` predicate, at most ``max_attempts`` times.
- Thread the previous attempt's feedback into the next ``generate`` call.

Contract
- Exhaustion is a returned value (``verified=False``), never an exception.
- Each attempt runs under its own timeout; a timed-out or raising ``generate``
  counts as a failed attempt with synthesized feedback. Plain (sync)
  ``generate`` callables run in a worker thread so the timeout covers them.
- ``should_stop`` ends the loop after a failed attempt without retrying.
- Exceptions from ``verify`` propagate to the caller.
- Cancellation (token or task) propagates immediately.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from nexus_workforce.config.settings import VerificationSettings
from nexus_workforce.domain.models import json_safe
from nexus_workforce.utils.concurrency import (
    CancellationToken,
    call_off_loop,
    maybe_await,
    run_with_timeout,
)

REASON_VERIFICATION_FAILED = "verification_failed"
REASON_ATTEMPT_TIMEOUT = "attempt_timeout"
REASON_GENERATION_ERROR = "generation_error"


@dataclass(frozen=True, slots=True)
class AttemptContext:
    """What ``generate`` sees on each attempt."""

    attempt_number: int
    max_attempts: int
    last_feedback: str | None = None
    feedback_history: tuple[str, ...] = ()

    @property
    def is_retry(self) -> bool:
        return self.attempt_number > 1

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt_number == self.max_attempts


@dataclass(frozen=True, slots=True)
class GenerationResult:
    """Raw output plus the cost/token accounting reported by the model call."""

    output: object
    cost_usd: float = 0.0
    tokens: int = 0

    def __post_init__(self) -> None:
        if self.cost_usd < 0:
            raise ValueError("GenerationResult.cost_usd must be >= 0")
        if self.tokens < 0:
            raise ValueError("GenerationResult.tokens must be >= 0")


@dataclass(frozen=True, slots=True)
class Verdict:
    passed: bool
    feedback: str | None = None

    @classmethod
    def coerce(cls, value: object) -> Verdict:
        if isinstance(value, Verdict):
            return value
        if isinstance(value, bool):
            return cls(passed=value)
        if isinstance(value, tuple) and len(value) == 2 and isinstance(value[0], bool):
            feedback = value[1]
            return cls(passed=value[0], feedback=None if feedback is None else str(feedback))
        raise TypeError(
            "verify must return a Verdict, a bool, or a (bool, feedback) tuple, "
            f"got {type(value).__name__}"
        )


@dataclass(frozen=True, slots=True)
class AttemptRecord:
    attempt_number: int
    passed: bool
    reason_code: str | None
    feedback: str | None
    cost_usd: float
    tokens: int
    duration_seconds: float

    def to_dict(self) -> dict[str, object]:
        return {
            "attempt": self.attempt_number,
            "passed": self.passed,
            "reason_code": self.reason_code,
            "feedback": self.feedback,
            "cost_usd": round(self.cost_usd, 6),
            "tokens": self.tokens,
            "duration_seconds": round(self.duration_seconds, 6),
        }


@dataclass(frozen=True, slots=True)
class VerificationOutcome:
    output: object
    verified: bool
    last_feedback: str | None
    attempts: tuple[AttemptRecord, ...] = field(default_factory=tuple)
    stopped: bool = False

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def total_cost_usd(self) -> float:
        return round(sum(attempt.cost_usd for attempt in self.attempts), 6)

    @property
    def total_tokens(self) -> int:
        return sum(attempt.tokens for attempt in self.attempts)

    @property
    def reason_codes(self) -> tuple[str, ...]:
        return tuple(
            sorted({attempt.reason_code for attempt in self.attempts if attempt.reason_code})
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "verified": self.verified,
            "stopped": self.stopped,
            "output": json_safe(self.output),
            "last_feedback": self.last_feedback,
            "attempt_count": self.attempt_count,
            "total_cost_usd": self.total_cost_usd,
            "total_tokens": self.total_tokens,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


GenerateFn = Callable[[AttemptContext], object | Awaitable[object]]
VerifyFn = Callable[[object], object | Awaitable[object]]
AttemptObserver = Callable[[AttemptRecord], object]
StopCondition = Callable[[AttemptRecord], bool]


class VerifiedExecutionLoop:
    """Bounded generate/verify loop. Never retries indefinitely, never accepts unverified output."""

    def __init__(
        self,
        settings: VerificationSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings or VerificationSettings()
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> VerificationSettings:
        return self._settings

    async def execute(
        self,
        generate: GenerateFn,
        verify: VerifyFn,
        *,
        max_attempts: int | None = None,
        attempt_timeout_seconds: float | None = None,
        cancel_token: CancellationToken | None = None,
        on_attempt: AttemptObserver | None = None,
        should_stop: StopCondition | None = None,
    ) -> VerificationOutcome:
        limit = self._settings.max_attempts if max_attempts is None else max_attempts
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError("max_attempts must be an integer >= 1")
        timeout = (
            self._settings.attempt_timeout_seconds
            if attempt_timeout_seconds is None
            else attempt_timeout_seconds
        )

        records: list[AttemptRecord] = []
        history: list[str] = []
        last_feedback: str | None = None
        last_output: object = None

        for attempt_number in range(1, limit + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            context = AttemptContext(
                attempt_number=attempt_number,
                max_attempts=limit,
                last_feedback=last_feedback,
                feedback_history=tuple(history),
            )
            started = self._clock()
            output: object = None
            cost_usd = 0.0
            tokens = 0
            try:
                generated = await run_with_timeout(
                    call_off_loop(generate, context), timeout, cancel_token
                )
            except asyncio.CancelledError:
                raise
            except TimeoutError:
                record = AttemptRecord(
                    attempt_number=attempt_number,
                    passed=False,
                    reason_code=REASON_ATTEMPT_TIMEOUT,
                    feedback=f"attempt {attempt_number} timed out after {timeout:g}s",
                    cost_usd=0.0,
                    tokens=0,
                    duration_seconds=self._clock() - started,
                )
            except Exception as exc:
                record = AttemptRecord(
                    attempt_number=attempt_number,
                    passed=False,
                    reason_code=REASON_GENERATION_ERROR,
                    feedback=f"generation failed: {type(exc).__name__}: {exc}",
                    cost_usd=0.0,
                    tokens=0,
                    duration_seconds=self._clock() - started,
                )
            else:
                if isinstance(generated, GenerationResult):
                    output = generated.output
                    cost_usd = generated.cost_usd
                    tokens = generated.tokens
                else:
                    output = generated
                last_output = output
                verdict = Verdict.coerce(await maybe_await(verify(output)))
                record = AttemptRecord(
                    attempt_number=attempt_number,
                    passed=verdict.passed,
                    reason_code=None if verdict.passed else REASON_VERIFICATION_FAILED,
                    feedback=verdict.feedback,
                    cost_usd=cost_usd,
                    tokens=tokens,
                    duration_seconds=self._clock() - started,
                )

            records.append(record)
            if on_attempt is not None:
                on_attempt(record)

            if record.passed:
                self._logger.info(
                    "verification_passed", attempt=attempt_number, max_attempts=limit
                )
                return VerificationOutcome(
                    output=output,
                    verified=True,
                    last_feedback=record.feedback,
                    attempts=tuple(records),
                )

            last_feedback = record.feedback or f"attempt {attempt_number} failed verification"
            history.append(last_feedback)
            self._logger.info(
                "verification_attempt_failed",
                attempt=attempt_number,
                max_attempts=limit,
                reason_code=record.reason_code,
            )
            if should_stop is not None and should_stop(record):
                self._logger.warning(
                    "verification_stopped", attempt=attempt_number, max_attempts=limit
                )
                return VerificationOutcome(
                    output=last_output,
                    verified=False,
                    last_feedback=last_feedback,
                    attempts=tuple(records),
                    stopped=True,
                )

        self._logger.warning(
            "verification_exhausted", attempts=limit, last_reason=records[-1].reason_code
        )
        return VerificationOutcome(
            output=last_output,
            verified=False,
            last_feedback=last_feedback,
            attempts=tuple(records),
        )


__all__ = [
    "REASON_ATTEMPT_TIMEOUT",
    "REASON_GENERATION_ERROR",
    "REASON_VERIFICATION_FAILED",
    "AttemptContext",
    "AttemptRecord",
    "GenerationResult",
    "StopCondition",
    "Verdict",
    "VerificationOutcome",
    "VerifiedExecutionLoop",
]
