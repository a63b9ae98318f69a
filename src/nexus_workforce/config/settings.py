"""Typed, frozen engine settings materialised from a validated config mapping."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from nexus_workforce.config.schema import assert_valid_config, default_config
from nexus_workforce.constants import (
    DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
    DEFAULT_BUDGET_WARNING_THRESHOLD,
    DEFAULT_GATE_TIMEOUT_SECONDS,
    DEFAULT_MAX_COST_PER_PROJECT_USD,
    DEFAULT_MAX_COST_PER_TASK_USD,
    DEFAULT_MAX_VERIFICATION_ATTEMPTS,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MIN_WORKERS,
    DEFAULT_RESCALE_COOLDOWN_SECONDS,
    DEFAULT_RETIREMENT_MIN_SAMPLES,
    DEFAULT_RETIREMENT_SCORE_THRESHOLD,
    DEFAULT_SMOOTHING_FACTOR,
)
from nexus_workforce.domain.models import (
    DEFAULT_ENABLED_GATE_KINDS,
    DEFAULT_GATE_TIMEOUT_POLICY,
    NEUTRAL_SCORE,
    GateKind,
    GateTimeoutPolicy,
)


@dataclass(frozen=True, slots=True)
class WorkforceSettings:
    min_workers: int = DEFAULT_MIN_WORKERS
    max_workers: int = DEFAULT_MAX_WORKERS
    smoothing_factor: float = DEFAULT_SMOOTHING_FACTOR
    neutral_score: float = NEUTRAL_SCORE
    retirement_score_threshold: float = DEFAULT_RETIREMENT_SCORE_THRESHOLD
    retirement_min_samples: int = DEFAULT_RETIREMENT_MIN_SAMPLES
    allow_role_fallback: bool = True
    rescale_cooldown_seconds: float = DEFAULT_RESCALE_COOLDOWN_SECONDS
    autoscale_interval_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.min_workers < 1:
            raise ValueError("WorkforceSettings.min_workers must be >= 1")
        if self.max_workers < self.min_workers:
            raise ValueError("WorkforceSettings.max_workers must be >= min_workers")
        if not 0.0 < self.smoothing_factor < 1.0:
            raise ValueError("WorkforceSettings.smoothing_factor must be within (0, 1)")
        if not 0.0 <= self.neutral_score <= 1.0:
            raise ValueError("WorkforceSettings.neutral_score must be within [0, 1]")


@dataclass(frozen=True, slots=True)
class GateSettings:
    default_timeout_seconds: float = DEFAULT_GATE_TIMEOUT_SECONDS
    enabled_kinds: frozenset[GateKind] = DEFAULT_ENABLED_GATE_KINDS
    timeout_policy: Mapping[GateKind, GateTimeoutPolicy] = field(
        default_factory=lambda: DEFAULT_GATE_TIMEOUT_POLICY
    )

    def __post_init__(self) -> None:
        if self.default_timeout_seconds <= 0:
            raise ValueError("GateSettings.default_timeout_seconds must be > 0")
        object.__setattr__(
            self, "enabled_kinds", frozenset(GateKind.parse(kind) for kind in self.enabled_kinds)
        )
        merged = dict(DEFAULT_GATE_TIMEOUT_POLICY)
        for kind, policy in self.timeout_policy.items():
            merged[GateKind.parse(kind)] = GateTimeoutPolicy(policy)
        object.__setattr__(self, "timeout_policy", MappingProxyType(merged))

    def policy_for(self, kind: GateKind) -> GateTimeoutPolicy:
        return self.timeout_policy[kind]


@dataclass(frozen=True, slots=True)
class VerificationSettings:
    max_attempts: int = DEFAULT_MAX_VERIFICATION_ATTEMPTS
    attempt_timeout_seconds: float = DEFAULT_ATTEMPT_TIMEOUT_SECONDS
    on_exhaustion: str = "fail"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("VerificationSettings.max_attempts must be >= 1")
        if self.attempt_timeout_seconds <= 0:
            raise ValueError("VerificationSettings.attempt_timeout_seconds must be > 0")
        if self.on_exhaustion not in {"fail", "human_review"}:
            raise ValueError("VerificationSettings.on_exhaustion must be 'fail' or 'human_review'")


@dataclass(frozen=True, slots=True)
class BudgetSettings:
    max_cost_per_task_usd: float = DEFAULT_MAX_COST_PER_TASK_USD
    max_cost_per_project_usd: float | None = DEFAULT_MAX_COST_PER_PROJECT_USD
    warning_threshold: float = DEFAULT_BUDGET_WARNING_THRESHOLD


@dataclass(frozen=True, slots=True)
class ObservabilitySettings:
    log_level: str = "INFO"
    log_format: str = "console"
    redact_secrets: bool = True
    journal_path: str | None = None


@dataclass(frozen=True, slots=True)
class EngineSettings:
    """Every tunable the engine components read, grouped by config section."""

    workforce: WorkforceSettings = field(default_factory=WorkforceSettings)
    gates: GateSettings = field(default_factory=GateSettings)
    verification: VerificationSettings = field(default_factory=VerificationSettings)
    budgets: BudgetSettings = field(default_factory=BudgetSettings)
    observability: ObservabilitySettings = field(default_factory=ObservabilitySettings)

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None = None) -> EngineSettings:
        """Build settings from a loader result; ``None`` yields the built-in defaults."""

        validated = assert_valid_config(config if config is not None else default_config())
        workforce = validated["workforce"]
        gates = validated["gates"]
        verification = validated["verification"]
        budgets = validated["budgets"]
        observability = validated["observability"]
        return cls(
            workforce=WorkforceSettings(**workforce),
            gates=GateSettings(
                default_timeout_seconds=gates["default_timeout_seconds"],
                enabled_kinds=frozenset(GateKind(kind) for kind in gates["enabled_kinds"]),
                timeout_policy={
                    GateKind(kind): GateTimeoutPolicy(policy)
                    for kind, policy in gates.get("timeout_policy", {}).items()
                },
            ),
            verification=VerificationSettings(**verification),
            budgets=BudgetSettings(**budgets),
            observability=ObservabilitySettings(**observability),
        )


__all__ = [
    "BudgetSettings",
    "EngineSettings",
    "GateSettings",
    "ObservabilitySettings",
    "VerificationSettings",
    "WorkforceSettings",
]
