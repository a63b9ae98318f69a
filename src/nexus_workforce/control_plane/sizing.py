"""
Workload sizing: workload profile -> target worker-role composition.

Every role count is a non-decreasing function of every profile signal, and the
total is clamped to ``[min_workers, max_workers]`` afterwards. A monotone total
clamped into a fixed band stays monotone.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from nexus_workforce.constants import (
    DEFAULT_HOURLY_RATE_USD,
    DEFAULT_MAX_WORKERS,
    DEFAULT_MIN_WORKERS,
    ROLE_HOURLY_RATE_USD,
)
from nexus_workforce.domain.models import (
    AllocationComposition,
    WorkerRole,
    WorkloadProfile,
    roles_by_seniority,
)


@dataclass(frozen=True, slots=True)
class SizingRules:
    """Thresholds and divisors of the sizing function."""

    min_workers: int = DEFAULT_MIN_WORKERS
    max_workers: int = DEFAULT_MAX_WORKERS
    base_builders: int = 2
    features_per_builder: int = 5
    features_per_senior_builder: int = 15
    features_per_reviewer: int = 20
    features_per_quality_checker: int = 15
    large_project_features: int = 30
    integrations_per_senior_builder: int = 4
    integrations_per_operations_builder: int = 3
    high_complexity_threshold: float = 70.0
    high_throughput_workflows_per_hour: float = 10.0
    high_throughput_extra_builders: int = 2

    def __post_init__(self) -> None:
        if self.min_workers < 1:
            raise ValueError("SizingRules.min_workers must be >= 1")
        if self.max_workers < self.min_workers:
            raise ValueError("SizingRules.max_workers must be >= min_workers")
        for name in (
            "features_per_builder",
            "features_per_senior_builder",
            "features_per_reviewer",
            "features_per_quality_checker",
            "integrations_per_senior_builder",
            "integrations_per_operations_builder",
        ):
            if getattr(self, name) < 1:
                raise ValueError(f"SizingRules.{name} must be >= 1")
        if self.base_builders < 0 or self.high_throughput_extra_builders < 0:
            raise ValueError("SizingRules builder increments must be >= 0")


@dataclass(frozen=True, slots=True)
class SizingReport:
    """Result of one sizing pass, kept for logs and the CLI."""

    profile: WorkloadProfile | None
    raw: AllocationComposition
    composition: AllocationComposition
    clamped: bool
    degraded: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile.to_dict() if self.profile is not None else None,
            "raw": self.raw.to_dict(),
            "composition": self.composition.to_dict(),
            "total": self.composition.total,
            "clamped": self.clamped,
            "degraded": self.degraded,
        }


class WorkloadSizer:
    """Pure, deterministic sizing function; never raises on bad input."""

    def __init__(self, rules: SizingRules | None = None, *, logger: Any | None = None) -> None:
        self._rules = rules or SizingRules()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def rules(self) -> SizingRules:
        return self._rules

    def size(self, profile: WorkloadProfile | Mapping[str, object] | None) -> AllocationComposition:
        return self.size_with_report(profile).composition

    def size_with_report(
        self, profile: WorkloadProfile | Mapping[str, object] | None
    ) -> SizingReport:
        parsed = WorkloadProfile.parse(profile)
        if parsed is None:
            self._logger.warning(
                "workload_profile_unparseable",
                action="minimum_viable_composition",
                profile_type=type(profile).__name__,
            )
            minimum = AllocationComposition.minimum_viable()
            return SizingReport(
                profile=None, raw=minimum, composition=minimum, clamped=False, degraded=True
            )

        raw = self.raw_counts(parsed)
        clamped = self._clamp(raw)
        was_clamped = sum(raw.values()) != clamped.total
        if was_clamped:
            self._logger.info(
                "workload_composition_clamped",
                raw_total=sum(raw.values()),
                total=clamped.total,
                min_workers=self._rules.min_workers,
                max_workers=self._rules.max_workers,
            )
        return SizingReport(
            profile=parsed,
            raw=AllocationComposition.from_mapping(raw),
            composition=clamped,
            clamped=was_clamped,
            degraded=False,
        )

    def raw_counts(self, profile: WorkloadProfile) -> dict[WorkerRole, int]:
        """Unclamped per-role counts; each is non-decreasing in every signal."""

        rules = self._rules
        features = profile.feature_count
        integrations = profile.integration_count
        security = profile.security_tier.rank
        scale = profile.scale_tier.rank
        complex_work = int(profile.complexity_score > rules.high_complexity_threshold)
        high_throughput = int(
            profile.workflows_per_hour >= rules.high_throughput_workflows_per_hour
        )

        return {
            WorkerRole.COORDINATOR: 1
            + int(features >= rules.large_project_features)
            + int(scale >= 3),
            WorkerRole.SENIOR_BUILDER: 1
            + features // rules.features_per_senior_builder
            + complex_work
            + integrations // rules.integrations_per_senior_builder
            + int(security >= 3),
            WorkerRole.BUILDER: rules.base_builders
            + features // rules.features_per_builder
            + rules.high_throughput_extra_builders * high_throughput
            + scale,
            WorkerRole.REVIEWER: 1
            + features // rules.features_per_reviewer
            + int(security >= 2),
            WorkerRole.QUALITY_CHECKER: 1
            + features // rules.features_per_quality_checker
            + complex_work
            + high_throughput,
            WorkerRole.OPERATIONS_BUILDER: 1
            + integrations // rules.integrations_per_operations_builder
            + int(scale >= 2),
        }

    def _clamp(self, raw: Mapping[WorkerRole, int]) -> AllocationComposition:
        counts = dict(raw)
        total = sum(counts.values())

        if total < self._rules.min_workers:
            counts[WorkerRole.BUILDER] = counts.get(WorkerRole.BUILDER, 0) + (
                self._rules.min_workers - total
            )
        elif total > self._rules.max_workers:
            surplus = total - self._rules.max_workers
            # Junior roles are trimmed first; one coordinator always survives.
            for role in roles_by_seniority():
                floor = 1 if role is WorkerRole.COORDINATOR else 0
                removable = max(0, counts.get(role, 0) - floor)
                taken = min(removable, surplus)
                counts[role] = counts.get(role, 0) - taken
                surplus -= taken
                if surplus == 0:
                    break

        return AllocationComposition.from_mapping(counts)


def estimate_cost(composition: AllocationComposition, hours: float = 8.0) -> float:
    """Informational spend estimate for running ``composition`` for ``hours``."""

    if hours < 0:
        raise ValueError("hours must be >= 0")
    total = 0.0
    for role, count in composition.counts:
        rate = ROLE_HOURLY_RATE_USD.get(role.value, DEFAULT_HOURLY_RATE_USD)
        total += count * rate * hours
    return round(total, 6)


__all__ = ["SizingReport", "SizingRules", "WorkloadSizer", "estimate_cost"]
