"""Stable constants shared across the workforce engine."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
JOURNAL_SCHEMA_VERSION: Final[int] = 1
FEEDBACK_SCHEMA_VERSION: Final[int] = 1

DEFAULT_CONFIG_FILENAME: Final[str] = "workforce.toml"
DEFAULT_ENV_PREFIX: Final[str] = "WORKFORCE_"

# Pool size band applied after sizing.
DEFAULT_MIN_WORKERS: Final[int] = 5
DEFAULT_MAX_WORKERS: Final[int] = 50

DEFAULT_SMOOTHING_FACTOR: Final[float] = 0.3
DEFAULT_RETIREMENT_SCORE_THRESHOLD: Final[float] = 0.2
DEFAULT_RETIREMENT_MIN_SAMPLES: Final[int] = 5
DEFAULT_RESCALE_COOLDOWN_SECONDS: Final[float] = 600.0

DEFAULT_GATE_TIMEOUT_SECONDS: Final[float] = 3600.0
DEFAULT_MAX_VERIFICATION_ATTEMPTS: Final[int] = 3
DEFAULT_ATTEMPT_TIMEOUT_SECONDS: Final[float] = 120.0

DEFAULT_MAX_COST_PER_TASK_USD: Final[float] = 5.0
DEFAULT_MAX_COST_PER_PROJECT_USD: Final[float] = 100.0
DEFAULT_BUDGET_WARNING_THRESHOLD: Final[float] = 0.8

# Estimated hourly cost per role, keyed by role value.
ROLE_HOURLY_RATE_USD: Final[dict[str, float]] = {
    "coordinator": 0.06,
    "reviewer": 0.05,
    "senior_builder": 0.04,
    "operations_builder": 0.03,
    "builder": 0.02,
    "quality_checker": 0.02,
}
DEFAULT_HOURLY_RATE_USD: Final[float] = 0.02

# Resolver identities recorded on system-resolved gates.
SYSTEM_AUTO_RESOLVER: Final[str] = "system:auto"
SYSTEM_TIMEOUT_RESOLVER: Final[str] = "system:timeout"
SYSTEM_CANCEL_RESOLVER: Final[str] = "system:cancelled"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_ATTEMPT_TIMEOUT_SECONDS",
    "DEFAULT_BUDGET_WARNING_THRESHOLD",
    "DEFAULT_CONFIG_FILENAME",
    "DEFAULT_ENV_PREFIX",
    "DEFAULT_GATE_TIMEOUT_SECONDS",
    "DEFAULT_HOURLY_RATE_USD",
    "DEFAULT_MAX_COST_PER_PROJECT_USD",
    "DEFAULT_MAX_COST_PER_TASK_USD",
    "DEFAULT_MAX_VERIFICATION_ATTEMPTS",
    "DEFAULT_MAX_WORKERS",
    "DEFAULT_MIN_WORKERS",
    "DEFAULT_RESCALE_COOLDOWN_SECONDS",
    "DEFAULT_RETIREMENT_MIN_SAMPLES",
    "DEFAULT_RETIREMENT_SCORE_THRESHOLD",
    "DEFAULT_SMOOTHING_FACTOR",
    "FEEDBACK_SCHEMA_VERSION",
    "JOURNAL_SCHEMA_VERSION",
    "ROLE_HOURLY_RATE_USD",
    "SYSTEM_AUTO_RESOLVER",
    "SYSTEM_CANCEL_RESOLVER",
    "SYSTEM_TIMEOUT_RESOLVER",
]
