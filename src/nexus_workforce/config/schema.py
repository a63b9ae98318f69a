"""
nexus-workforce: configuration schema and validation.

Purpose
- Define authoritative configuration defaults and strict validation rules.

What is included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Profile overlay validation and deterministic deep-merge helpers.
- Redaction of sensitive-looking fields for config dumps.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Support profile overlays (strict / permissive / lean built in).
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from nexus_workforce.constants import (
    CONFIG_SCHEMA_VERSION,
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

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
BUILTIN_PROFILE_NAMES: Final[tuple[str, ...]] = ("strict", "permissive", "lean")

_PROFILE_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials"}
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

_GATE_KIND_VALUES: Final[tuple[str, ...]] = tuple(kind.value for kind in GateKind)
_TIMEOUT_POLICY_VALUES: Final[tuple[str, ...]] = tuple(policy.value for policy in GateTimeoutPolicy)
_ON_EXHAUSTION_VALUES: Final[tuple[str, ...]] = ("fail", "human_review")
_LOG_LEVEL_VALUES: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
_LOG_FORMAT_VALUES: Final[tuple[str, ...]] = ("json", "console")

_OVERLAY_SECTIONS: Final[tuple[str, ...]] = (
    "budgets",
    "gates",
    "observability",
    "verification",
    "workforce",
)


class MetaConfig(TypedDict):
    schema_version: int


class WorkforceConfig(TypedDict):
    min_workers: int
    max_workers: int
    smoothing_factor: float
    neutral_score: float
    retirement_score_threshold: float
    retirement_min_samples: int
    allow_role_fallback: bool
    rescale_cooldown_seconds: float
    autoscale_interval_seconds: float


class GatesConfig(TypedDict):
    default_timeout_seconds: float
    enabled_kinds: list[str]
    timeout_policy: dict[str, str]


class VerificationConfig(TypedDict):
    max_attempts: int
    attempt_timeout_seconds: float
    on_exhaustion: Literal["fail", "human_review"]


class BudgetsConfig(TypedDict):
    max_cost_per_task_usd: float
    max_cost_per_project_usd: float | None
    warning_threshold: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_format: Literal["json", "console"]
    redact_secrets: bool
    journal_path: NotRequired[str]


class ProfileOverlay(TypedDict, total=False):
    workforce: dict[str, object]
    gates: dict[str, object]
    verification: dict[str, object]
    budgets: dict[str, object]
    observability: dict[str, object]


class WorkforceEngineConfig(TypedDict):
    meta: MetaConfig
    workforce: WorkforceConfig
    gates: GatesConfig
    verification: VerificationConfig
    budgets: BudgetsConfig
    observability: ObservabilityConfig
    profiles: dict[str, ProfileOverlay]


DEFAULT_CONFIG: Final[WorkforceEngineConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "workforce": {
        "min_workers": DEFAULT_MIN_WORKERS,
        "max_workers": DEFAULT_MAX_WORKERS,
        "smoothing_factor": DEFAULT_SMOOTHING_FACTOR,
        "neutral_score": NEUTRAL_SCORE,
        "retirement_score_threshold": DEFAULT_RETIREMENT_SCORE_THRESHOLD,
        "retirement_min_samples": DEFAULT_RETIREMENT_MIN_SAMPLES,
        "allow_role_fallback": True,
        "rescale_cooldown_seconds": DEFAULT_RESCALE_COOLDOWN_SECONDS,
        "autoscale_interval_seconds": 60.0,
    },
    "gates": {
        "default_timeout_seconds": DEFAULT_GATE_TIMEOUT_SECONDS,
        "enabled_kinds": sorted(kind.value for kind in DEFAULT_ENABLED_GATE_KINDS),
        "timeout_policy": {
            kind.value: policy.value for kind, policy in sorted(DEFAULT_GATE_TIMEOUT_POLICY.items())
        },
    },
    "verification": {
        "max_attempts": DEFAULT_MAX_VERIFICATION_ATTEMPTS,
        "attempt_timeout_seconds": DEFAULT_ATTEMPT_TIMEOUT_SECONDS,
        "on_exhaustion": "fail",
    },
    "budgets": {
        "max_cost_per_task_usd": DEFAULT_MAX_COST_PER_TASK_USD,
        "max_cost_per_project_usd": DEFAULT_MAX_COST_PER_PROJECT_USD,
        "warning_threshold": DEFAULT_BUDGET_WARNING_THRESHOLD,
    },
    "observability": {
        "log_level": "INFO",
        "log_format": "console",
        "redact_secrets": True,
    },
    "profiles": {
        "strict": {
            "gates": {"enabled_kinds": list(_GATE_KIND_VALUES)},
            "verification": {"max_attempts": 2, "on_exhaustion": "human_review"},
        },
        "permissive": {
            "gates": {"enabled_kinds": []},
        },
        "lean": {
            "workforce": {"max_workers": 10},
            "budgets": {"max_cost_per_project_usd": 25.0},
        },
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> WorkforceEngineConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade workforce.toml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the nexus-workforce runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``. Lists are replaced, not merged."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    """Apply a named profile overlay and re-validate the resulting config."""

    materialized = _deep_copy_mapping(config)
    if profile is None:
        return materialized

    selected = profile.strip()
    if not selected:
        return materialized

    profiles_raw = materialized.get("profiles")
    if not isinstance(profiles_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", "profiles section is required"),)
        )

    overlay_raw = profiles_raw.get(selected)
    if overlay_raw is None:
        raise ConfigValidationError(
            (ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"),)
        )
    if not isinstance(overlay_raw, Mapping):
        raise ConfigValidationError(
            (ConfigValidationIssue(f"profiles.{selected}", "profile overlay must be an object"),)
        )

    merged = merge_config(materialized, overlay_raw)
    return assert_valid_config(merged)


def validate_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, "", issues, partial=False)

    selected_profile = active_profile.strip() if isinstance(active_profile, str) else None
    if selected_profile:
        profiles = normalized.get("profiles")
        if not isinstance(profiles, Mapping) or selected_profile not in profiles:
            issues.add("profiles", f"profile {selected_profile!r} is not defined")
        else:
            effective = merge_config(normalized, profiles[selected_profile])
            _validate_root(effective, "", issues, partial=False)

    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())

    return ConfigValidationResult(config=normalized, issues=issues.items())


def assert_valid_config(
    config: Mapping[str, object] | object,
    *,
    active_profile: str | None = None,
) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a deterministic redacted representation for logs and CLI dumps."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    required = {"meta", *_OVERLAY_SECTIONS}
    _reject_unknown_keys(payload, required | {"profiles"}, path, issues)
    if not partial:
        _require_keys(payload, required, path, issues)

    validators: dict[str, Callable[..., dict[str, Any]]] = {
        "meta": _validate_meta,
        "workforce": _validate_workforce,
        "gates": _validate_gates,
        "verification": _validate_verification,
        "budgets": _validate_budgets,
        "observability": _validate_observability,
    }

    out: dict[str, Any] = {}
    for key in ("meta", *_OVERLAY_SECTIONS):
        _section(
            payload,
            key=key,
            path=path,
            issues=issues,
            validator=lambda section, section_path, key=key: validators[key](
                section, section_path, issues, partial=partial
            ),
            out=out,
        )

    profiles_raw = payload.get("profiles")
    if profiles_raw is not None:
        profiles_path = _join(path, "profiles")
        profiles_obj = _as_object(profiles_raw, profiles_path, issues)
        if profiles_obj is not None:
            out["profiles"] = _validate_profiles(profiles_obj, profiles_path, issues)

    _validate_workforce_cross_fields(out.get("workforce"), _join(path, "workforce"), issues)
    return out


def _section(
    payload: Mapping[str, object],
    *,
    key: str,
    path: str,
    issues: _IssueCollector,
    validator: Callable[[dict[str, object], str], dict[str, Any]],
    out: dict[str, Any],
) -> None:
    raw = payload.get(key)
    if raw is None:
        return
    section_path = _join(path, key)
    section_obj = _as_object(raw, section_path, issues)
    if section_obj is None:
        return
    out[key] = validator(section_obj, section_path)


def _validate_meta(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    if not partial:
        _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_workforce(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = set(DEFAULT_CONFIG["workforce"])
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("min_workers", "max_workers", "retirement_min_samples"):
        if key in payload:
            parsed_int = _as_int(payload[key], _join(path, key), issues, minimum=1)
            if parsed_int is not None:
                out[key] = parsed_int

    if "smoothing_factor" in payload:
        parsed_alpha = _as_float(
            payload["smoothing_factor"], _join(path, "smoothing_factor"), issues, minimum=0.0
        )
        if parsed_alpha is not None:
            if not 0.0 < parsed_alpha < 1.0:
                issues.add(_join(path, "smoothing_factor"), "must be within the open interval (0, 1)")
            else:
                out["smoothing_factor"] = parsed_alpha

    for key in ("neutral_score", "retirement_score_threshold"):
        if key in payload:
            parsed_unit = _as_float(
                payload[key], _join(path, key), issues, minimum=0.0, maximum=1.0
            )
            if parsed_unit is not None:
                out[key] = parsed_unit

    if "allow_role_fallback" in payload:
        parsed_bool = _as_bool(
            payload["allow_role_fallback"], _join(path, "allow_role_fallback"), issues
        )
        if parsed_bool is not None:
            out["allow_role_fallback"] = parsed_bool

    if "rescale_cooldown_seconds" in payload:
        parsed_cooldown = _as_float(
            payload["rescale_cooldown_seconds"],
            _join(path, "rescale_cooldown_seconds"),
            issues,
            minimum=0.0,
        )
        if parsed_cooldown is not None:
            out["rescale_cooldown_seconds"] = parsed_cooldown

    if "autoscale_interval_seconds" in payload:
        parsed_interval = _as_positive_float(
            payload["autoscale_interval_seconds"], _join(path, "autoscale_interval_seconds"), issues
        )
        if parsed_interval is not None:
            out["autoscale_interval_seconds"] = parsed_interval

    return out


def _validate_gates(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"default_timeout_seconds", "enabled_kinds", "timeout_policy"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, {"default_timeout_seconds", "enabled_kinds"}, path, issues)

    out: dict[str, Any] = {}
    if "default_timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["default_timeout_seconds"], _join(path, "default_timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["default_timeout_seconds"] = parsed_timeout

    if "enabled_kinds" in payload:
        kinds_path = _join(path, "enabled_kinds")
        raw_kinds = payload["enabled_kinds"]
        if not isinstance(raw_kinds, (list, tuple)):
            issues.add(kinds_path, f"expected array, got {type(raw_kinds).__name__}")
        else:
            kinds: set[str] = set()
            for index, item in enumerate(raw_kinds):
                parsed_kind = _as_enum(
                    item, f"{kinds_path}[{index}]", issues, allowed_values=_GATE_KIND_VALUES
                )
                if parsed_kind is not None:
                    kinds.add(parsed_kind)
            out["enabled_kinds"] = sorted(kinds)

    if "timeout_policy" in payload:
        policy_path = _join(path, "timeout_policy")
        policy_obj = _as_object(payload["timeout_policy"], policy_path, issues)
        if policy_obj is not None:
            policies: dict[str, str] = {}
            for kind in sorted(policy_obj):
                if kind not in _GATE_KIND_VALUES:
                    issues.add(_join(policy_path, kind), "unknown gate kind")
                    continue
                parsed_policy = _as_enum(
                    policy_obj[kind],
                    _join(policy_path, kind),
                    issues,
                    allowed_values=_TIMEOUT_POLICY_VALUES,
                )
                if parsed_policy is not None:
                    policies[kind] = parsed_policy
            out["timeout_policy"] = policies

    return out


def _validate_verification(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"max_attempts", "attempt_timeout_seconds", "on_exhaustion"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_attempts" in payload:
        parsed_attempts = _as_int(
            payload["max_attempts"], _join(path, "max_attempts"), issues, minimum=1
        )
        if parsed_attempts is not None:
            out["max_attempts"] = parsed_attempts

    if "attempt_timeout_seconds" in payload:
        parsed_timeout = _as_positive_float(
            payload["attempt_timeout_seconds"], _join(path, "attempt_timeout_seconds"), issues
        )
        if parsed_timeout is not None:
            out["attempt_timeout_seconds"] = parsed_timeout

    if "on_exhaustion" in payload:
        parsed_policy = _as_enum(
            payload["on_exhaustion"],
            _join(path, "on_exhaustion"),
            issues,
            allowed_values=_ON_EXHAUSTION_VALUES,
        )
        if parsed_policy is not None:
            out["on_exhaustion"] = parsed_policy

    return out


def _validate_budgets(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"max_cost_per_task_usd", "max_cost_per_project_usd", "warning_threshold"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, {"max_cost_per_task_usd", "warning_threshold"}, path, issues)

    out: dict[str, Any] = {}
    if "max_cost_per_task_usd" in payload:
        parsed_task = _as_float(
            payload["max_cost_per_task_usd"], _join(path, "max_cost_per_task_usd"), issues, minimum=0.0
        )
        if parsed_task is not None:
            out["max_cost_per_task_usd"] = parsed_task

    if "max_cost_per_project_usd" in payload:
        raw = payload["max_cost_per_project_usd"]
        if raw is None:
            out["max_cost_per_project_usd"] = None
        else:
            parsed_project = _as_float(
                raw, _join(path, "max_cost_per_project_usd"), issues, minimum=0.0
            )
            if parsed_project is not None:
                out["max_cost_per_project_usd"] = parsed_project

    if "warning_threshold" in payload:
        parsed_threshold = _as_float(
            payload["warning_threshold"],
            _join(path, "warning_threshold"),
            issues,
            minimum=0.0,
            maximum=1.0,
        )
        if parsed_threshold is not None:
            if parsed_threshold == 0.0:
                issues.add(_join(path, "warning_threshold"), "must be > 0")
            else:
                out["warning_threshold"] = parsed_threshold

    return out


def _validate_observability(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
    *,
    partial: bool,
) -> dict[str, Any]:
    allowed = {"log_level", "log_format", "redact_secrets", "journal_path"}
    _reject_unknown_keys(payload, allowed, path, issues)
    if not partial:
        _require_keys(payload, allowed - {"journal_path"}, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        parsed_level = _as_enum(
            raw_level.upper() if isinstance(raw_level, str) else raw_level,
            _join(path, "log_level"),
            issues,
            allowed_values=_LOG_LEVEL_VALUES,
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level

    if "log_format" in payload:
        parsed_format = _as_enum(
            payload["log_format"], _join(path, "log_format"), issues, allowed_values=_LOG_FORMAT_VALUES
        )
        if parsed_format is not None:
            out["log_format"] = parsed_format

    if "redact_secrets" in payload:
        parsed_redact = _as_bool(payload["redact_secrets"], _join(path, "redact_secrets"), issues)
        if parsed_redact is not None:
            out["redact_secrets"] = parsed_redact

    if "journal_path" in payload:
        parsed_journal = _as_str(payload["journal_path"], _join(path, "journal_path"), issues)
        if parsed_journal is not None:
            if "\x00" in parsed_journal:
                issues.add(_join(path, "journal_path"), "must not contain NUL bytes")
            else:
                out["journal_path"] = parsed_journal

    return out


def _validate_profiles(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for profile_name in sorted(payload):
        profile_path = _join(path, profile_name)
        if not _PROFILE_NAME_PATTERN.fullmatch(profile_name):
            issues.add(profile_path, "profile name must match ^[a-z][a-z0-9_-]*$")
            continue
        profile_obj = _as_object(payload[profile_name], profile_path, issues)
        if profile_obj is None:
            continue
        out[profile_name] = _validate_profile_overlay(profile_obj, profile_path, issues)
    return out


def _validate_profile_overlay(
    payload: Mapping[str, object],
    path: str,
    issues: _IssueCollector,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(_OVERLAY_SECTIONS), path, issues)

    validators: dict[str, Callable[..., dict[str, Any]]] = {
        "workforce": _validate_workforce,
        "gates": _validate_gates,
        "verification": _validate_verification,
        "budgets": _validate_budgets,
        "observability": _validate_observability,
    }
    out: dict[str, Any] = {}
    for section in _OVERLAY_SECTIONS:
        raw = payload.get(section)
        if raw is None:
            continue
        section_path = _join(path, section)
        section_obj = _as_object(raw, section_path, issues)
        if section_obj is None:
            continue
        out[section] = validators[section](section_obj, section_path, issues, partial=True)
    return out


def _validate_workforce_cross_fields(
    workforce: object,
    path: str,
    issues: _IssueCollector,
) -> None:
    if not isinstance(workforce, Mapping):
        return
    minimum = workforce.get("min_workers")
    maximum = workforce.get("max_workers")
    if isinstance(minimum, int) and isinstance(maximum, int) and minimum > maximum:
        issues.add(_join(path, "max_workers"), "must be >= min_workers")


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    parsed = _as_float(value, path, issues, minimum=0.0)
    if parsed is not None and parsed == 0.0:
        issues.add(path, "must be > 0")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in workforce config")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = (
                    _deep_copy_mapping(existing) if isinstance(existing, Mapping) else {}
                )
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, list):
        return [_deep_copy_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_deep_copy_value(item) for item in value)
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "ProfileOverlay",
    "WorkforceEngineConfig",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
