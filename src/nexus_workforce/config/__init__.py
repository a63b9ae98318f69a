"""
nexus-workforce config package public API.

Purpose
- Export config loading/validation entrypoints, typed settings, and public error types.

Functional requirements
- Support loading from ``workforce.toml`` + ``WORKFORCE_`` env overrides.
- Fail fast with clear structured validation/load errors.
"""

from nexus_workforce.config.loader import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    dump_effective_config,
    load_config,
    normalize_paths,
)
from nexus_workforce.config.schema import (
    BUILTIN_PROFILE_NAMES,
    DEFAULT_CONFIG,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ProfileOverlay,
    WorkforceEngineConfig,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)
from nexus_workforce.config.settings import (
    BudgetSettings,
    EngineSettings,
    GateSettings,
    ObservabilitySettings,
    VerificationSettings,
    WorkforceSettings,
)

__all__ = [
    "BUILTIN_PROFILE_NAMES",
    "BudgetSettings",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "EngineSettings",
    "GateSettings",
    "ObservabilitySettings",
    "ProfileOverlay",
    "VerificationSettings",
    "WorkforceEngineConfig",
    "WorkforceSettings",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "dump_effective_config",
    "load_config",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "redact_config",
    "validate_config",
]
