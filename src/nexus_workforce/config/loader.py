"""
nexus-workforce: runtime config loader.

Purpose
- Load effective runtime config from defaults, TOML file, env vars, and CLI overrides.

What is included in this file
- Precedence logic: CLI > env (WORKFORCE_) > file > defaults.
- TOML loading via ``tomllib``.
- Deterministic environment variable mapping and coercion.
- Journal path normalization relative to the config file location.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from nexus_workforce.config.schema import (
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from nexus_workforce.constants import DEFAULT_CONFIG_FILENAME, DEFAULT_ENV_PREFIX
from nexus_workforce.errors import WorkforceError

DEFAULT_CONFIG_FILE: Final[str] = DEFAULT_CONFIG_FILENAME
ENV_PREFIX: Final[str] = DEFAULT_ENV_PREFIX

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "journal_path"),)

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})

# Settings absent from the defaults (None) that env vars may still set.
_NULLABLE_ENV_FIELDS: Final[dict[tuple[str, ...], type]] = {
    ("observability", "journal_path"): str,
    ("budgets", "max_cost_per_project_usd"): float,
}


class ConfigLoadError(WorkforceError, ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults."""

    resolved_path = _resolve_config_path(config_path)
    explicit_path = config_path is not None
    env_map = dict(os.environ if environ is None else environ)
    cli_map = dict(cli_overrides or {})

    file_payload = _load_toml_file(resolved_path, required=explicit_path)
    selected_profile = _resolve_profile(profile=profile, cli_overrides=cli_map, environ=env_map)

    merged = merge_config(default_config(), file_payload)
    merged = assert_valid_config(merged)

    if selected_profile is not None:
        merged = apply_profile_overlay(merged, selected_profile)

    env_overrides = _collect_env_overrides(merged, env_map)
    cli_payload = _materialize_cli_overrides(cli_map)

    merged = merge_config(merged, env_overrides)
    merged = merge_config(merged, cli_payload)
    merged = assert_valid_config(merged)

    return normalize_paths(merged, base_dir=resolved_path.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Normalize configured path fields relative to ``base_dir``."""

    materialized = merge_config({}, config)
    for field_path in PATH_FIELDS:
        value = _get_nested(materialized, field_path)
        if isinstance(value, str):
            _set_nested(materialized, field_path, _normalize_one_path(value, base_dir))
    return materialized


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return a deterministic JSON dump of the redacted effective config."""

    return json.dumps(redact_config(config), sort_keys=True, indent=2, ensure_ascii=False)


def _resolve_config_path(config_path: str | Path | None) -> Path:
    if config_path is None:
        return (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    return Path(config_path).expanduser().resolve()


def _load_toml_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}

    try:
        with path.open("rb") as handle:
            parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc

    return parsed


def _resolve_profile(
    *,
    profile: str | None,
    cli_overrides: Mapping[str, object],
    environ: Mapping[str, str],
) -> str | None:
    if profile is not None:
        return profile.strip() or None

    cli_profile = cli_overrides.get("profile")
    if cli_profile is not None:
        if not isinstance(cli_profile, str):
            raise ConfigLoadError("cli override 'profile' must be a string")
        return cli_profile.strip() or None

    env_profile = environ.get(f"{ENV_PREFIX}PROFILE")
    if env_profile is None:
        return None
    return env_profile.strip() or None


def _collect_env_overrides(
    config: Mapping[str, object], environ: Mapping[str, str]
) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for path, value_type in sorted(_env_fields(config).items()):
        env_name = ENV_PREFIX + "_".join(part.upper() for part in path)
        raw = environ.get(env_name)
        if raw is not None:
            _set_nested(overrides, path, _coerce_env(raw.strip(), value_type, env_name, path))
    return overrides


def _env_fields(config: Mapping[str, object]) -> dict[tuple[str, ...], type]:
    """Every overridable leaf path, typed by its current value."""

    fields = dict(_NULLABLE_ENV_FIELDS)
    for path, value in _walk_leaves(config):
        if path[0] == "profiles" or value is None:
            continue
        fields[path] = list if isinstance(value, (list, tuple)) else type(value)
    return fields


def _walk_leaves(
    payload: Mapping[str, object], prefix: tuple[str, ...] = ()
) -> Iterator[tuple[tuple[str, ...], object]]:
    for key, value in payload.items():
        if isinstance(value, Mapping):
            yield from _walk_leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _coerce_env(raw: str, value_type: type, env_name: str, path: tuple[str, ...]) -> object:
    target = f"{env_name} -> {'.'.join(path)}"
    if value_type is list:
        # Comma separated; an empty string clears the list.
        return [item.strip() for item in raw.split(",") if item.strip()]
    if value_type is bool:
        if raw.lower() in _TRUTHY:
            return True
        if raw.lower() in _FALSY:
            return False
        raise ConfigLoadError(f"{target} must be a boolean (true/false/1/0/yes/no/on/off)")
    if value_type in (int, float):
        try:
            return value_type(raw)
        except ValueError as exc:
            noun = "an integer" if value_type is int else "a number"
            raise ConfigLoadError(f"{target} must be {noun}") from exc
    return raw


def _materialize_cli_overrides(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for dotted, value in sorted(cli_overrides.items()):
        if dotted == "profile":
            continue
        path = tuple(filter(None, dotted.split(".")))
        if not path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        _set_nested(payload, path, value)
    return payload


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    *parents, leaf = path
    for part in parents:
        target = target.setdefault(part, {})
    target[leaf] = value


def _get_nested(payload: Mapping[str, object], path: tuple[str, ...]) -> object | None:
    node: object = payload
    for part in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
    return node


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    if raw == ":memory:":
        return raw
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PATH_FIELDS",
    "dump_effective_config",
    "load_config",
    "normalize_paths",
]
