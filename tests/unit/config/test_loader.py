"""
nexus-workforce: unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from nexus_workforce.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    load_config,
)
from nexus_workforce.config.schema import ConfigValidationError, default_config


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_defaults_load_without_a_config_file() -> None:
    loaded = load_config(environ={})

    expected = default_config()
    assert loaded["workforce"] == expected["workforce"]
    assert loaded["verification"] == expected["verification"]


def test_explicit_missing_config_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "absent.toml", environ={})


def test_invalid_toml_is_reported_with_path(tmp_path: Path) -> None:
    config_path = tmp_path / "workforce.toml"
    _write_config(config_path, "[workforce\nmin_workers = 3\n")

    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


def test_precedence_cli_over_env_over_file(tmp_path: Path) -> None:
    config_path = tmp_path / "workforce.toml"
    _write_config(
        config_path,
        """
[workforce]
min_workers = 3
max_workers = 12

[verification]
max_attempts = 4
""",
    )
    environ = {
        "WORKFORCE_WORKFORCE_MAX_WORKERS": "20",
        "WORKFORCE_VERIFICATION_MAX_ATTEMPTS": "6",
    }

    loaded = load_config(
        config_path,
        environ=environ,
        cli_overrides={"verification.max_attempts": 2},
    )

    assert loaded["workforce"]["min_workers"] == 3
    assert loaded["workforce"]["max_workers"] == 20
    assert loaded["verification"]["max_attempts"] == 2


def test_env_coercion_for_bool_float_and_list() -> None:
    loaded = load_config(
        environ={
            "WORKFORCE_WORKFORCE_ALLOW_ROLE_FALLBACK": "off",
            "WORKFORCE_GATES_DEFAULT_TIMEOUT_SECONDS": "1.5",
            "WORKFORCE_GATES_ENABLED_KINDS": "security, deployment",
        },
    )

    assert loaded["workforce"]["allow_role_fallback"] is False
    assert loaded["gates"]["default_timeout_seconds"] == 1.5
    assert loaded["gates"]["enabled_kinds"] == ["deployment", "security"]


def test_env_coercion_error_names_the_variable() -> None:
    with pytest.raises(ConfigLoadError, match="WORKFORCE_WORKFORCE_MIN_WORKERS"):
        load_config(environ={"WORKFORCE_WORKFORCE_MIN_WORKERS": "many"})


def test_profile_overlay_applies_before_env() -> None:
    loaded = load_config(
        environ={"WORKFORCE_PROFILE": "strict", "WORKFORCE_VERIFICATION_MAX_ATTEMPTS": "5"},
    )

    assert loaded["verification"]["on_exhaustion"] == "human_review"
    assert loaded["verification"]["max_attempts"] == 5
    assert "deployment" in loaded["gates"]["enabled_kinds"]


def test_unknown_profile_is_a_validation_error() -> None:
    with pytest.raises(ConfigValidationError, match="not defined"):
        load_config(profile="turbo", environ={})


def test_journal_path_is_normalized_relative_to_config(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "workforce.toml"
    _write_config(config_path, '[observability]\njournal_path = "state/events.db"\n')

    loaded = load_config(config_path, environ={})

    expected = (tmp_path.resolve() / "conf" / "state" / "events.db").as_posix()
    assert loaded["observability"]["journal_path"] == expected


def test_dump_effective_config_is_deterministic_json() -> None:
    loaded = load_config(environ={})

    first = dump_effective_config(loaded)
    second = dump_effective_config(load_config(environ={}))

    assert first == second
    assert json.loads(first)["workforce"]["max_workers"] == loaded["workforce"]["max_workers"]


def test_secret_like_keys_in_file_are_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "workforce.toml"
    _write_config(config_path, '[budgets]\napi_key = "sk-should-not-be-here"\n')

    with pytest.raises(ConfigValidationError, match="embedded secret values are forbidden"):
        load_config(config_path, environ={})
