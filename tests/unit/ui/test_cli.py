"""
nexus-workforce: CLI routing tests

File: tests/unit/ui/test_cli.py

Purpose
- Exercise ``size``, ``simulate`` and ``config`` end to end through ``run_cli``
  and pin the exit-code contract for config and workload errors.
"""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

from nexus_workforce.ui.cli import run_cli


@pytest.fixture(autouse=True)
def _isolated_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("WORKFORCE_PROFILE", raising=False)
    yield
    structlog.reset_defaults()


def _json_out(capsys: pytest.CaptureFixture[str]) -> dict[str, object]:
    return json.loads(capsys.readouterr().out)


def test_size_json_reports_composition(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["size", "--json", "--features", "3"]) == 0

    payload = _json_out(capsys)
    assert payload["command"] == "size"
    assert payload["total"] == 7
    assert payload["composition"]["coordinator"] == 1  # type: ignore[index]
    assert payload["hours"] == 8.0
    assert payload["estimated_cost_usd"] > 0  # type: ignore[operator]


def test_size_reads_workload_file_and_flags_override(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    workload = tmp_path / "workload.yaml"
    workload.write_text("features: 40\nsecurity_tier: basic\n", encoding="utf-8")

    assert run_cli(["size", "--json", "--workload", str(workload), "--features", "3"]) == 0

    assert _json_out(capsys)["total"] == 7


def test_size_respects_config_file_band(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    (tmp_path / "workforce.toml").write_text("[workforce]\nmax_workers = 6\n", encoding="utf-8")

    assert run_cli(["size", "--json", "--features", "3"]) == 0

    payload = _json_out(capsys)
    assert payload["total"] == 6
    assert payload["clamped"] is True


def test_size_plain_text_mentions_degraded_profile(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["size", "--no-color"]) == 0

    out = capsys.readouterr().out
    assert "Worker composition:" in out
    assert "minimum viable team" in out


def test_malformed_workload_file_exits_2(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    workload = tmp_path / "workload.yaml"
    workload.write_text("- just\n- a list\n", encoding="utf-8")

    assert run_cli(["size", "--workload", str(workload)]) == 2
    assert "must contain a mapping" in capsys.readouterr().err


def test_missing_workload_file_exits_2(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["size", "--workload", "nope.yaml"]) == 2
    assert "cannot read workload file" in capsys.readouterr().err


def test_missing_explicit_config_exits_2(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["config", "--config", "missing.toml"]) == 2
    assert "config file not found" in capsys.readouterr().err


def test_invalid_config_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    (tmp_path / "workforce.toml").write_text("[workforce]\nmin_workers = 0\n", encoding="utf-8")

    assert run_cli(["config"]) == 2
    assert "workforce.min_workers" in capsys.readouterr().err


def test_config_json_is_redacted(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["config", "--json"]) == 0

    payload = _json_out(capsys)
    assert payload["command"] == "config"
    assert payload["active_profile"] is None
    assert payload["config"]["workforce"]["max_workers"] == 50  # type: ignore[index]


def test_log_level_flag_reaches_effective_config(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["config", "--json", "--log-level", "debug"]) == 0

    payload = _json_out(capsys)
    assert payload["config"]["observability"]["log_level"] == "DEBUG"  # type: ignore[index]


def test_simulate_all_fixable_tasks_complete(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["simulate", "--json", "--tasks", "4"]) == 0

    payload = _json_out(capsys)
    assert payload["completed"] == 4
    assert payload["failed"] == 0
    assert payload["close"]["tasks_cancelled"] == 0  # type: ignore[index]


def test_simulate_unfixable_task_exits_1(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["simulate", "--json", "--tasks", "3", "--unfixable", "1"]) == 1

    payload = _json_out(capsys)
    assert payload["failed"] == 1
    reasons = [result["failure_reason"] for result in payload["results"]]  # type: ignore[union-attr]
    assert reasons.count("verification_exhausted") == 1


def test_simulate_approved_gates_complete(capsys: pytest.CaptureFixture[str]) -> None:
    argv = ["simulate", "--json", "--tasks", "2", "--gate-kind", "security", "--approve-gates"]

    assert run_cli(argv) == 0
    assert _json_out(capsys)["completed"] == 2


def test_simulate_rejects_negative_task_count(capsys: pytest.CaptureFixture[str]) -> None:
    assert run_cli(["simulate", "--tasks", "-1"]) == 2
    assert "--tasks" in capsys.readouterr().err
