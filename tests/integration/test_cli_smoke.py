"""
nexus-workforce: CLI subprocess smoke contracts

File: tests/integration/test_cli_smoke.py

Purpose
- Run ``python -m nexus_workforce`` as a real process and pin its exit codes.
- Verify the journal configured in ``workforce.toml`` survives the process.
"""

from __future__ import annotations

import json
import os
import sqlite3
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = PROJECT_ROOT / "src"


def _run_cli(cwd: Path, *args: str) -> subprocess.CompletedProcess[str]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("WORKFORCE_")}
    existing = env.get("PYTHONPATH")
    env["PYTHONPATH"] = str(SRC_PATH) if not existing else f"{SRC_PATH}{os.pathsep}{existing}"
    return subprocess.run(
        [sys.executable, "-m", "nexus_workforce", *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


@pytest.mark.smoke
def test_size_prints_json_and_exits_zero(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "size", "--json", "--features", "12", "--security", "elevated")

    assert completed.returncode == 0, completed.stderr
    payload = json.loads(completed.stdout)
    assert payload["command"] == "size"
    assert payload["profile"]["security_tier"] == "elevated"
    assert 5 <= payload["total"] <= 50


@pytest.mark.smoke
def test_unknown_subcommand_is_a_usage_error(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "deploy")

    assert completed.returncode == 2
    assert "invalid choice" in completed.stderr


@pytest.mark.smoke
def test_missing_config_file_exits_two(tmp_path: Path) -> None:
    completed = _run_cli(tmp_path, "config", "--config", "absent.toml")

    assert completed.returncode == 2
    assert completed.stderr.startswith("error: config file not found")


@pytest.mark.smoke
def test_simulate_journals_events_to_configured_sqlite(tmp_path: Path) -> None:
    (tmp_path / "workforce.toml").write_text(
        '[observability]\njournal_path = "state/journal.sqlite"\nlog_format = "json"\n',
        encoding="utf-8",
    )

    completed = _run_cli(tmp_path, "simulate", "--json", "--tasks", "3", "--unfixable", "1")

    assert completed.returncode == 1, completed.stderr
    payload = json.loads(completed.stdout)
    assert (payload["completed"], payload["failed"]) == (2, 1)

    journal = tmp_path / "state" / "journal.sqlite"
    assert journal.exists()
    with sqlite3.connect(journal) as conn:
        counts = dict(
            conn.execute("SELECT event_type, COUNT(*) FROM events GROUP BY event_type").fetchall()
        )
    assert counts["TaskCompleted"] == 2
    assert counts["TaskFailed"] == 1
    assert "WorkerScored" not in counts
