"""Unit tests for structlog configuration, correlation binding, and redaction."""

from __future__ import annotations

import io
import json
import logging
from collections.abc import Iterator

import pytest
import structlog

from nexus_workforce.observability.logging import (
    configure_logging,
    correlation_scope,
    get_correlation_context,
    parse_log_level,
    redact_string,
)


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _json_lines(stream: io.StringIO) -> list[dict[str, object]]:
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


def test_json_format_emits_one_object_per_line_with_correlation() -> None:
    stream = io.StringIO()
    configure_logging(level="DEBUG", log_format="json", stream=stream)
    logger = structlog.get_logger("tests")

    with correlation_scope(project_id="acme", task_id="task-1", worker_id=None):
        logger.info("task_assigned", attempt=1)
    logger.info("outside_scope")

    first, second = _json_lines(stream)
    assert first["event"] == "task_assigned"
    assert first["level"] == "info"
    assert first["project_id"] == "acme"
    assert first["task_id"] == "task-1"
    assert "worker_id" not in first
    assert "project_id" not in second


def test_level_filter_drops_lower_levels() -> None:
    stream = io.StringIO()
    configure_logging(level="WARNING", log_format="json", stream=stream)
    logger = structlog.get_logger("tests")

    logger.info("quiet")
    logger.warning("loud")

    assert [line["event"] for line in _json_lines(stream)] == ["loud"]


def test_redaction_masks_sensitive_keys_and_inline_credentials() -> None:
    stream = io.StringIO()
    configure_logging(log_format="json", stream=stream)

    structlog.get_logger("tests").info(
        "calling provider with api_key=sk-abcdefghijklmnop",
        headers={"Authorization": "Bearer abc.def"},
        password="hunter2",
        tokens=1200,
    )

    (line,) = _json_lines(stream)
    assert "sk-abcdefghijklmnop" not in json.dumps(line)
    assert line["password"] == "***REDACTED***"
    assert line["headers"] == {"Authorization": "***REDACTED***"}
    assert line["tokens"] == 1200


def test_redaction_can_be_disabled() -> None:
    stream = io.StringIO()
    configure_logging(log_format="json", redact_secrets=False, stream=stream)

    structlog.get_logger("tests").info("raw", password="hunter2")

    assert _json_lines(stream)[0]["password"] == "hunter2"


def test_correlation_scope_rejects_unknown_keys_and_restores_context() -> None:
    with pytest.raises(ValueError, match="unsupported correlation key"):
        with correlation_scope(tenant="x"):
            pass

    with correlation_scope(gate_id="gate-1"):
        assert get_correlation_context() == {"gate_id": "gate-1"}
    assert get_correlation_context() == {}


def test_redact_string_patterns() -> None:
    assert redact_string("token: abc123") == "token:***REDACTED***"
    assert redact_string("sent Bearer xyz.abc") == "sent Bearer ***REDACTED***"
    assert redact_string("nothing to see") == "nothing to see"


def test_parse_log_level() -> None:
    assert parse_log_level("debug") == logging.DEBUG
    assert parse_log_level(logging.ERROR) == logging.ERROR
    with pytest.raises(ValueError, match="unsupported logging level"):
        parse_log_level("chatty")


def test_unknown_log_format_is_rejected() -> None:
    with pytest.raises(ValueError, match="log_format"):
        configure_logging(log_format="xml")
