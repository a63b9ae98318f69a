"""structlog configuration with correlation binding and secret redaction."""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from typing import IO, Any, Final

import structlog

from nexus_workforce.domain.events import is_sensitive_key

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_LOG_FORMATS: Final[frozenset[str]] = frozenset({"json", "console"})

_CORRELATION_KEYS: Final[tuple[str, ...]] = (
    "project_id",
    "task_id",
    "worker_id",
    "gate_id",
    "correlation_id",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|client_secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")
_PROVIDER_KEY_PATTERN: Final[re.Pattern[str]] = re.compile(r"\bsk-(?:ant-)?[A-Za-z0-9_-]{12,}\b")


def configure_logging(
    *,
    level: int | str = "INFO",
    log_format: str = "console",
    redact_secrets: bool = True,
    stream: IO[str] | None = None,
) -> None:
    """Install the process-wide structlog pipeline.

    ``log_format`` is ``json`` for machine-readable lines or ``console`` for the
    human renderer. Loggers are not cached so later reconfiguration (and
    ``structlog.testing.capture_logs``) takes effect immediately.
    """

    if log_format not in _LOG_FORMATS:
        raise ValueError(f"log_format must be one of {sorted(_LOG_FORMATS)}, got {log_format!r}")

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if redact_secrets:
        processors.append(redact_event_dict)
    processors.extend(
        [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
        ]
    )
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(parse_log_level(level)),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )


def configure_from_settings(observability: Mapping[str, object], *, stream: IO[str] | None = None) -> None:
    """Apply an ``[observability]`` config section."""

    raw_level = observability.get("log_level", "INFO")
    raw_format = observability.get("log_format", "console")
    configure_logging(
        level=raw_level if isinstance(raw_level, (int, str)) else "INFO",
        log_format=raw_format if isinstance(raw_format, str) else "console",
        redact_secrets=bool(observability.get("redact_secrets", True)),
        stream=stream,
    )


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields onto every log line in scope."""

    bound: dict[str, str] = {}
    for key, value in fields.items():
        if key not in _CORRELATION_KEYS:
            raise ValueError(f"unsupported correlation key {key!r}; allowed: {_CORRELATION_KEYS}")
        if value is not None:
            bound[key] = value
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def get_correlation_context() -> dict[str, str]:
    context = structlog.contextvars.get_contextvars()
    return {key: str(context[key]) for key in _CORRELATION_KEYS if key in context}


def redact_event_dict(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor: deep-redact secret-looking keys and inline credentials."""

    for key in list(event_dict):
        if key == "event":
            value = event_dict[key]
            if isinstance(value, str):
                event_dict[key] = redact_string(value)
            continue
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", redacted)
    return _PROVIDER_KEY_PATTERN.sub(_REDACTED_VALUE, redacted)


def parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value

    if not isinstance(value, str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")

    normalized = value.strip().upper()
    parsed = logging.getLevelName(normalized)
    if isinstance(parsed, int):
        return parsed

    raise ValueError(f"unsupported logging level {value!r}")


def _redact_value(value: object, *, key_context: str | None) -> object:
    if key_context is not None and is_sensitive_key(key_context):
        return _REDACTED_VALUE

    if isinstance(value, str):
        return redact_string(value)

    if isinstance(value, (list, tuple)):
        return [_redact_value(item, key_context=None) for item in value]

    if isinstance(value, Mapping):
        return {key: _redact_value(item, key_context=str(key)) for key, item in value.items()}

    return value


__all__ = [
    "configure_from_settings",
    "configure_logging",
    "correlation_scope",
    "get_correlation_context",
    "parse_log_level",
    "redact_event_dict",
    "redact_string",
]
