"""Identifier helpers.

Tasks, gates and events get ``<prefix>-<ULID>`` ids so they sort by creation
time. Project ids are supplied by the caller and only their shape is checked.
Worker ids are derived, ``<project>/<role>/<ordinal>``, so respawning the same
slot yields the same id.
"""

from __future__ import annotations

import re
import secrets
import time
from collections.abc import Callable
from typing import Final

CROCKFORD_BASE32_ALPHABET: Final[str] = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
ULID_LENGTH: Final[int] = 26
ULID_MAX_TIMESTAMP_MS: Final[int] = (1 << 48) - 1
_RANDOM_BITS: Final[int] = 80

PROJECT_ID_PREFIX: Final[str] = "proj"
TASK_ID_PREFIX: Final[str] = "task"
GATE_ID_PREFIX: Final[str] = "gate"
EVENT_ID_PREFIX: Final[str] = "evt"

_PROJECT_KEY: Final[str] = r"[A-Za-z0-9][A-Za-z0-9._:-]{0,127}"
_PROJECT_ID_RE: Final[re.Pattern[str]] = re.compile(_PROJECT_KEY)
_WORKER_ID_RE: Final[re.Pattern[str]] = re.compile(
    rf"(?P<project>{_PROJECT_KEY})/(?P<role>[a-z_]+)/(?P<ordinal>\d{{3,}})"
)
_ULID_RE: Final[re.Pattern[str]] = re.compile(rf"[0-7][{CROCKFORD_BASE32_ALPHABET}]{{25}}")

RandBytes = Callable[[int], bytes]


def generate_ulid(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = time.time_ns() // 1_000_000
    if not 0 <= timestamp_ms <= ULID_MAX_TIMESTAMP_MS:
        raise ValueError(f"timestamp_ms out of range: {timestamp_ms}")
    entropy = (randbytes or secrets.token_bytes)(_RANDOM_BITS // 8)
    if len(entropy) != _RANDOM_BITS // 8:
        raise ValueError(f"randbytes must return exactly {_RANDOM_BITS // 8} bytes")

    value = (timestamp_ms << _RANDOM_BITS) | int.from_bytes(entropy, "big")
    chars = []
    for _ in range(ULID_LENGTH):
        chars.append(CROCKFORD_BASE32_ALPHABET[value & 0x1F])
        value >>= 5
    return "".join(reversed(chars))


def parse_ulid_timestamp_ms(ulid: str) -> int:
    if _ULID_RE.fullmatch(ulid.upper()) is None:
        raise ValueError(f"not a ULID: {ulid!r}")
    value = 0
    for char in ulid.upper():
        value = (value << 5) | CROCKFORD_BASE32_ALPHABET.index(char)
    return value >> _RANDOM_BITS


def validate_prefixed_id(id_str: str, expected_prefix: str) -> None:
    head, sep, ulid = id_str.partition("-")
    if head != expected_prefix or not sep:
        raise ValueError(f"expected prefix '{expected_prefix}-' in {id_str!r}")
    if _ULID_RE.fullmatch(ulid.upper()) is None:
        raise ValueError(f"invalid ULID part in {id_str!r}")


def _new_id(prefix: str, timestamp_ms: int | None, randbytes: RandBytes | None) -> str:
    return f"{prefix}-{generate_ulid(timestamp_ms=timestamp_ms, randbytes=randbytes)}"


def generate_project_id(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    return _new_id(PROJECT_ID_PREFIX, timestamp_ms, randbytes)


def generate_task_id(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    return _new_id(TASK_ID_PREFIX, timestamp_ms, randbytes)


def generate_gate_id(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    return _new_id(GATE_ID_PREFIX, timestamp_ms, randbytes)


def generate_event_id(*, timestamp_ms: int | None = None, randbytes: RandBytes | None = None) -> str:
    return _new_id(EVENT_ID_PREFIX, timestamp_ms, randbytes)


def validate_task_id(id_str: str) -> None:
    validate_prefixed_id(id_str, TASK_ID_PREFIX)


def validate_gate_id(id_str: str) -> None:
    validate_prefixed_id(id_str, GATE_ID_PREFIX)


def validate_event_id(id_str: str) -> None:
    validate_prefixed_id(id_str, EVENT_ID_PREFIX)


def validate_project_id(id_str: str) -> None:
    if not isinstance(id_str, str) or _PROJECT_ID_RE.fullmatch(id_str) is None:
        raise ValueError(
            "project_id must start with an alphanumeric character and contain only "
            f"[A-Za-z0-9._:-] (max 128 characters), got {id_str!r}"
        )


def worker_id_for(project_id: str, role: str, ordinal: int) -> str:
    validate_project_id(project_id)
    if isinstance(ordinal, bool) or not isinstance(ordinal, int) or ordinal < 0:
        raise ValueError(f"ordinal must be a non-negative integer, got {ordinal!r}")
    return f"{project_id}/{role}/{ordinal:03d}"


def parse_worker_id(id_str: str) -> tuple[str, str, int]:
    """Split a worker id into ``(project_id, role, ordinal)``."""

    match = _WORKER_ID_RE.fullmatch(id_str)
    if match is None:
        raise ValueError(f"worker_id must match '<project>/<role>/<ordinal>', got {id_str!r}")
    return match["project"], match["role"], int(match["ordinal"])


__all__ = [
    "CROCKFORD_BASE32_ALPHABET",
    "EVENT_ID_PREFIX",
    "GATE_ID_PREFIX",
    "PROJECT_ID_PREFIX",
    "TASK_ID_PREFIX",
    "ULID_LENGTH",
    "ULID_MAX_TIMESTAMP_MS",
    "generate_event_id",
    "generate_gate_id",
    "generate_project_id",
    "generate_task_id",
    "generate_ulid",
    "parse_ulid_timestamp_ms",
    "parse_worker_id",
    "validate_event_id",
    "validate_gate_id",
    "validate_prefixed_id",
    "validate_project_id",
    "validate_task_id",
    "worker_id_for",
]
