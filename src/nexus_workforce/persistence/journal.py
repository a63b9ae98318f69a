"""SQLite write-through journal for entity-changed events."""

from __future__ import annotations

import sqlite3
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Final

from nexus_workforce.constants import JOURNAL_SCHEMA_VERSION
from nexus_workforce.domain.events import EventType, WorkforceEvent, redact_sensitive
from nexus_workforce.errors import WorkforceError

if TYPE_CHECKING:
    from nexus_workforce.observability.events import EventBus

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 3
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25
MEMORY_PATH: Final[str] = ":memory:"

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = ("database is locked", "database is busy")

_SCHEMA: Final[tuple[str, ...]] = (
    """
    CREATE TABLE IF NOT EXISTS journal_meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        seq INTEGER PRIMARY KEY AUTOINCREMENT,
        event_id TEXT NOT NULL UNIQUE,
        event_type TEXT NOT NULL,
        project_id TEXT,
        correlation_id TEXT,
        timestamp TEXT NOT NULL,
        body TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_events_project ON events(project_id, seq)",
    "CREATE INDEX IF NOT EXISTS idx_events_type ON events(event_type, seq)",
)


class JournalError(WorkforceError):
    """Raised when the event journal cannot be read or written."""


class JournalBusyError(JournalError):
    pass


class SQLiteEventJournal:
    """Append-only event log; usable directly as an ``EventBus`` persistence callback."""

    def __init__(
        self,
        path: str | Path = MEMORY_PATH,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")

        self._path = str(path) if str(path) == MEMORY_PATH else str(Path(path).expanduser())
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> str:
        return self._path

    def migrate(self) -> int:
        """Create the schema idempotently and return the journal schema version."""

        with self._transaction() as conn:
            for statement in _SCHEMA:
                self._execute_with_retry(conn, statement, (), operation="migrate")
            self._execute_with_retry(
                conn,
                "INSERT OR REPLACE INTO journal_meta(key, value) VALUES ('schema_version', ?)",
                (str(JOURNAL_SCHEMA_VERSION),),
                operation="record schema version",
            )
        return JOURNAL_SCHEMA_VERSION

    def attach(self, bus: EventBus) -> None:
        self.migrate()
        bus.set_persistence_callback(self)

    def __call__(self, event: WorkforceEvent) -> None:
        self.append(event)

    def append(self, event: WorkforceEvent) -> bool:
        """Store ``event``; re-appending the same event id is a no-op returning ``False``."""

        stored = redact_sensitive(event)
        with self._transaction() as conn:
            cursor = self._execute_with_retry(
                conn,
                """
                INSERT OR IGNORE INTO events(
                    event_id, event_type, project_id, correlation_id, timestamp, body
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    stored.event_id,
                    stored.event_type.value,
                    stored.project_id,
                    stored.correlation_id,
                    stored.to_dict()["timestamp"],
                    stored.to_json(),
                ),
                operation="append event",
            )
            return cursor.rowcount == 1

    def read(
        self,
        *,
        project_id: str | None = None,
        event_type: EventType | str | None = None,
        limit: int | None = None,
    ) -> list[WorkforceEvent]:
        """Return journaled events in append order."""

        clauses: list[str] = []
        params: list[object] = []
        if project_id is not None:
            clauses.append("project_id = ?")
            params.append(project_id)
        if event_type is not None:
            clauses.append("event_type = ?")
            params.append(EventType(event_type).value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT body FROM events {where} ORDER BY seq ASC"  # noqa: S608
        if limit is not None:
            if limit <= 0:
                return []
            sql += " LIMIT ?"
            params.append(limit)

        with self._transaction(immediate=False) as conn:
            rows = self._execute_with_retry(conn, sql, tuple(params), operation="read events")
            bodies = [str(row[0]) for row in rows.fetchall()]
        return [WorkforceEvent.from_json(body) for body in bodies]

    def count(self, *, project_id: str | None = None) -> int:
        sql = "SELECT COUNT(*) FROM events"
        params: tuple[object, ...] = ()
        if project_id is not None:
            sql += " WHERE project_id = ?"
            params = (project_id,)
        with self._transaction(immediate=False) as conn:
            row = self._execute_with_retry(conn, sql, params, operation="count events").fetchone()
        return int(row[0]) if row is not None else 0

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> SQLiteEventJournal:
        self.migrate()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @contextmanager
    def _transaction(self, *, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._connection()
            begin_sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"
            self._execute_with_retry(conn, begin_sql, (), operation="begin transaction")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            else:
                self._execute_with_retry(conn, "COMMIT", (), operation="commit transaction")

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            if self._path != MEMORY_PATH:
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self._path, isolation_level=None, check_same_thread=False)
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            if self._path != MEMORY_PATH:
                conn.execute("PRAGMA journal_mode=WAL")
            self._conn = conn
        return self._conn

    def _execute_with_retry(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: tuple[object, ...],
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, params)
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                busy = any(fragment in str(exc).lower() for fragment in _BUSY_SUBSTRINGS)
                if busy and attempt < self._busy_retry_limit:
                    time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))
                    continue
                if busy:
                    raise JournalBusyError(
                        f"{operation} hit SQLITE_BUSY for {self._path} after "
                        f"{self._busy_retry_limit + 1} attempt(s): {exc}"
                    ) from exc
                raise JournalError(f"{operation} failed for {self._path}: {exc}") from exc
        raise JournalBusyError(f"{operation} exhausted retries unexpectedly")


__all__ = [
    "DEFAULT_BUSY_TIMEOUT_MS",
    "JournalBusyError",
    "JournalError",
    "MEMORY_PATH",
    "SQLiteEventJournal",
]
