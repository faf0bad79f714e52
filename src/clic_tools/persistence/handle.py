"""
clic-tools — SQLite connection handle

File: src/clic_tools/persistence/handle.py
Last updated: 2026-10-19

Purpose
- Own exactly one open SQLite connection to one module storage file.

What should be included in this file
- Storage error taxonomy (open, busy, corruption).
- Connection configuration (foreign keys, busy timeout, journal mode).
- Busy-retry execution helpers and savepoint-aware transactions.
- Backup/integrity helpers and async wrappers.

Functional requirements
- Opening a file must surface corruption distinctly from other open failures.
- Multi-statement writes must be atomic.

Non-functional requirements
- Safe to share across threads; statements on one handle are serialized.
"""

from __future__ import annotations

import asyncio
import sqlite3
import threading
import time
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Final

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None
Row = dict[str, RowValue]

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)


class StorageError(RuntimeError):
    """Base class for module storage errors."""


class StorageOpenError(StorageError):
    """Raised when a storage file cannot be opened for a non-corruption reason."""


class StorageBusyError(StorageError):
    """Raised when bounded busy retries are exhausted."""


class StorageCorruptionError(StorageError):
    """Raised when SQLite reports possible corruption."""


def is_busy_error(exc: BaseException) -> bool:
    code = getattr(exc, "sqlite_errorcode", None)
    if isinstance(code, int) and code in _SQLITE_BUSY_CODES:
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _BUSY_SUBSTRINGS)


def is_corruption_error(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` (or its cause) carries a corruption signal."""

    current: BaseException | None = exc
    while current is not None:
        code = getattr(current, "sqlite_errorcode", None)
        if isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES:
            return True
        message = str(current).lower()
        if any(fragment in message for fragment in _CORRUPTION_SUBSTRINGS):
            return True
        current = current.__cause__
    return False


class DatabaseHandle:
    """One open SQLite connection bound to one storage file.

    Handles are created by :class:`~clic_tools.persistence.connections.ConnectionManager`
    and shared by every caller in the process. Callers borrow a handle and must
    not close it; the manager closes handles on forced recreation or shutdown.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        if busy_timeout_ms < 0:
            raise ValueError("busy_timeout_ms must be >= 0")
        if busy_retry_limit < 0:
            raise ValueError("busy_retry_limit must be >= 0")
        if busy_retry_backoff_ms < 0:
            raise ValueError("busy_retry_backoff_ms must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._conn: sqlite3.Connection | None = None
        self._journal_mode: str | None = None
        self._savepoint_counter = 0
        self._lock = threading.RLock()

    @classmethod
    def open(
        cls,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> DatabaseHandle:
        """Open (creating if absent) ``path`` and verify it is a readable database.

        Raises :class:`StorageCorruptionError` when the file carries a corruption
        signal and :class:`StorageOpenError` for every other failure.
        """

        handle = cls(
            path,
            busy_timeout_ms=busy_timeout_ms,
            busy_retry_limit=busy_retry_limit,
            busy_retry_backoff_ms=busy_retry_backoff_ms,
        )
        handle._connect()
        return handle

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def journal_mode(self) -> str | None:
        """Journal mode applied when the handle was opened, if any."""

        return self._journal_mode

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"handle for {self._path} is closed")
        return self._conn

    def _connect(self) -> None:
        conn: sqlite3.Connection | None = None
        try:
            conn = sqlite3.connect(
                self._path,
                timeout=self._busy_timeout_ms / 1000.0,
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
            # sqlite3.connect is lazy; reading the schema forces the header check.
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.Error as exc:
            if conn is not None:
                conn.close()
            if is_corruption_error(exc):
                raise StorageCorruptionError(f"{self._path} is corrupt: {exc}") from exc
            raise StorageOpenError(f"unable to open {self._path}: {exc}") from exc
        self._conn = conn

    def set_journal_mode(self, mode: str) -> str:
        """Apply ``PRAGMA journal_mode`` and return the mode SQLite reports."""

        with self._lock:
            cursor = self._execute_with_retry(
                f"PRAGMA journal_mode={mode}", (), operation="set journal_mode"
            )
            row = cursor.fetchone()
        if row is None:
            raise StorageError(f"failed to configure journal_mode for {self._path}")
        applied = str(row[0]).lower()
        self._journal_mode = applied
        return applied

    @contextmanager
    def transaction(self, *, immediate: bool = True) -> Iterator[sqlite3.Connection]:
        """Run statements inside an atomic transaction with savepoint support."""

        with self._lock:
            conn = self.connection
            if conn.in_transaction:
                savepoint = self._next_savepoint_name()
                self._execute_with_retry(f"SAVEPOINT {savepoint}", (), operation="savepoint")
                try:
                    yield conn
                except Exception:
                    self._execute_with_retry(
                        f"ROLLBACK TO SAVEPOINT {savepoint}",
                        (),
                        operation="rollback to savepoint",
                    )
                    self._execute_with_retry(
                        f"RELEASE SAVEPOINT {savepoint}", (), operation="release savepoint"
                    )
                    raise
                else:
                    self._execute_with_retry(
                        f"RELEASE SAVEPOINT {savepoint}", (), operation="release savepoint"
                    )
                return

            begin_sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"
            self._execute_with_retry(begin_sql, (), operation="begin transaction")
            try:
                yield conn
            except Exception:
                self._execute_with_retry("ROLLBACK", (), operation="rollback transaction")
                raise
            else:
                self._execute_with_retry("COMMIT", (), operation="commit transaction")

    def execute(self, sql: str, params: SQLParams = ()) -> int:
        """Execute a parameterized statement and return affected row count."""

        with self._lock:
            cursor = self._execute_with_retry(sql, params, operation="execute statement")
            return cursor.rowcount

    def execute_cursor(self, sql: str, params: SQLParams = ()) -> sqlite3.Cursor:
        """Execute one statement and hand back the live cursor."""

        with self._lock:
            return self._execute_with_retry(sql, params, operation="execute statement")

    def execute_statements(self, statements: Iterable[str]) -> None:
        """Execute a batch of parameterless statements inside one transaction."""

        with self.transaction():
            for statement in statements:
                self._execute_with_retry(statement, (), operation="execute batch")

    def executemany(self, sql: str, params_iter: Iterable[SQLParams]) -> int:
        params_list = [tuple(params) for params in params_iter]
        with self.transaction():
            for attempt in range(self._busy_retry_limit + 1):
                try:
                    cursor = self.connection.executemany(sql, params_list)
                    return cursor.rowcount
                except sqlite3.IntegrityError:
                    raise
                except sqlite3.Error as exc:
                    if is_busy_error(exc) and attempt < self._busy_retry_limit:
                        self._backoff(attempt)
                        continue
                    self._raise_actionable_error(exc, operation="execute many")
        raise StorageBusyError("execute many exhausted retries unexpectedly")

    def query_all(self, sql: str, params: SQLParams = ()) -> list[Row]:
        """Run a query and return rows as dictionaries."""

        with self._lock:
            cursor = self._execute_with_retry(sql, params, operation="query all")
            return [row_to_dict(row) for row in cursor.fetchall()]

    def query_one(self, sql: str, params: SQLParams = ()) -> Row | None:
        with self._lock:
            cursor = self._execute_with_retry(sql, params, operation="query one")
            row = cursor.fetchone()
            return None if row is None else row_to_dict(row)

    def table_exists(self, table: str, *, schema: str = "main") -> bool:
        row = self.query_one(
            f"SELECT name FROM {schema}.sqlite_master WHERE type = 'table' AND name = ?",
            (table,),
        )
        return row is not None

    async def execute_async(self, sql: str, params: SQLParams = ()) -> int:
        return await asyncio.to_thread(self.execute, sql, tuple(params))

    async def query_all_async(self, sql: str, params: SQLParams = ()) -> list[Row]:
        return await asyncio.to_thread(self.query_all, sql, tuple(params))

    async def query_one_async(self, sql: str, params: SQLParams = ()) -> Row | None:
        return await asyncio.to_thread(self.query_one, sql, tuple(params))

    def backup(self, destination: str | Path) -> Path:
        """Create a consistent snapshot using the SQLite backup API."""

        destination_path = Path(destination).expanduser()
        destination_path.parent.mkdir(parents=True, exist_ok=True)
        target = sqlite3.connect(
            destination_path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            with self._lock:
                self.connection.backup(target)
        finally:
            target.close()
        return destination_path

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Return integrity-check errors; empty tuple means OK."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query_all(f"PRAGMA integrity_check({max_errors})")
        messages = tuple(str(next(iter(row.values()), "")) for row in rows)
        if messages == ("ok",):
            return ()
        return messages

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            self._conn.close()
            self._conn = None

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"DatabaseHandle({self._path.as_posix()!r}, {state})"

    def _next_savepoint_name(self) -> str:
        self._savepoint_counter += 1
        return f"sp_{self._savepoint_counter}"

    def _backoff(self, attempt: int) -> None:
        time.sleep((self._busy_retry_backoff_ms / 1000.0) * float(2**attempt))

    def _execute_with_retry(
        self,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        conn = self.connection
        for attempt in range(self._busy_retry_limit + 1):
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                if is_busy_error(exc) and attempt < self._busy_retry_limit:
                    self._backoff(attempt)
                    continue
                self._raise_actionable_error(exc, operation=operation)
        raise StorageBusyError(f"{operation} exhausted retries unexpectedly")

    def _raise_actionable_error(self, exc: sqlite3.Error, *, operation: str) -> None:
        if is_corruption_error(exc):
            raise StorageCorruptionError(
                f"{operation} failed for {self._path}: {exc}. "
                "Run `integrity_check()` and restore from an update backup if needed."
            ) from exc
        if is_busy_error(exc):
            raise StorageBusyError(
                f"{operation} hit SQLITE_BUSY for {self._path} after "
                f"{self._busy_retry_limit + 1} attempt(s): {exc}"
            ) from exc
        raise StorageError(f"{operation} failed for {self._path}: {exc}") from exc


def row_to_dict(row: sqlite3.Row) -> Row:
    return {str(key): row[key] for key in row.keys()}  # noqa: SIM118


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "DatabaseHandle",
    "Row",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StorageBusyError",
    "StorageCorruptionError",
    "StorageError",
    "StorageOpenError",
    "is_busy_error",
    "is_corruption_error",
    "row_to_dict",
]
