"""
clic-tools — cross-database query executor

File: src/clic_tools/persistence/federation.py
Last updated: 2026-10-19

Purpose
- Run one ad-hoc statement against the main storage file with every existing
  module file attached under its registry alias.

What should be included in this file
- Attach/detach session bound to the main handle lock.
- Read results as row dictionaries, write results as change counts.
- Schema description text for the text-to-SQL assistant.

Functional requirements
- Every alias attached for a call is detached afterwards, even on failure.
- Attach paths come only from the registry and are bound as parameters.

Non-functional requirements
- A session never interleaves with another thread's statements on the main handle.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from clic_tools.persistence.handle import DatabaseHandle, Row, StorageError, row_to_dict
from clic_tools.persistence.introspection import inspect_schema, render_schema_text
from clic_tools.persistence.registry import is_safe_alias

if TYPE_CHECKING:
    from clic_tools.persistence.connections import ConnectionManager


@dataclass(frozen=True, slots=True)
class WriteResult:
    changes: int
    last_insert_rowid: int

    def to_dict(self) -> dict[str, int]:
        return {"changes": self.changes, "lastInsertRowid": self.last_insert_rowid}


class FederatedQueryError(StorageError):
    """Raised when the caller's statement fails inside a federation session."""

    def __init__(self, message: str, *, query: str) -> None:
        super().__init__(message)
        self.query = query


class FederatedQueryExecutor:
    """Attach module files to the main connection for a single statement."""

    def __init__(self, manager: ConnectionManager, *, logger: Any | None = None) -> None:
        self._manager = manager
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def run_federated(self, sql_text: str) -> list[Row] | WriteResult:
        """Execute ``sql_text`` once with every existing module file attached.

        Statements that produce columns return their rows; anything else
        returns a :class:`WriteResult`. Failures raise
        :class:`FederatedQueryError` carrying the statement text, as do
        statements that open or close a transaction on the shared connection
        (``BEGIN``, ``SAVEPOINT``, ``COMMIT``); those are rolled back first.
        """

        handle = self._manager.acquire(self._manager.registry.main().file)
        with handle.lock, self._attached(handle):
            conn = handle.connection
            was_in_transaction = conn.in_transaction
            result: list[Row] | WriteResult
            try:
                cursor = conn.execute(sql_text)
                if cursor.description is not None:
                    result = [row_to_dict(row) for row in cursor.fetchall()]
                else:
                    changes = max(cursor.rowcount, 0)
                    # lastrowid is None on a fresh cursor unless this statement inserted.
                    result = WriteResult(
                        changes=changes,
                        last_insert_rowid=(cursor.lastrowid or 0) if changes else 0,
                    )
            except (sqlite3.Error, sqlite3.Warning, StorageError) as exc:
                self._rollback_opened_transaction(conn, was_in_transaction)
                self._logger.error("federated_query_failed", query=sql_text, error=str(exc))
                raise FederatedQueryError(
                    f"federated query failed: {exc}", query=sql_text
                ) from exc
            if conn.in_transaction != was_in_transaction:
                self._rollback_opened_transaction(conn, was_in_transaction)
                self._logger.error("federated_transaction_rejected", query=sql_text)
                raise FederatedQueryError(
                    "federated query failed: transaction control statements are not allowed",
                    query=sql_text,
                )
            return result

    async def run_federated_async(self, sql_text: str) -> list[Row] | WriteResult:
        return await asyncio.to_thread(self.run_federated, sql_text)

    def describe_schema(self, *, include_attached: bool = True) -> str:
        """Text listing of every table and column, attached tables prefixed by alias."""

        handle = self._manager.acquire(self._manager.registry.main().file)
        with handle.lock:
            sections = [render_schema_text(inspect_schema(handle))]
            if include_attached:
                with self._attached(handle) as aliases:
                    for alias in aliases:
                        rendered = render_schema_text(
                            inspect_schema(handle, schema=alias), prefix=alias
                        )
                        if rendered:
                            sections.append(rendered)
        return "\n\n".join(section for section in sections if section)

    async def describe_schema_async(self, *, include_attached: bool = True) -> str:
        return await asyncio.to_thread(self.describe_schema, include_attached=include_attached)

    def _rollback_opened_transaction(
        self, conn: sqlite3.Connection, was_in_transaction: bool
    ) -> None:
        if was_in_transaction or not conn.in_transaction:
            return
        try:
            conn.rollback()
        except sqlite3.Error as exc:
            self._logger.warning("federated_rollback_failed", error=str(exc))

    @contextmanager
    def _attached(self, handle: DatabaseHandle) -> Iterator[list[str]]:
        aliases: list[str] = []
        try:
            for descriptor in self._manager.registry.auxiliaries():
                path = self._manager.path_for(descriptor.file)
                if not path.exists():
                    continue
                alias = descriptor.alias
                if not is_safe_alias(alias):
                    self._logger.warning("attach_skipped", db_file=descriptor.file, alias=alias)
                    continue
                try:
                    handle.execute(f"ATTACH DATABASE ? AS {alias}", (str(path),))
                except (sqlite3.Error, StorageError) as exc:
                    self._logger.warning(
                        "attach_failed", db_file=descriptor.file, alias=alias, error=str(exc)
                    )
                    continue
                aliases.append(alias)
            yield aliases
        finally:
            for alias in aliases:
                try:
                    handle.connection.execute(f"DETACH DATABASE {alias}")
                except (sqlite3.Error, StorageError) as exc:
                    self._logger.debug("detach_failed", alias=alias, error=str(exc))


__all__ = ["FederatedQueryError", "FederatedQueryExecutor", "WriteResult"]
