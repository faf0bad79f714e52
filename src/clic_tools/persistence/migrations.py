"""
clic-tools — schema change planning and module migrators

File: src/clic_tools/persistence/migrations.py
Last updated: 2026-10-19

Purpose
- Bring a module storage file from whatever shape it has on disk to the shape
  the current release expects, without a version table.

What should be included in this file
- Schema change values (create table, add/drop column, recreate table).
- Declarative module schema (table catalog, seeds, planners, data fixes).
- Pure planners that turn a ``SchemaSnapshot`` into an ordered change list.
- Generic initializer and migrator callables built from a module schema.

Functional requirements
- A schema that is already current must yield an empty plan.
- Table recreation must preserve rows for every column shared by the old and
  new table definitions.
- Migration failures must be reported as outcomes, never raised to callers.

Non-functional requirements
- Forward-only: a failed run keeps whatever changes were already applied.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol

import structlog

from clic_tools.persistence.handle import DatabaseHandle, StorageError
from clic_tools.persistence.introspection import (
    SchemaSnapshot,
    inspect_schema,
    quote_identifier,
)

TEMP_TABLE_SUFFIX = "_temp_migration"


class MigrationError(StorageError):
    """Raised when one schema change or data fix cannot be applied."""


class SchemaChange(Protocol):
    table: str

    def describe(self) -> str: ...

    def apply(self, handle: DatabaseHandle) -> None: ...


@dataclass(frozen=True, slots=True)
class CreateTable:
    table: str
    statements: tuple[str, ...]

    def describe(self) -> str:
        return f"create table {self.table}"

    def apply(self, handle: DatabaseHandle) -> None:
        handle.execute_statements(self.statements)


@dataclass(frozen=True, slots=True)
class AddColumn:
    table: str
    column: str
    definition: str

    def describe(self) -> str:
        return f"add column {self.table}.{self.column}"

    def apply(self, handle: DatabaseHandle) -> None:
        handle.execute(
            f"ALTER TABLE {quote_identifier(self.table)} "
            f"ADD COLUMN {quote_identifier(self.column)} {self.definition}"
        )


@dataclass(frozen=True, slots=True)
class DropColumn:
    table: str
    column: str

    def describe(self) -> str:
        return f"drop column {self.table}.{self.column}"

    def apply(self, handle: DatabaseHandle) -> None:
        handle.execute(
            f"ALTER TABLE {quote_identifier(self.table)} "
            f"DROP COLUMN {quote_identifier(self.column)}"
        )


@dataclass(frozen=True, slots=True)
class RecreateTable:
    """Rebuild ``table`` from ``create_sql`` keeping rows of shared columns.

    Rows are staged in ``<table>_temp_migration``; the whole copy runs in one
    transaction with foreign-key enforcement switched off around it because
    ``PRAGMA foreign_keys`` is a no-op inside an open transaction.
    """

    table: str
    create_sql: str
    indexes: tuple[str, ...] = ()
    reason: str = ""

    def describe(self) -> str:
        suffix = f" ({self.reason})" if self.reason else ""
        return f"recreate table {self.table}{suffix}"

    def apply(self, handle: DatabaseHandle) -> None:
        table = quote_identifier(self.table)
        temp = quote_identifier(self.table + TEMP_TABLE_SUFFIX)
        with handle.lock:
            handle.execute("PRAGMA foreign_keys=OFF")
            try:
                with handle.transaction():
                    handle.execute(f"DROP TABLE IF EXISTS {temp}")
                    handle.execute(f"CREATE TABLE {temp} AS SELECT * FROM {table}")
                    handle.execute(f"DROP TABLE {table}")
                    handle.execute(self.create_sql)
                    shared = _shared_columns(handle, self.table, self.table + TEMP_TABLE_SUFFIX)
                    if shared:
                        columns = ", ".join(quote_identifier(name) for name in shared)
                        handle.execute(
                            f"INSERT INTO {table} ({columns}) SELECT {columns} FROM {temp}"
                        )
                    handle.execute(f"DROP TABLE {temp}")
                    for statement in self.indexes:
                        handle.execute(statement)
            finally:
                handle.execute("PRAGMA foreign_keys=ON")


def _shared_columns(handle: DatabaseHandle, new_table: str, old_table: str) -> list[str]:
    new_rows = handle.query_all(f"PRAGMA table_info({quote_identifier(new_table)})")
    old_rows = handle.query_all(f"PRAGMA table_info({quote_identifier(old_table)})")
    old_names = {str(row["name"]) for row in old_rows}
    return [str(row["name"]) for row in new_rows if str(row["name"]) in old_names]


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    """A column added after the table's first release."""

    name: str
    definition: str


@dataclass(frozen=True, slots=True)
class TableSpec:
    name: str
    create_sql: str
    evolved_columns: tuple[ColumnSpec, ...] = ()
    indexes: tuple[str, ...] = ()

    def creation_statements(self) -> tuple[str, ...]:
        return (self.create_sql, *self.indexes)


Planner = Callable[[SchemaSnapshot], list[SchemaChange]]
SeedRoutine = Callable[[DatabaseHandle], None]


@dataclass(frozen=True, slots=True)
class DataFix:
    """Self-terminating data migration; ``apply`` returns rows changed."""

    name: str
    apply: Callable[[DatabaseHandle], int]


@dataclass(frozen=True, slots=True)
class ModuleSchema:
    module_id: str
    foundational_table: str
    tables: tuple[TableSpec, ...]
    seed: SeedRoutine | None = None
    planners: tuple[Planner, ...] = ()
    data_fixes: tuple[DataFix, ...] = ()

    def __post_init__(self) -> None:
        names = [table.name for table in self.tables]
        if len(names) != len(set(names)):
            raise ValueError(f"duplicate table in module schema {self.module_id!r}")
        if self.foundational_table not in names:
            raise ValueError(
                f"foundational table {self.foundational_table!r} is not in the catalog "
                f"of module {self.module_id!r}"
            )

    def table(self, name: str) -> TableSpec | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def creation_statements(self) -> tuple[str, ...]:
        statements: list[str] = []
        for table in self.tables:
            statements.extend(table.creation_statements())
        return tuple(statements)

    def plan(self, snapshot: SchemaSnapshot) -> list[SchemaChange]:
        """Ordered changes that bring ``snapshot`` up to this schema."""

        changes = plan_catalog_changes(self.tables, snapshot)
        for planner in self.planners:
            changes.extend(planner(snapshot))
        return changes


def plan_catalog_changes(
    tables: Sequence[TableSpec],
    snapshot: SchemaSnapshot,
) -> list[SchemaChange]:
    """Missing tables become ``CreateTable``; missing evolved columns ``AddColumn``."""

    changes: list[SchemaChange] = []
    for table in tables:
        if not snapshot.has_table(table.name):
            changes.append(CreateTable(table=table.name, statements=table.creation_statements()))
            continue
        present = snapshot.columns(table.name)
        for column in table.evolved_columns:
            if column.name not in present:
                changes.append(
                    AddColumn(table=table.name, column=column.name, definition=column.definition)
                )
    return changes


def plan_drop_column(table: str, column: str) -> Planner:
    def planner(snapshot: SchemaSnapshot) -> list[SchemaChange]:
        if snapshot.has_column(table, column):
            return [DropColumn(table=table, column=column)]
        return []

    return planner


class MigrationState(StrEnum):
    OK = "ok"
    FAILED = "failed"
    SKIPPED = "skipped"
    PENDING = "pending"


@dataclass(frozen=True, slots=True)
class MigrationOutcome:
    module_id: str
    state: MigrationState
    applied: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.state is not MigrationState.FAILED


class ModuleInitializer:
    """Create every catalog table of a fresh file, then seed defaults."""

    def __init__(
        self,
        schema: ModuleSchema,
        *,
        logger: Any | None = None,
    ) -> None:
        self._schema = schema
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def schema(self) -> ModuleSchema:
        return self._schema

    def __call__(self, handle: DatabaseHandle) -> None:
        handle.execute_statements(self._schema.creation_statements())
        if self._schema.seed is not None:
            with handle.transaction():
                self._schema.seed(handle)
        self._logger.info(
            "module_initialized",
            module_id=self._schema.module_id,
            db_file=handle.path.name,
            tables=len(self._schema.tables),
        )


class ModuleMigrator:
    """Introspect, plan and apply the changes a module file is missing."""

    def __init__(
        self,
        schema: ModuleSchema,
        *,
        logger: Any | None = None,
    ) -> None:
        self._schema = schema
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def schema(self) -> ModuleSchema:
        return self._schema

    def plan(self, handle: DatabaseHandle) -> list[SchemaChange]:
        return self._schema.plan(inspect_schema(handle))

    def __call__(self, handle: DatabaseHandle) -> MigrationOutcome:
        module_id = self._schema.module_id
        if not handle.table_exists(self._schema.foundational_table):
            self._logger.info(
                "module_migration_skipped",
                module_id=module_id,
                db_file=handle.path.name,
                missing_table=self._schema.foundational_table,
            )
            return MigrationOutcome(module_id=module_id, state=MigrationState.SKIPPED)

        applied: list[str] = []
        try:
            for change in self.plan(handle):
                _apply_change(change, handle)
                applied.append(change.describe())
                self._logger.info(
                    "module_migration_change",
                    module_id=module_id,
                    db_file=handle.path.name,
                    change=change.describe(),
                )
            for fix in self._schema.data_fixes:
                changed = _apply_fix(fix, handle)
                if changed:
                    applied.append(f"{fix.name} ({changed} row(s))")
        except Exception as exc:  # noqa: BLE001 - outcome carries the failure
            self._logger.error(
                "module_migration_failed",
                module_id=module_id,
                db_file=handle.path.name,
                error=str(exc),
                applied=list(applied),
            )
            return MigrationOutcome(
                module_id=module_id,
                state=MigrationState.FAILED,
                applied=tuple(applied),
                error=str(exc),
            )
        return MigrationOutcome(module_id=module_id, state=MigrationState.OK, applied=tuple(applied))


def _apply_change(change: SchemaChange, handle: DatabaseHandle) -> None:
    try:
        change.apply(handle)
    except (sqlite3.Error, StorageError) as exc:
        raise MigrationError(f"{change.describe()} failed: {exc}") from exc


def _apply_fix(fix: DataFix, handle: DatabaseHandle) -> int:
    try:
        return fix.apply(handle)
    except (sqlite3.Error, StorageError) as exc:
        raise MigrationError(f"data fix {fix.name} failed: {exc}") from exc


def expected_snapshot(schema: ModuleSchema) -> SchemaSnapshot:
    """Snapshot of a freshly initialized file for ``schema``, built in memory."""

    handle = DatabaseHandle.open(":memory:")
    try:
        handle.execute_statements(schema.creation_statements())
        return inspect_schema(handle)
    finally:
        handle.close()


__all__ = [
    "AddColumn",
    "ColumnSpec",
    "CreateTable",
    "DataFix",
    "DropColumn",
    "MigrationError",
    "MigrationOutcome",
    "MigrationState",
    "ModuleInitializer",
    "ModuleMigrator",
    "ModuleSchema",
    "Planner",
    "RecreateTable",
    "SchemaChange",
    "SeedRoutine",
    "TableSpec",
    "expected_snapshot",
    "plan_catalog_changes",
    "plan_drop_column",
]
