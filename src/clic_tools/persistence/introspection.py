"""
clic-tools — schema introspection

File: src/clic_tools/persistence/introspection.py
Last updated: 2026-10-19

Purpose
- Capture what a storage file currently contains as an immutable snapshot.

What should be included in this file
- Column, foreign-key, table, and whole-schema value types.
- A single reader that builds a snapshot from ``sqlite_master`` and PRAGMAs.
- A plain-text schema rendering used by the query assistant.

Functional requirements
- Snapshots must be constructible without a database so change planners can be
  unit-tested in isolation.

Non-functional requirements
- Reads only; never mutates the inspected file.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from clic_tools.persistence.handle import DatabaseHandle


@dataclass(frozen=True, slots=True)
class ColumnInfo:
    name: str
    type: str = ""
    not_null: bool = False
    default: str | None = None
    primary_key: int = 0


@dataclass(frozen=True, slots=True)
class ForeignKeyInfo:
    column: str
    table: str
    to: str | None = None
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"


@dataclass(frozen=True, slots=True)
class TableSchema:
    name: str
    columns: tuple[ColumnInfo, ...] = ()
    foreign_keys: tuple[ForeignKeyInfo, ...] = ()

    @classmethod
    def of(
        cls,
        name: str,
        columns: Iterable[str],
        foreign_keys: Iterable[ForeignKeyInfo] = (),
    ) -> TableSchema:
        """Shorthand for building a table from bare column names."""

        return cls(
            name=name,
            columns=tuple(ColumnInfo(name=column) for column in columns),
            foreign_keys=tuple(foreign_keys),
        )

    @property
    def column_names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def has_column(self, column: str) -> bool:
        return any(item.name == column for item in self.columns)

    def foreign_key_for(self, column: str) -> ForeignKeyInfo | None:
        for foreign_key in self.foreign_keys:
            if foreign_key.column == column:
                return foreign_key
        return None


@dataclass(frozen=True, slots=True)
class SchemaSnapshot:
    """Tables of one schema keyed by name."""

    tables: Mapping[str, TableSchema] = field(default_factory=dict)

    @classmethod
    def of(cls, *tables: TableSchema) -> SchemaSnapshot:
        return cls(tables={table.name: table for table in tables})

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(sorted(self.tables))

    def has_table(self, table: str) -> bool:
        return table in self.tables

    def table(self, table: str) -> TableSchema | None:
        return self.tables.get(table)

    def columns(self, table: str) -> frozenset[str]:
        found = self.tables.get(table)
        if found is None:
            return frozenset()
        return frozenset(found.column_names)

    def has_column(self, table: str, column: str) -> bool:
        found = self.tables.get(table)
        return found is not None and found.has_column(column)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def inspect_schema(handle: DatabaseHandle, *, schema: str = "main") -> SchemaSnapshot:
    """Read every user table of ``schema`` with its columns and foreign keys."""

    with handle.lock:
        table_rows = handle.query_all(
            f"""
            SELECT name
            FROM {schema}.sqlite_master
            WHERE type = 'table' AND name NOT LIKE 'sqlite_%'
            ORDER BY name
            """
        )
        tables: dict[str, TableSchema] = {}
        for table_row in table_rows:
            name = str(table_row["name"])
            quoted = quote_identifier(name)
            column_rows = handle.query_all(f"PRAGMA {schema}.table_info({quoted})")
            fk_rows = handle.query_all(f"PRAGMA {schema}.foreign_key_list({quoted})")
            columns = tuple(
                ColumnInfo(
                    name=str(row["name"]),
                    type=str(row["type"] or ""),
                    not_null=bool(row["notnull"]),
                    default=None if row["dflt_value"] is None else str(row["dflt_value"]),
                    primary_key=int(row["pk"] or 0),
                )
                for row in column_rows
            )
            foreign_keys = tuple(
                ForeignKeyInfo(
                    column=str(row["from"]),
                    table=str(row["table"]),
                    to=None if row["to"] is None else str(row["to"]),
                    on_delete=str(row["on_delete"] or "NO ACTION"),
                    on_update=str(row["on_update"] or "NO ACTION"),
                )
                for row in fk_rows
            )
            tables[name] = TableSchema(name=name, columns=columns, foreign_keys=foreign_keys)
    return SchemaSnapshot(tables=tables)


def render_schema_text(snapshot: SchemaSnapshot, *, prefix: str | None = None) -> str:
    """Render a snapshot as ``Table "name":`` blocks listing ``- column (TYPE)``."""

    blocks: list[str] = []
    for name in snapshot.table_names:
        table = snapshot.tables[name]
        qualified = name if prefix is None else f"{prefix}.{name}"
        lines = [f'Table "{qualified}":']
        lines.extend(f"  - {column.name} ({column.type})" for column in table.columns)
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


__all__ = [
    "ColumnInfo",
    "ForeignKeyInfo",
    "SchemaSnapshot",
    "TableSchema",
    "inspect_schema",
    "quote_identifier",
    "render_schema_text",
]
