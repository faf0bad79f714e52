"""``cost_assistant.db`` schema: cost-analysis drafts and assistant settings."""

from __future__ import annotations

from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.migrations import ColumnSpec, ModuleSchema, TableSpec
from clic_tools.persistence.modules.seeds import insert_settings_row

MODULE_ID = "cost-assistant"
DB_FILE = "cost_assistant.db"
DISPLAY_NAME = "Asistente de Costos"

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name="cost_assistant_drafts",
        create_sql="""
            CREATE TABLE IF NOT EXISTS cost_assistant_drafts (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                createdAt TEXT NOT NULL,
                userId INTEGER,
                articles TEXT NOT NULL,
                additionalCosts TEXT NOT NULL,
                currency TEXT DEFAULT 'CRC',
                exchangeRate REAL,
                globalMargin REAL DEFAULT 0
            )
        """,
        evolved_columns=(
            ColumnSpec("userId", "INTEGER"),
            ColumnSpec("currency", "TEXT DEFAULT 'CRC'"),
            ColumnSpec("exchangeRate", "REAL"),
            ColumnSpec("globalMargin", "REAL DEFAULT 0"),
        ),
    ),
    TableSpec(
        name="cost_assistant_settings",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS cost_assistant_settings "
            "(key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        ),
    ),
)


def seed(handle: DatabaseHandle) -> None:
    insert_settings_row(handle, "cost_assistant_settings", "cost_assistant")


def build_schema() -> ModuleSchema:
    return ModuleSchema(
        module_id=MODULE_ID,
        foundational_table="cost_assistant_drafts",
        tables=TABLES,
        seed=seed,
    )


__all__ = ["DB_FILE", "DISPLAY_NAME", "MODULE_ID", "TABLES", "build_schema", "seed"]
