"""``ia.db`` schema: knowledge-base folders and assistant chat history."""

from __future__ import annotations

from clic_tools.persistence.migrations import ModuleSchema, TableSpec

MODULE_ID = "ai-engine"
DB_FILE = "ia.db"
DISPLAY_NAME = "Motor de IA"

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name="knowledge_base_paths",
        create_sql="""
            CREATE TABLE IF NOT EXISTS knowledge_base_paths (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                path TEXT NOT NULL UNIQUE
            )
        """,
    ),
    TableSpec(
        name="chat_history",
        create_sql="""
            CREATE TABLE IF NOT EXISTS chat_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sessionId TEXT NOT NULL,
                userId INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """,
        indexes=(
            "CREATE INDEX IF NOT EXISTS idx_chat_history_session ON chat_history(sessionId)",
        ),
    ),
)


def build_schema() -> ModuleSchema:
    return ModuleSchema(module_id=MODULE_ID, foundational_table="knowledge_base_paths", tables=TABLES)


__all__ = ["DB_FILE", "DISPLAY_NAME", "MODULE_ID", "TABLES", "build_schema"]
