"""``notifications.db`` schema: delivery rules and per-service settings."""

from __future__ import annotations

import json

from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.migrations import ModuleSchema, TableSpec
from clic_tools.persistence.modules.seeds import seed_section

MODULE_ID = "notifications-engine"
DB_FILE = "notifications.db"
DISPLAY_NAME = "Motor de Notificaciones"

TELEGRAM_SERVICE = "telegram"

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name="notification_rules",
        create_sql="""
            CREATE TABLE IF NOT EXISTS notification_rules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                event TEXT NOT NULL,
                action TEXT NOT NULL,
                recipients TEXT NOT NULL,
                subject TEXT,
                enabled INTEGER DEFAULT 1
            )
        """,
    ),
    TableSpec(
        name="notification_settings",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS notification_settings "
            "(service TEXT PRIMARY KEY, config TEXT NOT NULL)"
        ),
    ),
)


def seed(handle: DatabaseHandle) -> None:
    telegram = seed_section("notifications").get(TELEGRAM_SERVICE, {})
    handle.execute(
        "INSERT OR IGNORE INTO notification_settings (service, config) VALUES (?, ?)",
        (TELEGRAM_SERVICE, json.dumps(telegram)),
    )


def build_schema() -> ModuleSchema:
    return ModuleSchema(
        module_id=MODULE_ID,
        foundational_table="notification_rules",
        tables=TABLES,
        seed=seed,
    )


__all__ = ["DB_FILE", "DISPLAY_NAME", "MODULE_ID", "TABLES", "TELEGRAM_SERVICE", "build_schema", "seed"]
