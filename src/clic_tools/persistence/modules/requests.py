"""``requests.db`` schema: purchase requests, their history, and request settings."""

from __future__ import annotations

from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.migrations import ColumnSpec, ModuleSchema, TableSpec
from clic_tools.persistence.modules.seeds import insert_settings_row

MODULE_ID = "purchase-requests"
DB_FILE = "requests.db"
DISPLAY_NAME = "Solicitud de Compra"

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name="purchase_requests",
        create_sql="""
            CREATE TABLE IF NOT EXISTS purchase_requests (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                consecutive TEXT UNIQUE NOT NULL,
                requestDate TEXT NOT NULL,
                requiredDate TEXT NOT NULL,
                clientId TEXT,
                clientName TEXT,
                itemId TEXT NOT NULL,
                itemDescription TEXT NOT NULL,
                quantity REAL NOT NULL,
                unitSalePrice REAL,
                erpOrderNumber TEXT,
                purchaseOrder TEXT,
                route TEXT,
                shippingMethod TEXT,
                inventory REAL,
                priority TEXT DEFAULT 'medium',
                purchaseType TEXT DEFAULT 'single',
                status TEXT NOT NULL,
                pendingAction TEXT DEFAULT 'none',
                notes TEXT,
                requestedBy TEXT NOT NULL,
                approvedBy TEXT,
                receivedInWarehouseBy TEXT,
                receivedDate TEXT,
                lastStatusUpdateBy TEXT,
                lastStatusUpdateNotes TEXT,
                lastModifiedBy TEXT,
                lastModifiedAt TEXT,
                hasBeenModified INTEGER DEFAULT 0,
                deliveredQuantity REAL
            )
        """,
        evolved_columns=(
            ColumnSpec("purchaseType", "TEXT DEFAULT 'single'"),
            ColumnSpec("pendingAction", "TEXT DEFAULT 'none'"),
            ColumnSpec("hasBeenModified", "INTEGER DEFAULT 0"),
            ColumnSpec("lastModifiedBy", "TEXT"),
            ColumnSpec("lastModifiedAt", "TEXT"),
            ColumnSpec("deliveredQuantity", "REAL"),
        ),
        indexes=(
            "CREATE INDEX IF NOT EXISTS idx_purchase_requests_status ON purchase_requests(status)",
        ),
    ),
    TableSpec(
        name="purchase_request_history",
        create_sql="""
            CREATE TABLE IF NOT EXISTS purchase_request_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                requestId INTEGER NOT NULL,
                timestamp TEXT NOT NULL,
                status TEXT NOT NULL,
                notes TEXT,
                updatedBy TEXT NOT NULL,
                FOREIGN KEY (requestId) REFERENCES purchase_requests(id) ON DELETE CASCADE
            )
        """,
    ),
    TableSpec(
        name="request_settings",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS request_settings (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        ),
    ),
)


def seed(handle: DatabaseHandle) -> None:
    insert_settings_row(handle, "request_settings", "requests")


def build_schema() -> ModuleSchema:
    return ModuleSchema(
        module_id=MODULE_ID,
        foundational_table="purchase_requests",
        tables=TABLES,
        seed=seed,
    )


__all__ = ["DB_FILE", "DISPLAY_NAME", "MODULE_ID", "TABLES", "build_schema", "seed"]
