"""``planner.db`` schema: production orders, their history, and planner settings."""

from __future__ import annotations

from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.migrations import ColumnSpec, ModuleSchema, TableSpec
from clic_tools.persistence.modules.seeds import insert_settings_row

MODULE_ID = "production-planner"
DB_FILE = "planner.db"
DISPLAY_NAME = "Planificador de Producción"

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name="production_orders",
        create_sql="""
            CREATE TABLE IF NOT EXISTS production_orders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                consecutive TEXT UNIQUE NOT NULL,
                requestDate TEXT NOT NULL,
                deliveryDate TEXT NOT NULL,
                scheduledStartDate TEXT,
                scheduledEndDate TEXT,
                customerId TEXT NOT NULL,
                customerName TEXT NOT NULL,
                productId TEXT NOT NULL,
                productDescription TEXT NOT NULL,
                quantity REAL NOT NULL,
                inventory REAL,
                priority TEXT NOT NULL,
                status TEXT NOT NULL,
                pendingAction TEXT DEFAULT 'none',
                notes TEXT,
                requestedBy TEXT NOT NULL,
                approvedBy TEXT,
                lastStatusUpdateBy TEXT,
                lastStatusUpdateNotes TEXT,
                lastModifiedBy TEXT,
                lastModifiedAt TEXT,
                hasBeenModified INTEGER DEFAULT 0,
                deliveredQuantity REAL,
                erpPackageNumber TEXT,
                erpTicketNumber TEXT,
                machineId TEXT,
                shiftId TEXT,
                purchaseOrder TEXT
            )
        """,
        evolved_columns=(
            ColumnSpec("pendingAction", "TEXT DEFAULT 'none'"),
            ColumnSpec("hasBeenModified", "INTEGER DEFAULT 0"),
            ColumnSpec("lastModifiedBy", "TEXT"),
            ColumnSpec("lastModifiedAt", "TEXT"),
            ColumnSpec("shiftId", "TEXT"),
            ColumnSpec("purchaseOrder", "TEXT"),
        ),
        indexes=(
            "CREATE INDEX IF NOT EXISTS idx_production_orders_status ON production_orders(status)",
        ),
    ),
    TableSpec(
        name="production_order_history",
        create_sql="""
            CREATE TABLE IF NOT EXISTS production_order_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                orderId INTEGER NOT NULL,
                timestamp TEXT NOT NULL,
                status TEXT NOT NULL,
                notes TEXT,
                updatedBy TEXT NOT NULL,
                FOREIGN KEY (orderId) REFERENCES production_orders(id) ON DELETE CASCADE
            )
        """,
    ),
    TableSpec(
        name="planner_settings",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS planner_settings (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        ),
    ),
)


def seed(handle: DatabaseHandle) -> None:
    insert_settings_row(handle, "planner_settings", "planner")


def build_schema() -> ModuleSchema:
    return ModuleSchema(
        module_id=MODULE_ID,
        foundational_table="production_orders",
        tables=TABLES,
        seed=seed,
    )


__all__ = ["DB_FILE", "DISPLAY_NAME", "MODULE_ID", "TABLES", "build_schema", "seed"]
