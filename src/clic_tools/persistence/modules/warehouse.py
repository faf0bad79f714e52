"""``warehouse.db`` schema: locations tree, inventory, units, movements, dispatch."""

from __future__ import annotations

from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.introspection import SchemaSnapshot
from clic_tools.persistence.migrations import (
    ColumnSpec,
    ModuleSchema,
    RecreateTable,
    SchemaChange,
    TableSpec,
)
from clic_tools.persistence.modules.seeds import insert_settings_row

MODULE_ID = "warehouse-management"
DB_FILE = "warehouse.db"
DISPLAY_NAME = "Almacén"

SETTINGS_KEY = "settings"
LOCATIONS_TABLE = "locations"

_LOCKING_COLUMNS = (
    ColumnSpec("lockedByUserId", "INTEGER"),
    ColumnSpec("lockedAt", "TEXT"),
)

INVENTORY_SQL = """
    CREATE TABLE IF NOT EXISTS inventory (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        itemId TEXT NOT NULL,
        locationId INTEGER NOT NULL,
        quantity REAL NOT NULL DEFAULT 0,
        lastUpdated TEXT NOT NULL,
        updatedBy TEXT,
        FOREIGN KEY (locationId) REFERENCES locations(id) ON DELETE CASCADE,
        UNIQUE (itemId, locationId)
    )
"""

ITEM_LOCATIONS_SQL = """
    CREATE TABLE IF NOT EXISTS item_locations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        itemId TEXT NOT NULL,
        locationId INTEGER NOT NULL,
        clientId TEXT,
        updatedBy TEXT,
        updatedAt TEXT,
        FOREIGN KEY (locationId) REFERENCES locations(id) ON DELETE CASCADE,
        UNIQUE (itemId, locationId, clientId)
    )
"""

INVENTORY_UNITS_SQL = """
    CREATE TABLE IF NOT EXISTS inventory_units (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        unitCode TEXT UNIQUE,
        productId TEXT NOT NULL,
        humanReadableId TEXT,
        documentId TEXT,
        locationId INTEGER,
        quantity REAL DEFAULT 1,
        notes TEXT,
        createdAt TEXT NOT NULL,
        createdBy TEXT NOT NULL,
        FOREIGN KEY (locationId) REFERENCES locations(id) ON DELETE CASCADE
    )
"""

MOVEMENTS_SQL = """
    CREATE TABLE IF NOT EXISTS movements (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        itemId TEXT NOT NULL,
        quantity REAL NOT NULL,
        fromLocationId INTEGER,
        toLocationId INTEGER,
        timestamp TEXT NOT NULL,
        userId INTEGER NOT NULL,
        notes TEXT,
        FOREIGN KEY (fromLocationId) REFERENCES locations(id) ON DELETE CASCADE,
        FOREIGN KEY (toLocationId) REFERENCES locations(id) ON DELETE CASCADE
    )
"""

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name=LOCATIONS_TABLE,
        create_sql="""
            CREATE TABLE IF NOT EXISTS locations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                code TEXT UNIQUE NOT NULL,
                type TEXT NOT NULL,
                parentId INTEGER,
                isLocked INTEGER DEFAULT 0,
                lockedBy TEXT,
                lockedByUserId INTEGER,
                lockedAt TEXT,
                FOREIGN KEY (parentId) REFERENCES locations(id) ON DELETE CASCADE
            )
        """,
        evolved_columns=_LOCKING_COLUMNS,
    ),
    TableSpec(name="inventory", create_sql=INVENTORY_SQL),
    TableSpec(name="item_locations", create_sql=ITEM_LOCATIONS_SQL),
    TableSpec(name="inventory_units", create_sql=INVENTORY_UNITS_SQL),
    TableSpec(name="movements", create_sql=MOVEMENTS_SQL),
    TableSpec(
        name="warehouse_config",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS warehouse_config (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        ),
    ),
    TableSpec(
        name="dispatch_logs",
        create_sql="""
            CREATE TABLE IF NOT EXISTS dispatch_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                documentId TEXT NOT NULL,
                documentType TEXT NOT NULL,
                verifiedAt TEXT NOT NULL,
                verifiedByUserId INTEGER NOT NULL,
                verifiedByUserName TEXT NOT NULL,
                items TEXT NOT NULL,
                notes TEXT
            )
        """,
    ),
    TableSpec(
        name="dispatch_containers",
        create_sql="""
            CREATE TABLE IF NOT EXISTS dispatch_containers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                createdBy TEXT,
                createdAt TEXT,
                isLocked INTEGER DEFAULT 0,
                lockedBy TEXT,
                lockedByUserId INTEGER,
                lockedAt TEXT
            )
        """,
        evolved_columns=_LOCKING_COLUMNS,
    ),
    TableSpec(
        name="dispatch_assignments",
        create_sql="""
            CREATE TABLE IF NOT EXISTS dispatch_assignments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                containerId INTEGER NOT NULL,
                documentId TEXT NOT NULL UNIQUE,
                documentType TEXT NOT NULL,
                documentDate TEXT NOT NULL,
                clientId TEXT NOT NULL,
                clientName TEXT NOT NULL,
                assignedBy TEXT NOT NULL,
                assignedAt TEXT NOT NULL,
                sortOrder INTEGER DEFAULT 0,
                status TEXT DEFAULT 'pending',
                FOREIGN KEY (containerId) REFERENCES dispatch_containers(id) ON DELETE CASCADE
            )
        """,
    ),
)

# (table, referencing column, definition) for children whose rows must go with their location.
CASCADE_CHILDREN: tuple[tuple[str, str, str], ...] = (
    ("inventory", "locationId", INVENTORY_SQL),
    ("item_locations", "locationId", ITEM_LOCATIONS_SQL),
    ("inventory_units", "locationId", INVENTORY_UNITS_SQL),
    ("movements", "fromLocationId", MOVEMENTS_SQL),
    ("movements", "toLocationId", MOVEMENTS_SQL),
)


def plan_location_cascades(snapshot: SchemaSnapshot) -> list[SchemaChange]:
    """Recreate child tables whose location FK does not cascade on delete."""

    changes: list[SchemaChange] = []
    planned: set[str] = set()
    for table, column, create_sql in CASCADE_CHILDREN:
        if table in planned:
            continue
        found = snapshot.table(table)
        if found is None:
            continue
        foreign_key = found.foreign_key_for(column)
        if foreign_key is None:
            continue
        if foreign_key.on_delete.upper() != "CASCADE" or foreign_key.table != LOCATIONS_TABLE:
            planned.add(table)
            changes.append(
                RecreateTable(
                    table=table,
                    create_sql=create_sql,
                    reason=f"{column} must cascade from {LOCATIONS_TABLE}",
                )
            )
    return changes


def seed(handle: DatabaseHandle) -> None:
    insert_settings_row(handle, "warehouse_config", "warehouse", key=SETTINGS_KEY)


def build_schema() -> ModuleSchema:
    return ModuleSchema(
        module_id=MODULE_ID,
        foundational_table=LOCATIONS_TABLE,
        tables=TABLES,
        seed=seed,
        planners=(plan_location_cascades,),
    )


__all__ = [
    "CASCADE_CHILDREN",
    "DB_FILE",
    "DISPLAY_NAME",
    "MODULE_ID",
    "SETTINGS_KEY",
    "TABLES",
    "build_schema",
    "plan_location_cascades",
    "seed",
]
