"""Main ``intratool.db`` schema: users, roles, settings, ERP mirror tables."""

from __future__ import annotations

import json

from clic_tools.constants import MAIN_DB_FILE, MAIN_MODULE_ID
from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.introspection import SchemaSnapshot
from clic_tools.persistence.migrations import (
    ColumnSpec,
    DataFix,
    ModuleSchema,
    RecreateTable,
    SchemaChange,
    TableSpec,
    plan_drop_column,
)
from clic_tools.persistence.modules.seeds import seed_list, seed_section
from clic_tools.security.passwords import PasswordHasher, is_bcrypt_hash

MODULE_ID = MAIN_MODULE_ID
DB_FILE = MAIN_DB_FILE
DISPLAY_NAME = "Clic-Tools (Sistema Principal)"

ADMIN_USER_ID = 1
ADMIN_ROLE = "admin"

PURCHASE_ORDER_LINES_SQL = (
    "CREATE TABLE IF NOT EXISTS erp_purchase_order_lines ("
    "ORDEN_COMPRA TEXT, ARTICULO TEXT, CANTIDAD_ORDENADA REAL, "
    "PRIMARY KEY (ORDEN_COMPRA, ARTICULO))"
)

TABLES: tuple[TableSpec, ...] = (
    TableSpec(
        name="users",
        create_sql="""
            CREATE TABLE IF NOT EXISTS users (
                id INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                password TEXT NOT NULL,
                phone TEXT,
                whatsapp TEXT,
                erpAlias TEXT,
                avatar TEXT,
                role TEXT,
                recentActivity TEXT,
                securityQuestion TEXT,
                securityAnswer TEXT,
                forcePasswordChange BOOLEAN DEFAULT FALSE,
                activeWizardSession TEXT
            )
        """,
        evolved_columns=(
            ColumnSpec("erpAlias", "TEXT"),
            ColumnSpec("forcePasswordChange", "BOOLEAN DEFAULT FALSE"),
            ColumnSpec("activeWizardSession", "TEXT"),
        ),
    ),
    TableSpec(
        name="roles",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS roles ("
            "id TEXT PRIMARY KEY, name TEXT NOT NULL, permissions TEXT NOT NULL)"
        ),
    ),
    TableSpec(
        name="company_settings",
        create_sql="""
            CREATE TABLE IF NOT EXISTS company_settings (
                id INTEGER PRIMARY KEY,
                name TEXT, taxId TEXT, address TEXT, phone TEXT, email TEXT, logoUrl TEXT,
                systemName TEXT, publicUrl TEXT, quotePrefix TEXT, nextQuoteNumber INTEGER,
                decimalPlaces INTEGER DEFAULT 2, quoterShowTaxId BOOLEAN DEFAULT TRUE,
                searchDebounceTime INTEGER DEFAULT 500, syncWarningHours REAL DEFAULT 12,
                lastSyncTimestamp TEXT, importMode TEXT DEFAULT 'file',
                customerFilePath TEXT, productFilePath TEXT, exemptionFilePath TEXT,
                stockFilePath TEXT, locationFilePath TEXT, cabysFilePath TEXT,
                supplierFilePath TEXT, erpPurchaseOrderHeaderFilePath TEXT,
                erpPurchaseOrderLineFilePath TEXT, erpInvoiceHeaderFilePath TEXT,
                erpInvoiceLineFilePath TEXT
            )
        """,
        evolved_columns=(
            ColumnSpec("decimalPlaces", "INTEGER DEFAULT 2"),
            ColumnSpec("quoterShowTaxId", "BOOLEAN DEFAULT TRUE"),
            ColumnSpec("syncWarningHours", "REAL DEFAULT 12"),
            ColumnSpec("publicUrl", "TEXT"),
            ColumnSpec("customerFilePath", "TEXT"),
            ColumnSpec("productFilePath", "TEXT"),
            ColumnSpec("exemptionFilePath", "TEXT"),
            ColumnSpec("stockFilePath", "TEXT"),
            ColumnSpec("locationFilePath", "TEXT"),
            ColumnSpec("cabysFilePath", "TEXT"),
            ColumnSpec("supplierFilePath", "TEXT"),
            ColumnSpec("erpPurchaseOrderHeaderFilePath", "TEXT"),
            ColumnSpec("erpPurchaseOrderLineFilePath", "TEXT"),
            ColumnSpec("erpInvoiceHeaderFilePath", "TEXT"),
            ColumnSpec("erpInvoiceLineFilePath", "TEXT"),
            ColumnSpec("importMode", "TEXT DEFAULT 'file'"),
            ColumnSpec("logoUrl", "TEXT"),
            ColumnSpec("searchDebounceTime", "INTEGER DEFAULT 500"),
            ColumnSpec("lastSyncTimestamp", "TEXT"),
        ),
    ),
    TableSpec(
        name="logs",
        create_sql="""
            CREATE TABLE IF NOT EXISTS logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                type TEXT NOT NULL,
                message TEXT NOT NULL,
                details TEXT
            )
        """,
        indexes=("CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON logs(timestamp)",),
    ),
    TableSpec(
        name="api_settings",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS api_settings (id INTEGER PRIMARY KEY, "
            "exchangeRateApi TEXT, haciendaExemptionApi TEXT, haciendaTributariaApi TEXT, "
            "ollamaHost TEXT, defaultModel TEXT)"
        ),
        evolved_columns=(
            ColumnSpec("haciendaExemptionApi", "TEXT"),
            ColumnSpec("haciendaTributariaApi", "TEXT"),
            ColumnSpec("ollamaHost", "TEXT"),
            ColumnSpec("defaultModel", "TEXT"),
        ),
    ),
    TableSpec(
        name="customers",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS customers (id TEXT PRIMARY KEY, name TEXT, address TEXT, "
            "phone TEXT, taxId TEXT, currency TEXT, creditLimit REAL, paymentCondition TEXT, "
            "salesperson TEXT, active TEXT, email TEXT, electronicDocEmail TEXT)"
        ),
    ),
    TableSpec(
        name="products",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS products (id TEXT PRIMARY KEY, description TEXT, "
            "classification TEXT, lastEntry TEXT, active TEXT, notes TEXT, unit TEXT, "
            "isBasicGood TEXT, cabys TEXT, barcode TEXT)"
        ),
        evolved_columns=(ColumnSpec("barcode", "TEXT"),),
    ),
    TableSpec(
        name="exemptions",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS exemptions (code TEXT PRIMARY KEY, description TEXT, "
            "customer TEXT, authNumber TEXT, startDate TEXT, endDate TEXT, percentage REAL, "
            "docType TEXT, institutionName TEXT, institutionCode TEXT)"
        ),
    ),
    TableSpec(
        name="quote_drafts",
        create_sql="""
            CREATE TABLE IF NOT EXISTS quote_drafts (
                id TEXT PRIMARY KEY, createdAt TEXT NOT NULL, userId INTEGER, customerId TEXT,
                customerDetails TEXT, lines TEXT, totals TEXT, notes TEXT, currency TEXT,
                exchangeRate REAL, purchaseOrderNumber TEXT, deliveryAddress TEXT,
                deliveryDate TEXT, sellerName TEXT, sellerType TEXT, quoteDate TEXT,
                validUntilDate TEXT, paymentTerms TEXT, creditDays INTEGER
            )
        """,
        evolved_columns=(
            ColumnSpec("userId", "INTEGER"),
            ColumnSpec("customerId", "TEXT"),
            ColumnSpec("lines", "TEXT"),
            ColumnSpec("totals", "TEXT"),
            ColumnSpec("notes", "TEXT"),
            ColumnSpec("currency", "TEXT"),
            ColumnSpec("exchangeRate", "REAL"),
            ColumnSpec("purchaseOrderNumber", "TEXT"),
        ),
    ),
    TableSpec(
        name="exemption_laws",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS exemption_laws "
            "(docType TEXT PRIMARY KEY, institutionName TEXT, authNumber TEXT)"
        ),
    ),
    TableSpec(
        name="cabys_catalog",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS cabys_catalog "
            "(code TEXT PRIMARY KEY, description TEXT, taxRate REAL)"
        ),
    ),
    TableSpec(
        name="stock",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS stock "
            "(itemId TEXT PRIMARY KEY, stockByWarehouse TEXT, totalStock REAL)"
        ),
    ),
    TableSpec(
        name="sql_config",
        create_sql="CREATE TABLE IF NOT EXISTS sql_config (key TEXT PRIMARY KEY, value TEXT)",
    ),
    TableSpec(
        name="import_queries",
        create_sql="CREATE TABLE IF NOT EXISTS import_queries (type TEXT PRIMARY KEY, query TEXT)",
    ),
    TableSpec(
        name="suggestions",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS suggestions (id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "content TEXT, userId INTEGER, userName TEXT, isRead INTEGER DEFAULT 0, timestamp TEXT)"
        ),
    ),
    TableSpec(
        name="user_preferences",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS user_preferences (userId INTEGER NOT NULL, "
            "key TEXT NOT NULL, value TEXT NOT NULL, PRIMARY KEY (userId, key))"
        ),
    ),
    TableSpec(
        name="notifications",
        create_sql="""
            CREATE TABLE IF NOT EXISTS notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                userId INTEGER NOT NULL,
                message TEXT NOT NULL,
                href TEXT,
                isRead INTEGER DEFAULT 0,
                timestamp TEXT NOT NULL,
                entityId INTEGER,
                entityType TEXT,
                taskType TEXT,
                entityStatus TEXT,
                FOREIGN KEY (userId) REFERENCES users(id) ON DELETE CASCADE
            )
        """,
        evolved_columns=(
            ColumnSpec("entityId", "INTEGER"),
            ColumnSpec("entityType", "TEXT"),
            ColumnSpec("taskType", "TEXT"),
            ColumnSpec("entityStatus", "TEXT"),
        ),
    ),
    TableSpec(
        name="email_settings",
        create_sql="CREATE TABLE IF NOT EXISTS email_settings (key TEXT PRIMARY KEY, value TEXT)",
    ),
    TableSpec(
        name="suppliers",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS suppliers "
            "(id TEXT PRIMARY KEY, name TEXT, alias TEXT, email TEXT, phone TEXT)"
        ),
    ),
    TableSpec(
        name="erp_order_headers",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS erp_order_headers (PEDIDO TEXT PRIMARY KEY, ESTADO TEXT, "
            "CLIENTE TEXT, FECHA_PEDIDO TEXT, FECHA_PROMETIDA TEXT, ORDEN_COMPRA TEXT, "
            "TOTAL_UNIDADES REAL, MONEDA_PEDIDO TEXT, USUARIO TEXT)"
        ),
        evolved_columns=(
            ColumnSpec("MONEDA_PEDIDO", "TEXT"),
            ColumnSpec("TOTAL_UNIDADES", "REAL"),
            ColumnSpec("USUARIO", "TEXT"),
        ),
    ),
    TableSpec(
        name="erp_order_lines",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS erp_order_lines (PEDIDO TEXT, PEDIDO_LINEA INTEGER, "
            "ARTICULO TEXT, CANTIDAD_PEDIDA REAL, PRECIO_UNITARIO REAL, "
            "PRIMARY KEY (PEDIDO, PEDIDO_LINEA))"
        ),
    ),
    TableSpec(
        name="erp_purchase_order_headers",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS erp_purchase_order_headers (ORDEN_COMPRA TEXT PRIMARY KEY, "
            "PROVEEDOR TEXT, FECHA_HORA TEXT, ESTADO TEXT, CreatedBy TEXT)"
        ),
        evolved_columns=(ColumnSpec("CreatedBy", "TEXT"),),
    ),
    TableSpec(name="erp_purchase_order_lines", create_sql=PURCHASE_ORDER_LINES_SQL),
    TableSpec(
        name="erp_invoice_headers",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS erp_invoice_headers (CLIENTE TEXT, NOMBRE_CLIENTE TEXT, "
            "TIPO_DOCUMENTO TEXT, FACTURA TEXT PRIMARY KEY, PEDIDO TEXT, FACTURA_ORIGINAL TEXT, "
            "FECHA TEXT, FECHA_ENTREGA TEXT, ANULADA TEXT, EMBARCAR_A TEXT, DIRECCION_FACTURA TEXT, "
            "OBSERVACIONES TEXT, RUTA TEXT, USUARIO TEXT, USUARIO_ANULA TEXT, ZONA TEXT, "
            "VENDEDOR TEXT, REIMPRESO INTEGER)"
        ),
    ),
    TableSpec(
        name="erp_invoice_lines",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS erp_invoice_lines (FACTURA TEXT, TIPO_DOCUMENTO TEXT, "
            "LINEA INTEGER, BODEGA TEXT, PEDIDO TEXT, ARTICULO TEXT, ANULADA TEXT, "
            "FECHA_FACTURA TEXT, CANTIDAD REAL, PRECIO_UNITARIO REAL, TOTAL_IMPUESTO1 REAL, "
            "PRECIO_TOTAL REAL, DESCRIPCION TEXT, DOCUMENTO_ORIGEN TEXT, CANT_DESPACHADA REAL, "
            "ES_CANASTA_BASICA TEXT, PRIMARY KEY (FACTURA, TIPO_DOCUMENTO, LINEA))"
        ),
    ),
    TableSpec(
        name="stock_settings",
        create_sql="CREATE TABLE IF NOT EXISTS stock_settings (key TEXT PRIMARY KEY, value TEXT)",
    ),
    TableSpec(
        name="vendedores",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS vendedores "
            "(VENDEDOR TEXT PRIMARY KEY, NOMBRE TEXT, EMPLEADO TEXT)"
        ),
    ),
    TableSpec(
        name="direcciones_embarque",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS direcciones_embarque (CLIENTE TEXT, DIRECCION TEXT, "
            "DETALLE_DIRECCION TEXT, DESCRIPCION TEXT, PRIMARY KEY (CLIENTE, DIRECCION))"
        ),
    ),
    TableSpec(
        name="nominas",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS nominas "
            "(NOMINA TEXT PRIMARY KEY, DESCRIPCION TEXT, TIPO_NOMINA TEXT)"
        ),
    ),
    TableSpec(
        name="puestos",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS puestos "
            "(PUESTO TEXT PRIMARY KEY, DESCRIPCION TEXT, ACTIVO TEXT)"
        ),
    ),
    TableSpec(
        name="departamentos",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS departamentos "
            "(DEPARTAMENTO TEXT PRIMARY KEY, DESCRIPCION TEXT, ACTIVO TEXT)"
        ),
    ),
    TableSpec(
        name="empleados",
        create_sql=(
            "CREATE TABLE IF NOT EXISTS empleados (EMPLEADO TEXT PRIMARY KEY, NOMBRE TEXT, "
            "ACTIVO TEXT, DEPARTAMENTO TEXT, PUESTO TEXT, NOMINA TEXT)"
        ),
    ),
    TableSpec(
        name="vehiculos",
        create_sql="CREATE TABLE IF NOT EXISTS vehiculos (placa TEXT PRIMARY KEY, marca TEXT)",
    ),
)

_COMPANY_COLUMNS: tuple[str, ...] = (
    "name",
    "taxId",
    "address",
    "phone",
    "email",
    "systemName",
    "quotePrefix",
    "nextQuoteNumber",
    "decimalPlaces",
    "quoterShowTaxId",
    "searchDebounceTime",
    "syncWarningHours",
    "importMode",
)

_API_COLUMNS: tuple[str, ...] = (
    "exchangeRateApi",
    "haciendaExemptionApi",
    "haciendaTributariaApi",
    "ollamaHost",
    "defaultModel",
)


def seed(handle: DatabaseHandle) -> None:
    handle.executemany(
        "INSERT OR IGNORE INTO roles (id, name, permissions) VALUES (?, ?, ?)",
        [
            (str(role["id"]), str(role["name"]), json.dumps(role["permissions"]))
            for role in seed_list("roles")
        ],
    )

    company = seed_section("company")
    company_values = [_sql_value(company.get(column)) for column in _COMPANY_COLUMNS]
    placeholders = ", ".join("?" for _ in _COMPANY_COLUMNS)
    handle.execute(
        f"INSERT OR IGNORE INTO company_settings (id, {', '.join(_COMPANY_COLUMNS)}) "
        f"VALUES (1, {placeholders})",
        company_values,
    )

    api = seed_section("api")
    handle.execute(
        f"INSERT OR IGNORE INTO api_settings (id, {', '.join(_API_COLUMNS)}) "
        f"VALUES (1, {', '.join('?' for _ in _API_COLUMNS)})",
        [_sql_value(api.get(column)) for column in _API_COLUMNS],
    )


def _sql_value(value: object) -> str | int | float | None:
    if value is None or isinstance(value, (str, int, float)):
        # bool is an int subclass and lands as 0/1.
        return int(value) if isinstance(value, bool) else value
    return json.dumps(value)


def plan_purchase_order_lines(snapshot: SchemaSnapshot) -> list[SchemaChange]:
    """Legacy ``erp_purchase_order_lines`` lacked ``ORDEN_COMPRA`` in its key."""

    table = "erp_purchase_order_lines"
    if snapshot.has_table(table) and not snapshot.has_column(table, "ORDEN_COMPRA"):
        return [
            RecreateTable(
                table=table,
                create_sql=PURCHASE_ORDER_LINES_SQL,
                reason="composite primary key on ORDEN_COMPRA, ARTICULO",
            )
        ]
    return []


def ensure_admin_role(handle: DatabaseHandle) -> int:
    row = handle.query_one("SELECT role FROM users WHERE id = ?", (ADMIN_USER_ID,))
    if row is None or row["role"] == ADMIN_ROLE:
        return 0
    return handle.execute("UPDATE users SET role = ? WHERE id = ?", (ADMIN_ROLE, ADMIN_USER_ID))


def hash_plaintext_passwords(hasher: PasswordHasher) -> DataFix:
    def apply(handle: DatabaseHandle) -> int:
        rows = handle.query_all("SELECT id, password FROM users")
        updates = [
            (hasher.hash(str(row["password"])), row["id"])
            for row in rows
            if row["password"] and not is_bcrypt_hash(str(row["password"]))
        ]
        if not updates:
            return 0
        handle.executemany("UPDATE users SET password = ? WHERE id = ?", updates)
        return len(updates)

    return DataFix(name="hash plaintext passwords", apply=apply)


def build_schema(*, hasher: PasswordHasher | None = None) -> ModuleSchema:
    resolved = hasher if hasher is not None else PasswordHasher()
    return ModuleSchema(
        module_id=MODULE_ID,
        foundational_table="users",
        tables=TABLES,
        seed=seed,
        planners=(
            plan_drop_column("company_settings", "importPath"),
            plan_purchase_order_lines,
        ),
        data_fixes=(
            DataFix(name="ensure user 1 is admin", apply=ensure_admin_role),
            hash_plaintext_passwords(resolved),
        ),
    )


__all__ = [
    "ADMIN_ROLE",
    "ADMIN_USER_ID",
    "DB_FILE",
    "DISPLAY_NAME",
    "MODULE_ID",
    "TABLES",
    "build_schema",
    "ensure_admin_role",
    "hash_plaintext_passwords",
    "plan_purchase_order_lines",
    "seed",
]
