"""Standard module catalogs: seeding, convergence and the legacy-shape migrations."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.introspection import inspect_schema
from clic_tools.persistence.migrations import MigrationState, ModuleInitializer, ModuleMigrator
from clic_tools.persistence.modules import main, notifications, warehouse
from clic_tools.persistence.modules.seeds import seed_list, seed_section
from clic_tools.security.passwords import PasswordHasher, is_bcrypt_hash

from . import FAST_ROUNDS, column_names, fast_registry, table_names

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from clic_tools.persistence.migrations import ModuleSchema

_HASHER = PasswordHasher(FAST_ROUNDS)


def _schemas() -> list[ModuleSchema]:
    return [descriptor.schema for descriptor in fast_registry() if descriptor.schema is not None]


def _row_counts(handle: DatabaseHandle) -> dict[str, int]:
    return {
        table: int(handle.query_one(f'SELECT count(*) AS n FROM "{table}"')["n"])  # type: ignore[index]
        for table in sorted(table_names(handle))
    }


@pytest.fixture
def main_handle(tmp_path: Path) -> Iterator[DatabaseHandle]:
    handle = DatabaseHandle.open(tmp_path / main.DB_FILE)
    ModuleInitializer(main.build_schema(hasher=_HASHER))(handle)
    yield handle
    handle.close()


@pytest.mark.parametrize("schema", _schemas(), ids=lambda schema: schema.module_id)
def test_initializer_twice_matches_once(schema: ModuleSchema, tmp_path: Path) -> None:
    once = DatabaseHandle.open(tmp_path / "once.db")
    twice = DatabaseHandle.open(tmp_path / "twice.db")
    try:
        ModuleInitializer(schema)(once)
        initializer = ModuleInitializer(schema)
        initializer(twice)
        initializer(twice)

        assert table_names(twice) == {table.name for table in schema.tables}
        assert _row_counts(twice) == _row_counts(once)
        assert inspect_schema(twice) == inspect_schema(once)
    finally:
        once.close()
        twice.close()


@pytest.mark.parametrize("schema", _schemas(), ids=lambda schema: schema.module_id)
def test_fresh_module_file_needs_no_migration(schema: ModuleSchema, tmp_path: Path) -> None:
    handle = DatabaseHandle.open(tmp_path / "current.db")
    try:
        ModuleInitializer(schema)(handle)
        migrator = ModuleMigrator(schema)
        before = (inspect_schema(handle), _row_counts(handle))

        outcomes = [migrator(handle), migrator(handle)]

        assert migrator.plan(handle) == []
        assert [outcome.state for outcome in outcomes] == [MigrationState.OK] * 2
        assert [outcome.applied for outcome in outcomes] == [(), ()]
        assert (inspect_schema(handle), _row_counts(handle)) == before
    finally:
        handle.close()


def test_main_seed_rows(main_handle: DatabaseHandle) -> None:
    roles = main_handle.query_all("SELECT id, permissions FROM roles ORDER BY id")
    company = main_handle.query_one("SELECT * FROM company_settings WHERE id = 1")
    api = main_handle.query_one("SELECT ollamaHost FROM api_settings WHERE id = 1")

    assert {row["id"] for row in roles} == {str(role["id"]) for role in seed_list("roles")}
    admin = next(row for row in roles if row["id"] == main.ADMIN_ROLE)
    assert "admin:access" in json.loads(str(admin["permissions"]))
    assert company is not None
    assert company["name"] == seed_section("company")["name"]
    assert company["quoterShowTaxId"] == 1
    assert api == {"ollamaHost": seed_section("api")["ollamaHost"]}


def test_auxiliary_seed_rows(tmp_path: Path) -> None:
    warehouse_handle = DatabaseHandle.open(tmp_path / warehouse.DB_FILE)
    notifications_handle = DatabaseHandle.open(tmp_path / notifications.DB_FILE)
    try:
        ModuleInitializer(warehouse.build_schema())(warehouse_handle)
        ModuleInitializer(notifications.build_schema())(notifications_handle)

        settings = warehouse_handle.query_one(
            "SELECT value FROM warehouse_config WHERE key = ?", (warehouse.SETTINGS_KEY,)
        )
        telegram = notifications_handle.query_one(
            "SELECT config FROM notification_settings WHERE service = ?",
            (notifications.TELEGRAM_SERVICE,),
        )
    finally:
        warehouse_handle.close()
        notifications_handle.close()

    assert settings is not None
    assert json.loads(str(settings["value"])) == dict(seed_section("warehouse"))
    assert telegram is not None
    assert isinstance(json.loads(str(telegram["config"])), dict)


def test_missing_user_id_column_is_added_without_data_loss(main_handle: DatabaseHandle) -> None:
    main_handle.execute("DROP TABLE quote_drafts")
    main_handle.execute(
        "CREATE TABLE quote_drafts (id TEXT PRIMARY KEY, createdAt TEXT NOT NULL, "
        "customerDetails TEXT, sellerName TEXT)"
    )
    main_handle.execute(
        "INSERT INTO quote_drafts (id, createdAt, customerDetails, sellerName) "
        "VALUES ('Q-1', '2026-01-01T00:00:00Z', '{\"name\": \"ACME\"}', 'Ana')"
    )

    outcome = ModuleMigrator(main.build_schema(hasher=_HASHER))(main_handle)

    assert outcome.state is MigrationState.OK
    assert "add column quote_drafts.userId" in outcome.applied
    assert "userId" in column_names(main_handle, "quote_drafts")
    assert main_handle.query_one(
        "SELECT id, createdAt, customerDetails, sellerName, userId FROM quote_drafts"
    ) == {
        "id": "Q-1",
        "createdAt": "2026-01-01T00:00:00Z",
        "customerDetails": '{"name": "ACME"}',
        "sellerName": "Ana",
        "userId": None,
    }


def test_legacy_purchase_order_lines_gain_composite_key(main_handle: DatabaseHandle) -> None:
    main_handle.execute("DROP TABLE erp_purchase_order_lines")
    main_handle.execute(
        "CREATE TABLE erp_purchase_order_lines (ARTICULO TEXT PRIMARY KEY, CANTIDAD_ORDENADA REAL)"
    )
    main_handle.execute(
        "INSERT INTO erp_purchase_order_lines (ARTICULO, CANTIDAD_ORDENADA) VALUES ('A-1', 5)"
    )

    outcome = ModuleMigrator(main.build_schema(hasher=_HASHER))(main_handle)

    assert outcome.state is MigrationState.OK
    assert any(item.startswith("recreate table erp_purchase_order_lines") for item in outcome.applied)
    table = inspect_schema(main_handle).table("erp_purchase_order_lines")
    assert table is not None
    assert table.column_names == ("ORDEN_COMPRA", "ARTICULO", "CANTIDAD_ORDENADA")
    assert sorted(column.primary_key for column in table.columns) == [0, 1, 2]
    assert main_handle.query_all("SELECT * FROM erp_purchase_order_lines") == [
        {"ORDEN_COMPRA": None, "ARTICULO": "A-1", "CANTIDAD_ORDENADA": 5.0}
    ]


def test_obsolete_import_path_column_is_dropped(main_handle: DatabaseHandle) -> None:
    main_handle.execute("ALTER TABLE company_settings ADD COLUMN importPath TEXT")

    outcome = ModuleMigrator(main.build_schema(hasher=_HASHER))(main_handle)

    assert "drop column company_settings.importPath" in outcome.applied
    assert "importPath" not in column_names(main_handle, "company_settings")
    assert main_handle.query_one("SELECT name FROM company_settings WHERE id = 1") == {
        "name": seed_section("company")["name"]
    }


def test_user_one_is_forced_to_admin_and_plaintext_passwords_are_hashed(
    main_handle: DatabaseHandle,
) -> None:
    existing_hash = _HASHER.hash("already-hashed")
    main_handle.executemany(
        "INSERT INTO users (id, name, email, password, role) VALUES (?, ?, ?, ?, ?)",
        [
            (1, "Owner", "owner@example.com", existing_hash, "viewer"),
            (2, "Clerk", "clerk@example.com", "plain-secret", "viewer"),
        ],
    )
    migrator = ModuleMigrator(main.build_schema(hasher=_HASHER))

    first = migrator(main_handle)
    second = migrator(main_handle)

    assert first.applied == (
        "ensure user 1 is admin (1 row(s))",
        "hash plaintext passwords (1 row(s))",
    )
    assert second.applied == ()
    users = {
        row["id"]: row for row in main_handle.query_all("SELECT id, password, role FROM users")
    }
    assert users[1]["role"] == main.ADMIN_ROLE
    assert users[1]["password"] == existing_hash
    assert users[2]["role"] == "viewer"
    stored = str(users[2]["password"])
    assert is_bcrypt_hash(stored)
    assert _HASHER.verify("plain-secret", stored)


def test_location_children_are_rebuilt_with_cascading_keys(tmp_path: Path) -> None:
    handle = DatabaseHandle.open(tmp_path / warehouse.DB_FILE)
    try:
        schema = warehouse.build_schema()
        ModuleInitializer(schema)(handle)
        handle.execute("DROP TABLE inventory")
        handle.execute(
            "CREATE TABLE inventory (id INTEGER PRIMARY KEY AUTOINCREMENT, itemId TEXT NOT NULL, "
            "locationId INTEGER NOT NULL, quantity REAL NOT NULL DEFAULT 0, "
            "lastUpdated TEXT NOT NULL, updatedBy TEXT, "
            "FOREIGN KEY (locationId) REFERENCES locations(id), UNIQUE (itemId, locationId))"
        )
        handle.execute(
            "INSERT INTO locations (id, name, code, type) VALUES (1, 'Rack 1', 'R1', 'rack')"
        )
        handle.execute(
            "INSERT INTO inventory (itemId, locationId, quantity, lastUpdated) "
            "VALUES ('P-1', 1, 3, '2026-01-01')"
        )

        outcome = ModuleMigrator(schema)(handle)

        assert outcome.applied == (
            "recreate table inventory (locationId must cascade from locations)",
        )
        inventory = inspect_schema(handle).table("inventory")
        assert inventory is not None
        foreign_key = inventory.foreign_key_for("locationId")
        assert foreign_key is not None
        assert foreign_key.on_delete == "CASCADE"
        assert handle.query_all("SELECT itemId, quantity FROM inventory") == [
            {"itemId": "P-1", "quantity": 3.0}
        ]

        handle.execute("DELETE FROM locations WHERE id = 1")
        assert handle.query_all("SELECT * FROM inventory") == []
        assert ModuleMigrator(schema).plan(handle) == []
    finally:
        handle.close()
