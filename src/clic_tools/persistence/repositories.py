"""
clic-tools — module data-access repositories

File: src/clic_tools/persistence/repositories.py
Last updated: 2026-10-19

Purpose
- Thin typed read/write helpers over the module storage files.

What should be included in this file
- Singleton settings rows (company, API) and key/value JSON settings
  (warehouse, notification services, user preferences).
- The per-user wizard session column on ``users``.
- Roles, system log, quote drafts and notification rules.

Functional requirements
- Every call resolves its handle through the ``ConnectionManager`` so a
  forced recreation or restore is picked up transparently.
- Column names written by callers are checked against the live table.

Non-functional requirements
- Multi-row writes are atomic.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, ClassVar, Final

from clic_tools.persistence.handle import DatabaseHandle, Row, SQLValue
from clic_tools.persistence.introspection import quote_identifier
from clic_tools.persistence.modules import main, notifications, warehouse
from clic_tools.persistence.modules.seeds import seed_list, seed_section

if TYPE_CHECKING:
    from clic_tools.persistence.connections import ConnectionManager

JSONValue = str | int | float | bool | None | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_PAGE_SIZE: Final[int] = 1_000
LOG_TYPES: Final[tuple[str, ...]] = ("INFO", "WARN", "ERROR")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _load_json(raw: object, default: JSONValue) -> JSONValue:
    if not isinstance(raw, str) or not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return default


class _BaseRepo:
    db_file: ClassVar[str]

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    def _handle(self) -> DatabaseHandle:
        return self._manager.acquire(self.db_file)

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")


class _SingletonRowRepo(_BaseRepo):
    """A table holding exactly one settings row with ``id = 1``."""

    table: ClassVar[str]
    boolean_columns: ClassVar[frozenset[str]] = frozenset()

    def get(self) -> dict[str, object] | None:
        row = self._handle().query_one(
            f"SELECT * FROM {quote_identifier(self.table)} WHERE id = 1"
        )
        if row is None:
            return None
        settings: dict[str, object] = dict(row)
        for column in self.boolean_columns & settings.keys():
            if settings[column] is not None:
                settings[column] = bool(settings[column])
        return settings

    def save(self, values: Mapping[str, object]) -> None:
        """Update the given columns of row 1, creating the row when absent."""

        handle = self._handle()
        known = {
            str(row["name"])
            for row in handle.query_all(f"PRAGMA table_info({quote_identifier(self.table)})")
        }
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"unknown {self.table} column(s): {', '.join(unknown)}")
        columns = [column for column in values if column != "id"]
        if not columns:
            return
        assignments = ", ".join(f"{quote_identifier(column)} = ?" for column in columns)
        params = [_column_value(values[column]) for column in columns]
        table = quote_identifier(self.table)
        with handle.transaction():
            handle.execute(f"INSERT OR IGNORE INTO {table} (id) VALUES (1)")
            handle.execute(f"UPDATE {table} SET {assignments} WHERE id = 1", params)


class CompanySettingsRepo(_SingletonRowRepo):
    db_file = main.DB_FILE
    table = "company_settings"
    boolean_columns = frozenset({"quoterShowTaxId"})


class ApiSettingsRepo(_SingletonRowRepo):
    db_file = main.DB_FILE
    table = "api_settings"


class RoleRepo(_BaseRepo):
    db_file = main.DB_FILE

    def list(self) -> list[dict[str, object]]:
        rows = self._handle().query_all("SELECT id, name, permissions FROM roles ORDER BY id")
        return [_role(row) for row in rows]

    def get(self, role_id: str) -> dict[str, object] | None:
        row = self._handle().query_one(
            "SELECT id, name, permissions FROM roles WHERE id = ?", (role_id,)
        )
        return None if row is None else _role(row)

    def save(self, role_id: str, name: str, permissions: list[str]) -> None:
        self._handle().execute(
            "INSERT INTO roles (id, name, permissions) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name = excluded.name, "
            "permissions = excluded.permissions",
            (role_id, name, json.dumps(permissions)),
        )

    def delete(self, role_id: str) -> bool:
        if role_id == main.ADMIN_ROLE:
            raise ValueError("the admin role cannot be deleted")
        return self._handle().execute("DELETE FROM roles WHERE id = ?", (role_id,)) > 0

    def reset_default_roles(self) -> int:
        """Replace every role with the packaged defaults; returns the role count."""

        defaults = seed_list("roles")
        handle = self._handle()
        with handle.transaction():
            handle.execute("DELETE FROM roles")
            handle.executemany(
                "INSERT INTO roles (id, name, permissions) VALUES (?, ?, ?)",
                [
                    (str(role["id"]), str(role["name"]), json.dumps(role["permissions"]))
                    for role in defaults
                ],
            )
        return len(defaults)


class LogRepo(_BaseRepo):
    """Application log stored in the main file (``logs`` table)."""

    db_file = main.DB_FILE

    def __init__(
        self,
        manager: ConnectionManager,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        super().__init__(manager)
        self._clock = clock

    def add(self, log_type: str, message: str, details: Mapping[str, object] | None = None) -> int:
        normalized = log_type.upper()
        if normalized not in LOG_TYPES:
            raise ValueError(f"log type must be one of {', '.join(LOG_TYPES)}")
        cursor = self._handle().execute_cursor(
            "INSERT INTO logs (timestamp, type, message, details) VALUES (?, ?, ?, ?)",
            (
                _iso8601z(self._clock()),
                normalized,
                message,
                None if details is None else json.dumps(details, default=str),
            ),
        )
        return int(cursor.lastrowid or 0)

    def list(
        self,
        *,
        log_types: tuple[str, ...] | None = None,
        search: str | None = None,
        limit: int = 200,
        offset: int = 0,
    ) -> list[dict[str, object]]:
        self._validate_page(limit, offset)
        sql = "SELECT id, timestamp, type, message, details FROM logs"
        clauses: list[str] = []
        params: list[SQLValue] = []
        if log_types:
            clauses.append(f"type IN ({', '.join('?' for _ in log_types)})")
            params.extend(log_type.upper() for log_type in log_types)
        if search:
            clauses.append("(message LIKE ? OR details LIKE ?)")
            pattern = f"%{search}%"
            params.extend((pattern, pattern))
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp DESC, id DESC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        return [
            {**row, "details": _load_json(row["details"], None)}
            for row in self._handle().query_all(sql, params)
        ]

    def clear(self, *, older_than_days: int | None = None) -> int:
        """Delete log rows (all, or older than ``older_than_days``); returns rows removed."""

        handle = self._handle()
        if older_than_days is None:
            return handle.execute("DELETE FROM logs")
        if older_than_days < 0:
            raise ValueError("older_than_days must be >= 0")
        cutoff = _iso8601z(self._clock() - timedelta(days=older_than_days))
        return handle.execute("DELETE FROM logs WHERE timestamp < ?", (cutoff,))


class QuoteDraftRepo(_BaseRepo):
    db_file = main.DB_FILE
    _JSON_COLUMNS: ClassVar[tuple[str, ...]] = ("customerDetails", "lines", "totals")

    def save(self, draft: Mapping[str, object]) -> None:
        if not draft.get("id") or not draft.get("createdAt"):
            raise ValueError("quote draft requires id and createdAt")
        columns = list(draft)
        values = [
            json.dumps(draft[column]) if column in self._JSON_COLUMNS else _column_value(draft[column])
            for column in columns
        ]
        quoted = ", ".join(quote_identifier(column) for column in columns)
        self._handle().execute(
            f"INSERT OR REPLACE INTO quote_drafts ({quoted}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            values,
        )

    def list(self, *, user_id: int | None = None) -> list[dict[str, object]]:
        sql = "SELECT * FROM quote_drafts"
        params: list[SQLValue] = []
        if user_id is not None:
            sql += " WHERE userId = ?"
            params.append(user_id)
        sql += " ORDER BY createdAt DESC"
        drafts: list[dict[str, object]] = []
        for row in self._handle().query_all(sql, params):
            draft: dict[str, object] = dict(row)
            for column in self._JSON_COLUMNS:
                draft[column] = _load_json(row.get(column), None)
            drafts.append(draft)
        return drafts

    def delete(self, draft_id: str) -> bool:
        return self._handle().execute("DELETE FROM quote_drafts WHERE id = ?", (draft_id,)) > 0


class UserPreferenceRepo(_BaseRepo):
    db_file = main.DB_FILE

    def get(self, user_id: int, key: str, default: JSONValue = None) -> JSONValue:
        row = self._handle().query_one(
            "SELECT value FROM user_preferences WHERE userId = ? AND key = ?", (user_id, key)
        )
        return default if row is None else _load_json(row["value"], default)

    def set(self, user_id: int, key: str, value: JSONValue) -> None:
        self._handle().execute(
            "INSERT OR REPLACE INTO user_preferences (userId, key, value) VALUES (?, ?, ?)",
            (user_id, key, json.dumps(value)),
        )


class WizardSessionRepo(_BaseRepo):
    """The in-progress wizard state kept on ``users.activeWizardSession``."""

    db_file = main.DB_FILE

    def get(self, user_id: int) -> dict[str, JSONValue] | None:
        row = self._handle().query_one(
            "SELECT activeWizardSession FROM users WHERE id = ?", (user_id,)
        )
        if row is None:
            return None
        session = _load_json(row["activeWizardSession"], None)
        return session if isinstance(session, dict) else None

    def save(self, user_id: int, session: Mapping[str, JSONValue]) -> bool:
        """Store ``session`` for ``user_id``; False when the user does not exist."""
        changed = self._handle().execute(
            "UPDATE users SET activeWizardSession = ? WHERE id = ?",
            (json.dumps(dict(session)), user_id),
        )
        return changed > 0

    def clear(self, user_id: int) -> None:
        self._handle().execute(
            "UPDATE users SET activeWizardSession = NULL WHERE id = ?", (user_id,)
        )


class NotificationRuleRepo(_BaseRepo):
    db_file = notifications.DB_FILE

    def list(self) -> list[dict[str, object]]:
        rows = self._handle().query_all("SELECT * FROM notification_rules ORDER BY id")
        return [
            {**row, "recipients": _load_json(row["recipients"], []), "enabled": bool(row["enabled"])}
            for row in rows
        ]

    def save(
        self,
        *,
        name: str,
        event: str,
        action: str,
        recipients: list[str],
        subject: str | None = None,
        enabled: bool = True,
        rule_id: int | None = None,
    ) -> int:
        """Insert a rule (``rule_id`` is None) or update it; returns the rule id."""

        handle = self._handle()
        params = (name, event, action, json.dumps(recipients), subject, int(enabled))
        if rule_id is None:
            cursor = handle.execute_cursor(
                "INSERT INTO notification_rules "
                "(name, event, action, recipients, subject, enabled) VALUES (?, ?, ?, ?, ?, ?)",
                params,
            )
            return int(cursor.lastrowid or 0)
        changed = handle.execute(
            "UPDATE notification_rules SET name = ?, event = ?, action = ?, recipients = ?, "
            "subject = ?, enabled = ? WHERE id = ?",
            (*params, rule_id),
        )
        if changed == 0:
            raise LookupError(f"notification rule {rule_id} not found")
        return rule_id

    def delete(self, rule_id: int) -> bool:
        return self._handle().execute("DELETE FROM notification_rules WHERE id = ?", (rule_id,)) > 0


class NotificationSettingsRepo(_BaseRepo):
    db_file = notifications.DB_FILE

    def get(self, service: str) -> dict[str, JSONValue]:
        row = self._handle().query_one(
            "SELECT config FROM notification_settings WHERE service = ?", (service,)
        )
        loaded = _load_json(None if row is None else row["config"], {})
        return loaded if isinstance(loaded, dict) else {}

    def save(self, service: str, config: Mapping[str, JSONValue]) -> None:
        self._handle().execute(
            "INSERT OR REPLACE INTO notification_settings (service, config) VALUES (?, ?)",
            (service, json.dumps(dict(config))),
        )


class WarehouseSettingsRepo(_BaseRepo):
    db_file = warehouse.DB_FILE

    def get(self) -> dict[str, JSONValue]:
        """Stored settings layered over the packaged defaults."""

        defaults = json.loads(json.dumps(seed_section("warehouse")))
        row = self._handle().query_one(
            "SELECT value FROM warehouse_config WHERE key = ?", (warehouse.SETTINGS_KEY,)
        )
        stored = _load_json(None if row is None else row["value"], {})
        if isinstance(stored, dict):
            defaults.update(stored)
        return defaults

    def save(self, settings: Mapping[str, JSONValue]) -> None:
        merged = {**self.get(), **settings}
        self._handle().execute(
            "INSERT OR REPLACE INTO warehouse_config (key, value) VALUES (?, ?)",
            (warehouse.SETTINGS_KEY, json.dumps(merged)),
        )


def _role(row: Row) -> dict[str, object]:
    return {
        "id": row["id"],
        "name": row["name"],
        "permissions": _load_json(row["permissions"], []),
    }


def _column_value(value: object) -> SQLValue:
    if isinstance(value, bool):
        return int(value)
    if value is None or isinstance(value, (str, int, float, bytes)):
        return value
    return json.dumps(value)


__all__ = [
    "LOG_TYPES",
    "ApiSettingsRepo",
    "CompanySettingsRepo",
    "LogRepo",
    "NotificationRuleRepo",
    "NotificationSettingsRepo",
    "QuoteDraftRepo",
    "RoleRepo",
    "UserPreferenceRepo",
    "WarehouseSettingsRepo",
    "WizardSessionRepo",
]
