"""Repository reads/writes against freshly initialized module files."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from clic_tools.persistence.modules.seeds import seed_list, seed_section
from clic_tools.persistence.repositories import (
    ApiSettingsRepo,
    CompanySettingsRepo,
    LogRepo,
    NotificationRuleRepo,
    NotificationSettingsRepo,
    QuoteDraftRepo,
    RoleRepo,
    UserPreferenceRepo,
    WarehouseSettingsRepo,
    WizardSessionRepo,
)

from . import make_manager

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

    from clic_tools.persistence.connections import ConnectionManager


@pytest.fixture
def manager(tmp_path: Path) -> Iterator[ConnectionManager]:
    created = make_manager(tmp_path)
    yield created
    created.close_all()


def test_company_settings_round_trip_and_column_validation(manager: ConnectionManager) -> None:
    repo = CompanySettingsRepo(manager)

    seeded = repo.get()
    assert seeded is not None
    assert seeded["name"] == seed_section("company")["name"]
    assert seeded["quoterShowTaxId"] is True

    repo.save({"name": "ACME S.A.", "quoterShowTaxId": False, "decimalPlaces": 4})
    updated = repo.get()

    assert updated is not None
    assert updated["name"] == "ACME S.A."
    assert updated["quoterShowTaxId"] is False
    assert updated["decimalPlaces"] == 4
    with pytest.raises(ValueError, match="unknown company_settings column"):
        repo.save({"notAColumn": 1})


def test_api_settings_row_is_created_when_missing(manager: ConnectionManager) -> None:
    repo = ApiSettingsRepo(manager)
    manager.acquire(repo.db_file).execute("DELETE FROM api_settings")

    assert repo.get() is None
    repo.save({"ollamaHost": "http://ollama.internal:11434"})

    assert repo.get() == {
        "id": 1,
        "exchangeRateApi": None,
        "haciendaExemptionApi": None,
        "haciendaTributariaApi": None,
        "ollamaHost": "http://ollama.internal:11434",
        "defaultModel": None,
    }


def test_roles_crud_and_reset(manager: ConnectionManager) -> None:
    repo = RoleRepo(manager)

    repo.save("auditor", "Auditor", ["logs:view"])
    repo.save("auditor", "Auditoría", ["logs:view", "logs:clear"])

    assert repo.get("auditor") == {
        "id": "auditor",
        "name": "Auditoría",
        "permissions": ["logs:view", "logs:clear"],
    }
    assert repo.delete("viewer") is True
    assert repo.delete("viewer") is False
    with pytest.raises(ValueError, match="admin role"):
        repo.delete("admin")

    assert repo.reset_default_roles() == len(seed_list("roles"))
    ids = [role["id"] for role in repo.list()]
    assert ids == sorted(str(role["id"]) for role in seed_list("roles"))
    assert repo.get("auditor") is None


def test_log_repo_filters_search_and_retention(manager: ConnectionManager) -> None:
    now = [datetime(2026, 10, 1, 8, 0, tzinfo=UTC)]
    repo = LogRepo(manager, clock=lambda: now[0])

    old_id = repo.add("INFO", "sync started", {"rows": 10})
    now[0] = datetime(2026, 10, 19, 8, 0, tzinfo=UTC)
    new_id = repo.add("warn", "sync slow", {"api_token": "kept-as-is"})

    assert new_id > old_id
    entries = repo.list()
    assert [entry["id"] for entry in entries] == [new_id, old_id]
    assert entries[1]["details"] == {"rows": 10}
    assert entries[0]["type"] == "WARN"
    assert entries[0]["timestamp"] == "2026-10-19T08:00:00.000Z"
    assert [entry["id"] for entry in repo.list(log_types=("info",))] == [old_id]
    assert [entry["id"] for entry in repo.list(search="slow")] == [new_id]
    assert [entry["id"] for entry in repo.list(limit=1, offset=1)] == [old_id]

    with pytest.raises(ValueError, match="log type"):
        repo.add("DEBUG", "nope")
    with pytest.raises(ValueError, match="limit"):
        repo.list(limit=0)

    assert repo.clear(older_than_days=7) == 1
    assert [entry["id"] for entry in repo.list()] == [new_id]
    assert repo.clear() == 1


def test_quote_drafts_store_json_columns(manager: ConnectionManager) -> None:
    repo = QuoteDraftRepo(manager)
    base = datetime(2026, 10, 19, tzinfo=UTC)
    repo.save(
        {
            "id": "Q-1",
            "createdAt": base.isoformat(),
            "userId": 1,
            "customerDetails": {"name": "ACME"},
            "lines": [{"sku": "P-1", "qty": 2}],
            "totals": {"total": 20.5},
        }
    )
    repo.save(
        {
            "id": "Q-2",
            "createdAt": (base + timedelta(hours=1)).isoformat(),
            "userId": 2,
            "lines": [],
        }
    )

    drafts = repo.list()
    mine = repo.list(user_id=1)

    assert [draft["id"] for draft in drafts] == ["Q-2", "Q-1"]
    assert mine[0]["lines"] == [{"sku": "P-1", "qty": 2}]
    assert mine[0]["customerDetails"] == {"name": "ACME"}
    assert drafts[0]["totals"] is None
    with pytest.raises(ValueError, match="id and createdAt"):
        repo.save({"id": "Q-3"})
    assert repo.delete("Q-1") is True
    assert [draft["id"] for draft in repo.list()] == ["Q-2"]


def test_user_preferences(manager: ConnectionManager) -> None:
    repo = UserPreferenceRepo(manager)

    assert repo.get(1, "theme", "light") == "light"
    repo.set(1, "theme", "dark")
    repo.set(1, "columns", ["id", "name"])

    assert repo.get(1, "theme") == "dark"
    assert repo.get(1, "columns") == ["id", "name"]
    assert repo.get(2, "theme") is None


def test_wizard_session_save_get_and_clear(manager: ConnectionManager) -> None:
    manager.acquire("intratool.db").execute(
        "INSERT INTO users (id, name, email, password) VALUES (7, 'Ana', 'ana@example.com', 'x')"
    )
    repo = WizardSessionRepo(manager)

    assert repo.get(7) is None
    assert repo.save(7, {"step": 2, "customerId": "C-1", "lines": [{"sku": "P-1"}]}) is True
    assert repo.save(99, {"step": 1}) is False

    assert repo.get(7) == {"step": 2, "customerId": "C-1", "lines": [{"sku": "P-1"}]}
    assert repo.get(99) is None
    repo.clear(7)
    assert repo.get(7) is None


def test_notification_rules(manager: ConnectionManager) -> None:
    repo = NotificationRuleRepo(manager)

    rule_id = repo.save(
        name="Nueva solicitud",
        event="purchase-request.created",
        action="sendEmail",
        recipients=["compras@example.com"],
        subject="Solicitud nueva",
    )
    repo.save(
        rule_id=rule_id,
        name="Nueva solicitud",
        event="purchase-request.created",
        action="sendTelegram",
        recipients=["@compras"],
        enabled=False,
    )

    (rule,) = repo.list()
    assert rule["id"] == rule_id
    assert rule["action"] == "sendTelegram"
    assert rule["recipients"] == ["@compras"]
    assert rule["enabled"] is False
    assert rule["subject"] is None
    with pytest.raises(LookupError):
        repo.save(rule_id=999, name="x", event="e", action="a", recipients=[])
    assert repo.delete(rule_id) is True
    assert repo.list() == []


def test_notification_settings(manager: ConnectionManager) -> None:
    repo = NotificationSettingsRepo(manager)

    assert isinstance(repo.get("telegram"), dict)
    assert repo.get("email") == {}

    repo.save("telegram", {"botToken": "123:abc", "chatId": "42"})

    assert repo.get("telegram") == {"botToken": "123:abc", "chatId": "42"}


def test_warehouse_settings_merge_over_defaults(manager: ConnectionManager) -> None:
    repo = WarehouseSettingsRepo(manager)
    defaults = seed_section("warehouse")

    assert repo.get()["unitPrefix"] == defaults["unitPrefix"]

    repo.save({"unitPrefix": "BOD-", "nextUnitNumber": 40})
    stored = repo.get()

    assert stored["unitPrefix"] == "BOD-"
    assert stored["nextUnitNumber"] == 40
    assert stored["locationLevels"] == defaults["locationLevels"]
