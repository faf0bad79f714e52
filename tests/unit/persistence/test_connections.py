"""ConnectionManager acquisition, caching, quarantine and recreation tests."""

from __future__ import annotations

import asyncio
import re
import threading
import time
from typing import TYPE_CHECKING

import pytest
from structlog.testing import capture_logs

from clic_tools.config import default_config
from clic_tools.constants import MAIN_DB_FILE, MAIN_MODULE_ID
from clic_tools.persistence.connections import ConnectionManager
from clic_tools.persistence.handle import DatabaseHandle
from clic_tools.persistence.migrations import MigrationOutcome, MigrationState
from clic_tools.persistence.modules import main, warehouse
from clic_tools.persistence.registry import ModuleDescriptor, RegistryError, SchemaRegistry

from . import FAST_ROUNDS, make_manager, table_names, write_garbage

if TYPE_CHECKING:
    from pathlib import Path

_QUARANTINE_RE = re.compile(r"^warehouse\.db\.corrupt\.\d+$")


class _CountingModule:
    """Main-module stand-in that counts initializer and migrator calls."""

    def __init__(self, *, init_delay: float = 0.0, migrate_error: str | None = None) -> None:
        self.init_calls = 0
        self.migrate_calls = 0
        self._init_delay = init_delay
        self._migrate_error = migrate_error
        self._lock = threading.Lock()

    def initialize(self, handle: DatabaseHandle) -> None:
        with self._lock:
            self.init_calls += 1
        time.sleep(self._init_delay)
        handle.execute("CREATE TABLE IF NOT EXISTS marker (id INTEGER PRIMARY KEY)")
        handle.execute("INSERT INTO marker DEFAULT VALUES")

    def migrate(self, handle: DatabaseHandle) -> MigrationOutcome:
        with self._lock:
            self.migrate_calls += 1
        if self._migrate_error is not None:
            raise RuntimeError(self._migrate_error)
        return MigrationOutcome(module_id=MAIN_MODULE_ID, state=MigrationState.OK)

    def registry(self) -> SchemaRegistry:
        return SchemaRegistry(
            [
                ModuleDescriptor(
                    id=MAIN_MODULE_ID,
                    file=MAIN_DB_FILE,
                    name="Main",
                    initializer=self.initialize,
                    migrator=self.migrate,
                )
            ]
        )


def test_new_registered_file_is_created_initialized_and_cached(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    try:
        handle = manager.acquire(warehouse.DB_FILE)

        assert manager.db_dir.is_dir()
        assert (manager.db_dir / warehouse.DB_FILE).is_file()
        assert table_names(handle) == {table.name for table in warehouse.TABLES}
        assert manager.is_cached(warehouse.DB_FILE)
        status = next(
            item for item in manager.health() if item.module_id == warehouse.MODULE_ID
        )
        assert status.state is MigrationState.OK
        assert status.applied == ()
        assert status.checked_at is not None
    finally:
        manager.close_all()


def test_sequential_acquire_returns_the_same_handle(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    try:
        first = manager.acquire(MAIN_DB_FILE)
        second = manager.acquire(MAIN_DB_FILE)
        by_module = manager.acquire_module(MAIN_MODULE_ID)

        assert first is second
        assert by_module is first
    finally:
        manager.close_all()


def test_unregistered_file_opens_without_schema_work(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    try:
        handle = manager.acquire("scratch.db")

        assert (manager.db_dir / "scratch.db").is_file()
        assert table_names(handle) == set()
        assert {status.state for status in manager.health()} == {MigrationState.PENDING}
    finally:
        manager.close_all()


def test_invalid_file_names_are_rejected(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)

    with pytest.raises(RegistryError):
        manager.acquire("../outside.db")


def test_corrupt_file_is_quarantined_and_recreated(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    path = manager.db_dir / warehouse.DB_FILE
    write_garbage(path)
    (manager.db_dir / "warehouse.db-wal").write_bytes(b"stale wal")

    try:
        with capture_logs() as logs:
            handle = manager.acquire(warehouse.DB_FILE)

        assert handle.is_open
        assert table_names(handle) == {table.name for table in warehouse.TABLES}
        assert handle.query_all("SELECT * FROM locations") == []
        quarantined = sorted(
            entry.name for entry in manager.db_dir.iterdir() if _QUARANTINE_RE.match(entry.name)
        )
        assert len(quarantined) == 1
        assert (manager.db_dir / f"{quarantined[0]}-wal").read_bytes() == b"stale wal"
        events = [entry for entry in logs if entry["event"] == "storage_quarantined"]
        assert len(events) == 1
        assert events[0]["log_level"] == "error"
        assert events[0]["quarantined_as"] == quarantined[0]
    finally:
        manager.close_all()


def test_force_recreate_discards_data_and_reruns_initializer(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    try:
        original = manager.acquire(MAIN_DB_FILE)
        original.execute(
            "INSERT INTO users (id, name, email, password, role) "
            "VALUES (7, 'Temp', 'temp@example.com', 'x', 'viewer')"
        )
        original.execute("DELETE FROM roles WHERE id = 'viewer'")

        recreated = manager.acquire(MAIN_DB_FILE, force_recreate=True)

        assert recreated is not original
        assert not original.is_open
        assert recreated.query_all("SELECT * FROM users") == []
        assert recreated.query_one("SELECT id FROM roles WHERE id = 'viewer'") == {"id": "viewer"}
        assert manager.acquire(MAIN_DB_FILE) is recreated
    finally:
        manager.close_all()


def test_zero_byte_file_is_treated_as_new(tmp_path: Path) -> None:
    module = _CountingModule()
    manager = make_manager(tmp_path, registry=module.registry())
    manager.db_dir.mkdir(parents=True)
    (manager.db_dir / MAIN_DB_FILE).touch()
    try:
        handle = manager.acquire(MAIN_DB_FILE)

        assert module.init_calls == 1
        assert handle.query_one("SELECT count(*) AS n FROM marker") == {"n": 1}
    finally:
        manager.close_all()


def test_concurrent_first_acquire_initializes_once(tmp_path: Path) -> None:
    module = _CountingModule(init_delay=0.05)
    manager = make_manager(tmp_path, registry=module.registry())
    barrier = threading.Barrier(8)
    handles: list[DatabaseHandle] = []
    errors: list[BaseException] = []
    results_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        try:
            acquired = manager.acquire(MAIN_DB_FILE)
        except BaseException as exc:  # noqa: BLE001 - surfaced through the assertion below
            with results_lock:
                errors.append(exc)
            return
        with results_lock:
            handles.append(acquired)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    try:
        assert errors == []
        assert len(handles) == 8
        assert all(handle is handles[0] for handle in handles)
        assert module.init_calls == 1
        assert module.migrate_calls == 1
        assert handles[0].query_one("SELECT count(*) AS n FROM marker") == {"n": 1}
    finally:
        manager.close_all()


@pytest.mark.asyncio
async def test_async_acquire_shares_the_cached_handle(tmp_path: Path) -> None:
    module = _CountingModule(init_delay=0.02)
    manager = make_manager(tmp_path, registry=module.registry())
    try:
        handles = await asyncio.gather(
            *(manager.acquire_async(MAIN_DB_FILE) for _ in range(5))
        )

        assert len({id(handle) for handle in handles}) == 1
        assert module.init_calls == 1
    finally:
        manager.close_all()


def test_migration_failure_still_returns_a_handle(tmp_path: Path) -> None:
    module = _CountingModule(migrate_error="migrator exploded")
    manager = make_manager(tmp_path, registry=module.registry())
    try:
        with capture_logs() as logs:
            handle = manager.acquire(MAIN_DB_FILE)

        assert handle.is_open
        (status,) = manager.health()
        assert status.state is MigrationState.FAILED
        assert status.error == "migrator exploded"
        assert any(entry["event"] == "module_migration_failed" for entry in logs)
    finally:
        manager.close_all()


def test_initializer_failure_propagates_and_nothing_is_cached(tmp_path: Path) -> None:
    def failing_initializer(handle: DatabaseHandle) -> None:
        raise RuntimeError("seed failed")

    registry = SchemaRegistry(
        [
            ModuleDescriptor(
                id=MAIN_MODULE_ID,
                file=MAIN_DB_FILE,
                name="Main",
                initializer=failing_initializer,
                migrator=lambda handle: MigrationOutcome(
                    module_id=MAIN_MODULE_ID, state=MigrationState.OK
                ),
            )
        ]
    )
    manager = make_manager(tmp_path, registry=registry)

    with pytest.raises(RuntimeError, match="seed failed"):
        manager.acquire(MAIN_DB_FILE)

    assert not manager.is_cached(MAIN_DB_FILE)


def test_journal_mode_is_applied_when_configured(tmp_path: Path) -> None:
    wal_manager = make_manager(tmp_path / "wal")
    plain_manager = make_manager(tmp_path / "plain", journal_mode=None)
    try:
        assert wal_manager.acquire("scratch.db").journal_mode == "wal"
        assert plain_manager.acquire("scratch.db").journal_mode is None
    finally:
        wal_manager.close_all()
        plain_manager.close_all()


def test_close_evicts_and_reopen_skips_initializer(tmp_path: Path) -> None:
    module = _CountingModule()
    manager = make_manager(tmp_path, registry=module.registry())
    first = manager.acquire(MAIN_DB_FILE)

    assert manager.close(MAIN_DB_FILE) is True
    assert manager.close(MAIN_DB_FILE) is False
    assert not first.is_open

    with manager:
        second = manager.acquire(MAIN_DB_FILE)
        assert second is not first
        assert module.init_calls == 1
        assert module.migrate_calls == 2
    assert not second.is_open


def test_migrate_module_records_outcome(tmp_path: Path) -> None:
    manager = make_manager(tmp_path)
    try:
        handle = manager.acquire(MAIN_DB_FILE)
        handle.execute(
            "INSERT INTO users (id, name, email, password, role) "
            "VALUES (1, 'Owner', 'owner@example.com', 'plain', 'viewer')"
        )

        outcome = manager.migrate_module(MAIN_MODULE_ID)

        assert outcome.state is MigrationState.OK
        assert "ensure user 1 is admin (1 row(s))" in outcome.applied
        status = next(item for item in manager.health() if item.module_id == MAIN_MODULE_ID)
        assert status.applied == outcome.applied
        assert handle.query_one("SELECT role FROM users WHERE id = 1") == {"role": main.ADMIN_ROLE}
    finally:
        manager.close_all()


def test_from_config_reads_storage_and_security_sections(tmp_path: Path) -> None:
    config = default_config()
    config["storage"]["db_dir"] = str(tmp_path / "configured")
    config["storage"]["journal_mode"] = "delete"
    config["security"]["password_hash_rounds"] = FAST_ROUNDS

    with ConnectionManager.from_config(config) as manager:
        handle = manager.acquire(MAIN_DB_FILE)

        assert manager.db_dir == tmp_path / "configured"
        assert handle.journal_mode == "delete"
        assert len(manager.registry) == 7
