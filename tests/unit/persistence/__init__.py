"""Shared deterministic fixtures and builders for persistence tests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from clic_tools.persistence.connections import ConnectionManager
from clic_tools.persistence.modules import default_registry
from clic_tools.security.passwords import MIN_ROUNDS

if TYPE_CHECKING:
    from pathlib import Path

    from clic_tools.persistence.handle import DatabaseHandle
    from clic_tools.persistence.registry import SchemaRegistry

FAST_ROUNDS: Final[int] = MIN_ROUNDS
FIXED_EPOCH: Final[float] = 1_791_000_000.123


def fast_registry() -> SchemaRegistry:
    return default_registry(password_hash_rounds=FAST_ROUNDS)


def make_manager(
    tmp_path: Path,
    *,
    registry: SchemaRegistry | None = None,
    journal_mode: str | None = "wal",
) -> ConnectionManager:
    return ConnectionManager(
        tmp_path / "dbs",
        registry=registry if registry is not None else fast_registry(),
        journal_mode=journal_mode,
        busy_retry_backoff_ms=1,
        clock=lambda: FIXED_EPOCH,
    )


def table_names(handle: DatabaseHandle, *, schema: str = "main") -> set[str]:
    rows = handle.query_all(
        f"SELECT name FROM {schema}.sqlite_master "
        "WHERE type = 'table' AND name NOT LIKE 'sqlite_%'"
    )
    return {str(row["name"]) for row in rows}


def column_names(handle: DatabaseHandle, table: str) -> list[str]:
    return [str(row["name"]) for row in handle.query_all(f"PRAGMA table_info({table})")]


def write_garbage(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"this is definitely not an sqlite database file\n" * 64)
