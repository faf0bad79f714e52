"""
clic-tools — storage maintenance actions

File: src/clic_tools/persistence/maintenance.py
Last updated: 2026-10-19

Purpose
- Administrative operations over every registered module file.

What should be included in this file
- Schema audit against each module's declared catalog.
- Single-module migration and factory reset.
- Update backups: create, list, restore, prune.

Functional requirements
- Backups use the SQLite online backup API so live handles stay usable.
- Restoring closes every cached handle before files are replaced.

Non-functional requirements
- Backup directory names sort chronologically.
"""

from __future__ import annotations

import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import structlog

from clic_tools.constants import DEFAULT_BACKUP_DIR
from clic_tools.persistence.connections import SIDECAR_SUFFIXES
from clic_tools.persistence.handle import StorageError
from clic_tools.persistence.introspection import SchemaSnapshot, inspect_schema
from clic_tools.persistence.migrations import MigrationOutcome, ModuleSchema, expected_snapshot

if TYPE_CHECKING:
    from clic_tools.persistence.connections import ConnectionManager
    from clic_tools.persistence.registry import ModuleDescriptor

DEFAULT_BACKUP_KEEP: Final[int] = 5
_TIMESTAMP_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\d{8}T\d{9}Z$")


class MaintenanceError(StorageError):
    """Raised for an unknown or unusable update backup."""


@dataclass(frozen=True, slots=True)
class AuditResult:
    module_id: str
    file: str
    exists: bool
    missing_tables: tuple[str, ...] = ()
    missing_columns: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.exists and not self.missing_tables and not self.missing_columns

    def to_dict(self) -> dict[str, object]:
        return {
            "module_id": self.module_id,
            "file": self.file,
            "exists": self.exists,
            "missing_tables": list(self.missing_tables),
            "missing_columns": list(self.missing_columns),
            "ok": self.ok,
        }


@dataclass(frozen=True, slots=True)
class UpdateBackupInfo:
    module_id: str
    file: str
    path: Path
    timestamp: str

    def to_dict(self) -> dict[str, object]:
        return {
            "module_id": self.module_id,
            "file": self.file,
            "path": self.path.as_posix(),
            "timestamp": self.timestamp,
        }


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def backup_timestamp(moment: datetime) -> str:
    """``YYYYMMDDTHHMMSSmmmZ`` in UTC; lexical order is chronological order."""

    utc = moment.astimezone(UTC)
    return utc.strftime("%Y%m%dT%H%M%S") + f"{utc.microsecond // 1000:03d}Z"


def audit_snapshot(
    descriptor: ModuleDescriptor, expected: SchemaSnapshot, actual: SchemaSnapshot
) -> AuditResult:
    missing_tables: list[str] = []
    missing_columns: list[str] = []
    for table in expected.table_names:
        if not actual.has_table(table):
            missing_tables.append(table)
            continue
        present = actual.columns(table)
        for column in sorted(expected.columns(table) - present):
            missing_columns.append(f"{table}.{column}")
    return AuditResult(
        module_id=descriptor.id,
        file=descriptor.file,
        exists=True,
        missing_tables=tuple(missing_tables),
        missing_columns=tuple(missing_columns),
    )


class MaintenanceService:
    """Audit, migrate, reset, back up and restore module files through a manager."""

    def __init__(
        self,
        manager: ConnectionManager,
        *,
        backup_dir: str | Path = DEFAULT_BACKUP_DIR,
        keep: int = DEFAULT_BACKUP_KEEP,
        clock: Callable[[], datetime] = _utc_now,
        logger: Any | None = None,
    ) -> None:
        if keep < 0:
            raise ValueError("keep must be >= 0")
        self._manager = manager
        self._backup_dir = Path(backup_dir).expanduser()
        self._keep = keep
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._expected: dict[str, SchemaSnapshot] = {}

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def run_database_audit(self, *, requested_by: str | None = None) -> list[AuditResult]:
        """Compare each module file with its declared catalog.

        Existing files are acquired first, so the audit reports what is still
        missing after migrations ran. Absent files are reported, not created.
        """

        results: list[AuditResult] = []
        for descriptor in self._manager.registry:
            if descriptor.schema is None:
                continue
            expected = self._expected_for(descriptor.id, descriptor.schema)
            if not self._manager.path_for(descriptor.file).exists():
                results.append(
                    AuditResult(
                        module_id=descriptor.id,
                        file=descriptor.file,
                        exists=False,
                        missing_tables=expected.table_names,
                    )
                )
                continue
            handle = self._manager.acquire(descriptor.file)
            results.append(audit_snapshot(descriptor, expected, inspect_schema(handle)))
        self._logger.info(
            "database_audit_completed",
            requested_by=requested_by,
            modules=len(results),
            failing=[result.module_id for result in results if not result.ok],
        )
        return results

    def run_single_module_migration(self, module_id: str) -> MigrationOutcome:
        outcome = self._manager.migrate_module(module_id)
        self._logger.info(
            "module_migration_requested",
            module_id=module_id,
            state=outcome.state.value,
            applied=list(outcome.applied),
        )
        return outcome

    def factory_reset(self, module_id: str) -> None:
        """Delete and re-create ``module_id``'s file. Every row in it is lost."""

        descriptor = self._manager.registry.get(module_id)
        self._manager.acquire(descriptor.file, force_recreate=True)
        self._logger.warning("module_factory_reset", module_id=module_id, db_file=descriptor.file)

    def backup_all_for_update(self) -> list[UpdateBackupInfo]:
        timestamp = backup_timestamp(self._clock())
        target_dir = self._backup_dir / timestamp
        backups: list[UpdateBackupInfo] = []
        for descriptor in self._manager.registry:
            if not self._manager.path_for(descriptor.file).exists():
                continue
            handle = self._manager.acquire(descriptor.file)
            path = handle.backup(target_dir / descriptor.file)
            backups.append(
                UpdateBackupInfo(
                    module_id=descriptor.id, file=descriptor.file, path=path, timestamp=timestamp
                )
            )
        self._logger.info("update_backup_created", timestamp=timestamp, files=len(backups))
        return backups

    def list_update_backups(self) -> list[UpdateBackupInfo]:
        """Every registered file in every backup directory, newest directory first."""

        backups: list[UpdateBackupInfo] = []
        for directory in reversed(self._backup_directories()):
            for descriptor in self._manager.registry:
                path = directory / descriptor.file
                if path.is_file():
                    backups.append(
                        UpdateBackupInfo(
                            module_id=descriptor.id,
                            file=descriptor.file,
                            path=path,
                            timestamp=directory.name,
                        )
                    )
        return backups

    def restore_all_from_update_backup(self, timestamp: str) -> list[UpdateBackupInfo]:
        source_dir = self._resolve_backup(timestamp)
        restored: list[UpdateBackupInfo] = []
        self._manager.close_all()
        for descriptor in self._manager.registry:
            source = source_dir / descriptor.file
            if not source.is_file():
                continue
            destination = self._manager.path_for(descriptor.file)
            destination.parent.mkdir(parents=True, exist_ok=True)
            for suffix in SIDECAR_SUFFIXES:
                destination.with_name(destination.name + suffix).unlink(missing_ok=True)
            shutil.copy2(source, destination)
            restored.append(
                UpdateBackupInfo(
                    module_id=descriptor.id,
                    file=descriptor.file,
                    path=destination,
                    timestamp=timestamp,
                )
            )
        for info in restored:
            self._manager.acquire(info.file)
        self._logger.warning("update_backup_restored", timestamp=timestamp, files=len(restored))
        return restored

    def delete_old_update_backups(self, keep: int | None = None) -> int:
        """Remove all but the newest ``keep`` backup directories; return how many went."""

        retain = self._keep if keep is None else keep
        if retain < 0:
            raise ValueError("keep must be >= 0")
        directories = self._backup_directories()
        doomed = directories[: max(len(directories) - retain, 0)]
        for directory in doomed:
            shutil.rmtree(directory)
        if doomed:
            self._logger.info("update_backups_pruned", removed=len(doomed), kept=retain)
        return len(doomed)

    def _backup_directories(self) -> list[Path]:
        if not self._backup_dir.is_dir():
            return []
        return sorted(
            (
                entry
                for entry in self._backup_dir.iterdir()
                if entry.is_dir() and _TIMESTAMP_PATTERN.match(entry.name)
            ),
            key=lambda entry: entry.name,
        )

    def _resolve_backup(self, timestamp: str) -> Path:
        if not _TIMESTAMP_PATTERN.match(timestamp):
            raise MaintenanceError(f"invalid backup timestamp {timestamp!r}")
        source_dir = self._backup_dir / timestamp
        if not source_dir.is_dir():
            raise MaintenanceError(f"no update backup named {timestamp!r} in {self._backup_dir}")
        return source_dir

    def _expected_for(self, module_id: str, schema: ModuleSchema) -> SchemaSnapshot:
        cached = self._expected.get(module_id)
        if cached is None:
            cached = expected_snapshot(schema)
            self._expected[module_id] = cached
        return cached


__all__ = [
    "DEFAULT_BACKUP_KEEP",
    "AuditResult",
    "MaintenanceError",
    "MaintenanceService",
    "UpdateBackupInfo",
    "audit_snapshot",
    "backup_timestamp",
]
