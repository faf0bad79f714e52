"""
clic-tools — module connection manager

File: src/clic_tools/persistence/connections.py
Last updated: 2026-10-19

Purpose
- Hand out one shared, initialized and migrated handle per module storage file.

What should be included in this file
- Lazy cold-path open with storage directory creation.
- Corruption quarantine (``<file>.corrupt.<unix-millis>``) and fresh re-open.
- Initializer-on-create, migrator-on-every-open and the migration status board.
- Journal mode configuration and forced (destructive) recreation.

Functional requirements
- Concurrent first acquisition of one file must run its initializer once.
- Migration failures must never prevent a handle from being returned.

Non-functional requirements
- Cache hits do no I/O.
- Async callers share the same per-file locks as threaded callers.
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Final

import structlog

from clic_tools.constants import DEFAULT_DB_DIR, QUARANTINE_MARKER
from clic_tools.observability.logging import correlation_scope
from clic_tools.persistence.handle import (
    DEFAULT_BUSY_RETRY_BACKOFF_MS,
    DEFAULT_BUSY_RETRY_LIMIT,
    DEFAULT_BUSY_TIMEOUT_MS,
    DatabaseHandle,
    StorageCorruptionError,
    StorageError,
    is_corruption_error,
)
from clic_tools.persistence.migrations import MigrationOutcome, MigrationState
from clic_tools.persistence.registry import (
    ModuleDescriptor,
    SchemaRegistry,
    validate_file_name,
)
from clic_tools.persistence.status import MigrationStatus, MigrationStatusBoard

SIDECAR_SUFFIXES: Final[tuple[str, ...]] = ("-wal", "-shm")
DEFAULT_JOURNAL_MODE: Final[str] = "wal"


class ConnectionManager:
    """Process-wide cache of module storage handles.

    ``acquire`` returns the cached handle for a file, opening, initializing and
    migrating it on first use. Borrowed handles stay owned by the manager;
    callers never close them.
    """

    def __init__(
        self,
        db_dir: str | Path = DEFAULT_DB_DIR,
        *,
        registry: SchemaRegistry | None = None,
        journal_mode: str | None = DEFAULT_JOURNAL_MODE,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
        clock: Callable[[], float] = time.time,
        logger: Any | None = None,
    ) -> None:
        if registry is None:
            from clic_tools.persistence.modules import default_registry

            registry = default_registry()
        self._db_dir = Path(db_dir).expanduser()
        self._registry = registry
        self._journal_mode = journal_mode
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_ms = busy_retry_backoff_ms
        self._clock = clock
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._cache: dict[str, DatabaseHandle] = {}
        self._cache_lock = threading.Lock()
        self._file_locks: dict[str, threading.Lock] = {}
        self._status = MigrationStatusBoard(registry)

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        *,
        registry: SchemaRegistry | None = None,
        logger: Any | None = None,
    ) -> ConnectionManager:
        """Build a manager from a validated config mapping (``storage`` + ``security``)."""

        storage = config["storage"]
        if registry is None:
            from clic_tools.persistence.modules import default_registry

            registry = default_registry(
                password_hash_rounds=int(config["security"]["password_hash_rounds"])
            )
        return cls(
            storage["db_dir"],
            registry=registry,
            journal_mode=storage["journal_mode"],
            busy_timeout_ms=int(storage["busy_timeout_ms"]),
            busy_retry_limit=int(storage["busy_retry_limit"]),
            busy_retry_backoff_ms=int(storage["busy_retry_backoff_ms"]),
            logger=logger,
        )

    @property
    def db_dir(self) -> Path:
        return self._db_dir

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    def path_for(self, file_name: str) -> Path:
        validate_file_name(file_name)
        return self._db_dir / file_name

    def is_cached(self, file_name: str) -> bool:
        with self._cache_lock:
            handle = self._cache.get(file_name)
        return handle is not None and handle.is_open

    def acquire(self, file_name: str, force_recreate: bool = False) -> DatabaseHandle:
        """Return the open handle for ``file_name``, creating the file on first use.

        ``force_recreate`` deletes the file (and its ``-wal``/``-shm`` sidecars)
        before re-opening; every row in it is lost.
        """

        path = self.path_for(file_name)
        if not force_recreate:
            cached = self._cached_open(file_name)
            if cached is not None:
                return cached

        with self._file_lock(file_name):
            if not force_recreate:
                cached = self._cached_open(file_name)
                if cached is not None:
                    return cached
            return self._open_cold(file_name, path, force_recreate=force_recreate)

    async def acquire_async(
        self, file_name: str, force_recreate: bool = False
    ) -> DatabaseHandle:
        return await asyncio.to_thread(self.acquire, file_name, force_recreate)

    def acquire_module(self, module_id: str, force_recreate: bool = False) -> DatabaseHandle:
        return self.acquire(self._registry.get(module_id).file, force_recreate)

    def migrate_module(self, module_id: str) -> MigrationOutcome:
        """Run ``module_id``'s migrator against its (acquired) handle and record it."""

        descriptor = self._registry.get(module_id)
        handle = self.acquire(descriptor.file)
        with self._file_lock(descriptor.file):
            return self._run_migrator(descriptor, handle)

    def health(self) -> tuple[MigrationStatus, ...]:
        """Latest migration status of every registered module."""

        return self._status.snapshot()

    def close(self, file_name: str) -> bool:
        """Close and evict the cached handle for ``file_name``; ``False`` if none was cached."""

        with self._file_lock(file_name):
            return self._evict(file_name)

    def close_all(self) -> None:
        with self._cache_lock:
            handles = list(self._cache.values())
            self._cache.clear()
        for handle in handles:
            handle.close()
        self._logger.debug("connections_closed", count=len(handles))

    def __enter__(self) -> ConnectionManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close_all()

    def _cached_open(self, file_name: str) -> DatabaseHandle | None:
        with self._cache_lock:
            handle = self._cache.get(file_name)
            if handle is None:
                return None
            if handle.is_open:
                return handle
            del self._cache[file_name]
            return None

    def _file_lock(self, file_name: str) -> threading.Lock:
        with self._cache_lock:
            lock = self._file_locks.get(file_name)
            if lock is None:
                lock = threading.Lock()
                self._file_locks[file_name] = lock
            return lock

    def _evict(self, file_name: str) -> bool:
        with self._cache_lock:
            handle = self._cache.pop(file_name, None)
        if handle is None:
            return False
        handle.close()
        return True

    def _open_cold(self, file_name: str, path: Path, *, force_recreate: bool) -> DatabaseHandle:
        descriptor = self._registry.for_file(file_name)
        with correlation_scope(
            db_file=file_name, module_id=descriptor.id if descriptor is not None else None
        ):
            self._db_dir.mkdir(parents=True, exist_ok=True)
            self._evict(file_name)
            if force_recreate:
                self._delete_storage(path)
                if descriptor is not None:
                    self._status.reset(descriptor.id, file_name)

            existed = path.exists() and path.stat().st_size > 0
            try:
                handle = self._open_handle(path)
            except StorageCorruptionError as exc:
                quarantined = self._quarantine(path)
                self._logger.error(
                    "storage_quarantined",
                    db_file=file_name,
                    quarantined_as=quarantined.name,
                    error=str(exc),
                )
                handle = self._open_handle(path)
                existed = False

            if descriptor is not None:
                if not existed:
                    try:
                        descriptor.initializer(handle)
                    except Exception:
                        handle.close()
                        raise
                self._run_migrator(descriptor, handle)

            self._apply_journal_mode(handle, file_name)

            with self._cache_lock:
                self._cache[file_name] = handle
            self._logger.debug(
                "storage_opened", db_file=file_name, new_file=not existed, recreated=force_recreate
            )
            return handle

    def _open_handle(self, path: Path) -> DatabaseHandle:
        return DatabaseHandle.open(
            path,
            busy_timeout_ms=self._busy_timeout_ms,
            busy_retry_limit=self._busy_retry_limit,
            busy_retry_backoff_ms=self._busy_retry_backoff_ms,
        )

    def _run_migrator(
        self, descriptor: ModuleDescriptor, handle: DatabaseHandle
    ) -> MigrationOutcome:
        try:
            outcome = descriptor.migrator(handle)
        except Exception as exc:  # noqa: BLE001 - custom migrators must not break acquisition
            self._logger.error(
                "module_migration_failed",
                module_id=descriptor.id,
                db_file=descriptor.file,
                error=str(exc),
            )
            outcome = MigrationOutcome(
                module_id=descriptor.id, state=MigrationState.FAILED, error=str(exc)
            )
        self._status.record(descriptor.file, outcome)
        return outcome

    def _apply_journal_mode(self, handle: DatabaseHandle, file_name: str) -> None:
        if not self._journal_mode:
            return
        try:
            handle.set_journal_mode(self._journal_mode)
        except StorageError as exc:
            if is_corruption_error(exc):
                self._logger.debug("journal_mode_skipped", db_file=file_name, error=str(exc))
            else:
                self._logger.warning(
                    "journal_mode_failed",
                    db_file=file_name,
                    journal_mode=self._journal_mode,
                    error=str(exc),
                )

    def _quarantine(self, path: Path) -> Path:
        stamp = int(self._clock() * 1000)
        target = path.with_name(f"{path.name}{QUARANTINE_MARKER}{stamp}")
        path.rename(target)
        for suffix in SIDECAR_SUFFIXES:
            sidecar = path.with_name(path.name + suffix)
            if sidecar.exists():
                sidecar.rename(target.with_name(target.name + suffix))
        return target

    def _delete_storage(self, path: Path) -> None:
        for candidate in (path, *(path.with_name(path.name + s) for s in SIDECAR_SUFFIXES)):
            candidate.unlink(missing_ok=True)
        self._logger.warning("storage_recreated", db_file=path.name)


__all__ = ["DEFAULT_JOURNAL_MODE", "SIDECAR_SUFFIXES", "ConnectionManager"]
