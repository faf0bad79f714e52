"""Per-module migration status board surfaced through ``ConnectionManager.health()``."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from clic_tools.persistence.migrations import MigrationOutcome, MigrationState

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from clic_tools.persistence.registry import ModuleDescriptor


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class MigrationStatus:
    module_id: str
    file: str
    state: MigrationState = MigrationState.PENDING
    applied: tuple[str, ...] = field(default_factory=tuple)
    error: str | None = None
    checked_at: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "module_id": self.module_id,
            "file": self.file,
            "state": self.state.value,
            "applied": list(self.applied),
            "error": self.error,
            "checked_at": (
                None
                if self.checked_at is None
                else self.checked_at.isoformat(timespec="seconds").replace("+00:00", "Z")
            ),
        }


class MigrationStatusBoard:
    """Thread-safe latest migration status per registered module."""

    def __init__(
        self,
        descriptors: Iterable[ModuleDescriptor],
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, MigrationStatus] = {
            descriptor.id: MigrationStatus(module_id=descriptor.id, file=descriptor.file)
            for descriptor in descriptors
        }

    def record(self, file_name: str, outcome: MigrationOutcome) -> MigrationStatus:
        status = MigrationStatus(
            module_id=outcome.module_id,
            file=file_name,
            state=outcome.state,
            applied=outcome.applied,
            error=outcome.error,
            checked_at=self._clock(),
        )
        with self._lock:
            self._entries[outcome.module_id] = status
        return status

    def reset(self, module_id: str, file_name: str) -> None:
        with self._lock:
            self._entries[module_id] = MigrationStatus(module_id=module_id, file=file_name)

    def get(self, module_id: str) -> MigrationStatus | None:
        with self._lock:
            return self._entries.get(module_id)

    def snapshot(self) -> tuple[MigrationStatus, ...]:
        with self._lock:
            return tuple(self._entries.values())


__all__ = ["MigrationStatus", "MigrationStatusBoard"]
