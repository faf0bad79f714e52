"""Stable constants shared across the storage layer."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the working directory unless overridden by config).
DEFAULT_DB_DIR: Final[PurePosixPath] = PurePosixPath("dbs")
DEFAULT_BACKUP_DIR: Final[PurePosixPath] = PurePosixPath("update_backups")
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Module identity.
MAIN_MODULE_ID: Final[str] = "clic-tools-main"
MAIN_DB_FILE: Final[str] = "intratool.db"

# Corrupt files are renamed to ``<file>.corrupt.<unix-millis>``.
QUARANTINE_MARKER: Final[str] = ".corrupt."

JOURNAL_MODES: Final[tuple[str, ...]] = ("wal", "delete", "truncate")

# bcrypt hash prefixes recognised as "already hashed".
BCRYPT_PREFIXES: Final[tuple[str, ...]] = ("$2a$", "$2b$", "$2y$")
DEFAULT_PASSWORD_HASH_ROUNDS: Final[int] = 10

__all__ = [
    "BCRYPT_PREFIXES",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BACKUP_DIR",
    "DEFAULT_DB_DIR",
    "DEFAULT_LOG_DIR",
    "DEFAULT_PASSWORD_HASH_ROUNDS",
    "JOURNAL_MODES",
    "MAIN_DB_FILE",
    "MAIN_MODULE_ID",
    "QUARANTINE_MARKER",
]
