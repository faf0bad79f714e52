"""Command-line interface router for the clic-tools storage layer."""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from clic_tools.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from clic_tools.observability import setup_logging, shutdown_logging
from clic_tools.persistence.connections import ConnectionManager
from clic_tools.persistence.federation import FederatedQueryExecutor, WriteResult
from clic_tools.persistence.maintenance import MaintenanceService
from clic_tools.persistence.migrations import MigrationState
from clic_tools.persistence.registry import RegistryError
from clic_tools.ui.render import CLIRenderer, create_renderer


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="clic-db",
        description=(
            "clic-tools storage: module database files, migrations and backups.\n\n"
            "Common workflows:\n"
            "  clic-db status              Open every module file and show migration state\n"
            "  clic-db audit               Compare module files with their catalogs\n"
            "  clic-db query 'SELECT 1'    Run one statement with module files attached\n"
            "  clic-db backup              Snapshot every module file before an update\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to clic_tools TOML config (default: ./clic_tools.toml if present).",
    )
    common.add_argument(
        "--db-dir",
        default=None,
        help="Override storage.db_dir for this invocation.",
    )
    common.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit one JSON object on stdout.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    status_parser = subparsers.add_parser(
        "status", parents=[common], help="Open every module file and report migration state"
    )
    status_parser.set_defaults(handler=_cmd_status)

    migrate_parser = subparsers.add_parser(
        "migrate", parents=[common], help="Run module migrators now"
    )
    migrate_parser.add_argument("--module", dest="module_id", default=None, help="Module id.")
    migrate_parser.set_defaults(handler=_cmd_migrate)

    audit_parser = subparsers.add_parser(
        "audit", parents=[common], help="Report missing tables and columns per module"
    )
    audit_parser.set_defaults(handler=_cmd_audit)

    query_parser = subparsers.add_parser(
        "query",
        parents=[common],
        help="Run one SQL statement against the main file with module files attached",
    )
    query_parser.add_argument("sql", help="SQL statement (module tables as <alias>.<table>).")
    query_parser.set_defaults(handler=_cmd_query)

    schema_parser = subparsers.add_parser(
        "schema", parents=[common], help="Describe every table and column"
    )
    schema_parser.add_argument(
        "--main-only",
        action="store_true",
        default=False,
        help="Only describe the main file.",
    )
    schema_parser.set_defaults(handler=_cmd_schema)

    backup_parser = subparsers.add_parser(
        "backup", parents=[common], help="Create a timestamped update backup"
    )
    backup_parser.set_defaults(handler=_cmd_backup)

    backups_parser = subparsers.add_parser(
        "backups", parents=[common], help="List update backups"
    )
    backups_parser.set_defaults(handler=_cmd_backups)

    restore_parser = subparsers.add_parser(
        "restore", parents=[common], help="Restore every module file from an update backup"
    )
    restore_parser.add_argument("timestamp", help="Backup directory name (see `clic-db backups`).")
    restore_parser.set_defaults(handler=_cmd_restore)

    prune_parser = subparsers.add_parser(
        "prune", parents=[common], help="Delete all but the newest update backups"
    )
    prune_parser.add_argument(
        "--keep", type=int, default=None, help="Backups to keep (default: backups.keep)."
    )
    prune_parser.set_defaults(handler=_cmd_prune)

    reset_parser = subparsers.add_parser(
        "reset", parents=[common], help="Delete and re-create one module file (data loss)"
    )
    reset_parser.add_argument("--module", dest="module_id", required=True, help="Module id.")
    reset_parser.add_argument(
        "--yes", action="store_true", default=False, help="Confirm the destructive reset."
    )
    reset_parser.set_defaults(handler=_cmd_reset)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show the effective (redacted) config"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_status(args: argparse.Namespace) -> int:
    def body(manager: ConnectionManager, _: MaintenanceService) -> int:
        for descriptor in manager.registry:
            manager.acquire(descriptor.file)
        statuses = manager.health()
        failed = any(status.state is MigrationState.FAILED for status in statuses)
        if _flag(args, "json"):
            _emit_json(
                {
                    "command": "status",
                    "db_dir": manager.db_dir.as_posix(),
                    "modules": [status.to_dict() for status in statuses],
                }
            )
            return 1 if failed else 0
        renderer = _get_renderer(args)
        renderer.kv("Storage directory", manager.db_dir.as_posix())
        renderer.table(
            ("module", "file", "state", "applied", "error"),
            [
                (
                    status.module_id,
                    status.file,
                    status.state.value,
                    len(status.applied),
                    status.error or "",
                )
                for status in statuses
            ],
        )
        if args.verbose:
            for status in statuses:
                if status.applied:
                    renderer.section(f"{status.module_id} applied:")
                    renderer.items(list(status.applied))
        return 1 if failed else 0

    return _with_services(args, body)


def _cmd_migrate(args: argparse.Namespace) -> int:
    def body(manager: ConnectionManager, maintenance: MaintenanceService) -> int:
        module_ids = (
            [args.module_id]
            if args.module_id is not None
            else [descriptor.id for descriptor in manager.registry]
        )
        outcomes = [maintenance.run_single_module_migration(module_id) for module_id in module_ids]
        failed = any(outcome.state is MigrationState.FAILED for outcome in outcomes)
        if _flag(args, "json"):
            _emit_json(
                {
                    "command": "migrate",
                    "modules": [
                        {
                            "module_id": outcome.module_id,
                            "state": outcome.state.value,
                            "applied": list(outcome.applied),
                            "error": outcome.error,
                        }
                        for outcome in outcomes
                    ],
                }
            )
            return 1 if failed else 0
        renderer = _get_renderer(args)
        for outcome in outcomes:
            label = f"{outcome.module_id}: {outcome.state.value}"
            if outcome.state is MigrationState.FAILED:
                renderer.fail(f"{label} ({outcome.error})")
            else:
                renderer.ok(label)
            renderer.items(list(outcome.applied), prefix="+ ")
        return 1 if failed else 0

    return _with_services(args, body)


def _cmd_audit(args: argparse.Namespace) -> int:
    def body(_: ConnectionManager, maintenance: MaintenanceService) -> int:
        results = maintenance.run_database_audit(requested_by="clic-db")
        failing = [result for result in results if not result.ok]
        if _flag(args, "json"):
            _emit_json({"command": "audit", "results": [result.to_dict() for result in results]})
            return 1 if failing else 0
        renderer = _get_renderer(args)
        for result in results:
            label = f"{result.module_id} ({result.file})"
            if result.ok:
                renderer.ok(label)
                continue
            renderer.fail(label if result.exists else f"{label}: file does not exist")
            renderer.items([f"missing table {name}" for name in result.missing_tables])
            renderer.items([f"missing column {name}" for name in result.missing_columns])
        return 1 if failing else 0

    return _with_services(args, body)


def _cmd_query(args: argparse.Namespace) -> int:
    def body(manager: ConnectionManager, _: MaintenanceService) -> int:
        result = FederatedQueryExecutor(manager).run_federated(args.sql)
        if isinstance(result, WriteResult):
            if _flag(args, "json"):
                _emit_json({"command": "query", "result": result.to_dict()})
                return 0
            renderer = _get_renderer(args)
            renderer.kv("Changes", result.changes)
            renderer.kv("Last insert rowid", result.last_insert_rowid)
            return 0
        if _flag(args, "json"):
            _emit_json({"command": "query", "rows": result})
            return 0
        renderer = _get_renderer(args)
        if not result:
            renderer.text("(no rows)")
            return 0
        headers = list(result[0])
        renderer.table(headers, [[row.get(header) for header in headers] for row in result])
        renderer.text(f"({len(result)} row(s))")
        return 0

    return _with_services(args, body)


def _cmd_schema(args: argparse.Namespace) -> int:
    def body(manager: ConnectionManager, _: MaintenanceService) -> int:
        text = FederatedQueryExecutor(manager).describe_schema(
            include_attached=not args.main_only
        )
        if _flag(args, "json"):
            _emit_json({"command": "schema", "schema": text})
            return 0
        _get_renderer(args).text(text)
        return 0

    return _with_services(args, body)


def _cmd_backup(args: argparse.Namespace) -> int:
    def body(_: ConnectionManager, maintenance: MaintenanceService) -> int:
        backups = maintenance.backup_all_for_update()
        if _flag(args, "json"):
            _emit_json({"command": "backup", "backups": [info.to_dict() for info in backups]})
            return 0
        renderer = _get_renderer(args)
        if not backups:
            renderer.warning("no module files exist yet; nothing was backed up")
            return 0
        renderer.kv("Backup", backups[0].timestamp)
        renderer.items([info.path.as_posix() for info in backups])
        return 0

    return _with_services(args, body)


def _cmd_backups(args: argparse.Namespace) -> int:
    def body(_: ConnectionManager, maintenance: MaintenanceService) -> int:
        backups = maintenance.list_update_backups()
        if _flag(args, "json"):
            _emit_json({"command": "backups", "backups": [info.to_dict() for info in backups]})
            return 0
        renderer = _get_renderer(args)
        if not backups:
            renderer.text("(no update backups)")
            return 0
        renderer.table(
            ("timestamp", "module", "file"),
            [(info.timestamp, info.module_id, info.file) for info in backups],
        )
        return 0

    return _with_services(args, body)


def _cmd_restore(args: argparse.Namespace) -> int:
    def body(_: ConnectionManager, maintenance: MaintenanceService) -> int:
        restored = maintenance.restore_all_from_update_backup(args.timestamp)
        if _flag(args, "json"):
            _emit_json(
                {
                    "command": "restore",
                    "timestamp": args.timestamp,
                    "restored": [info.to_dict() for info in restored],
                }
            )
            return 0
        renderer = _get_renderer(args)
        renderer.kv("Restored from", args.timestamp)
        renderer.items([info.file for info in restored])
        return 0

    return _with_services(args, body)


def _cmd_prune(args: argparse.Namespace) -> int:
    if args.keep is not None and args.keep < 0:
        raise CLIError("--keep must be >= 0", exit_code=2)

    def body(_: ConnectionManager, maintenance: MaintenanceService) -> int:
        removed = maintenance.delete_old_update_backups(args.keep)
        if _flag(args, "json"):
            _emit_json({"command": "prune", "removed": removed})
            return 0
        _get_renderer(args).kv("Removed backups", removed)
        return 0

    return _with_services(args, body)


def _cmd_reset(args: argparse.Namespace) -> int:
    if not args.yes:
        raise CLIError(
            f"reset deletes every row of module {args.module_id!r}; re-run with --yes",
            exit_code=2,
        )

    def body(manager: ConnectionManager, maintenance: MaintenanceService) -> int:
        try:
            descriptor = manager.registry.get(args.module_id)
        except RegistryError as exc:
            raise CLIError(str(exc), exit_code=2) from exc
        maintenance.factory_reset(descriptor.id)
        if _flag(args, "json"):
            _emit_json({"command": "reset", "module_id": descriptor.id, "file": descriptor.file})
            return 0
        _get_renderer(args).kv("Re-created", f"{descriptor.id} ({descriptor.file})")
        return 0

    return _with_services(args, body)


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = effective_config(config)

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": redacted})
        return 0

    _get_renderer(args).text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(
        json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    )


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


# ---------------------------------------------------------------------------
# Config and service helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, object] = {}
    db_dir = getattr(args, "db_dir", None)
    if isinstance(db_dir, str) and db_dir.strip():
        overrides["storage.db_dir"] = os.path.abspath(db_dir)

    try:
        return load_config(getattr(args, "config_path", None), cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _with_services(
    args: argparse.Namespace,
    body: Callable[[ConnectionManager, MaintenanceService], int],
) -> int:
    """Load config, start logging, run ``body`` and always close storage and logging."""

    config = _load_effective_config(args)
    setup_logging(config["observability"], session_id=_session_id())
    try:
        with ConnectionManager.from_config(config) as manager:
            maintenance = MaintenanceService(
                manager,
                backup_dir=config["backups"]["dir"],
                keep=int(config["backups"]["keep"]),
            )
            return body(manager, maintenance)
    finally:
        shutdown_logging()


def _session_id() -> str:
    return f"{datetime.now(tz=UTC).strftime('%Y%m%dT%H%M%SZ')}-{os.getpid()}"


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
