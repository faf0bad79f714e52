"""In-process checks of the clic-db router, exit-code contract and renderer."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
import structlog

from clic_tools import main as main_module
from clic_tools.main import ExitCode, cli_entrypoint
from clic_tools.observability import shutdown_logging
from clic_tools.ui.cli import build_parser
from clic_tools.ui.render import CLIRenderer

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _isolated_workdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CLIC_SECURITY_PASSWORD_HASH_ROUNDS", "4")
    monkeypatch.setenv("NO_COLOR", "1")
    yield tmp_path
    shutdown_logging()
    structlog.reset_defaults()


def test_parser_lists_every_command() -> None:
    parser = build_parser()
    help_text = parser.format_help()

    for command in (
        "status",
        "migrate",
        "audit",
        "query",
        "schema",
        "backup",
        "backups",
        "restore",
        "prune",
        "reset",
        "config",
    ):
        assert command in help_text


def test_status_json_succeeds(capsys: pytest.CaptureFixture[str], tmp_path: Path) -> None:
    assert cli_entrypoint(["status", "--json"]) == ExitCode.SUCCESS

    payload = json.loads(capsys.readouterr().out)
    assert payload["command"] == "status"
    assert len(payload["modules"]) == 7
    assert (tmp_path / "dbs" / "intratool.db").is_file()


def test_migrate_single_module_human_output(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["migrate", "--module", "ai-engine"]) == ExitCode.SUCCESS

    assert "ai-engine: ok" in capsys.readouterr().out


def test_schema_main_only(capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_entrypoint(["schema", "--main-only"]) == ExitCode.SUCCESS

    out = capsys.readouterr().out
    assert 'Table "users":' in out
    assert "warehouse_management" not in out


@pytest.mark.parametrize(
    ("argv", "expected"),
    [
        (["reset", "--module", "warehouse-management"], ExitCode.CONFIG_ERROR),
        (["prune", "--keep", "-1"], ExitCode.CONFIG_ERROR),
        (["migrate", "--module", "payroll"], ExitCode.CONFIG_ERROR),
        (["restore", "not-a-backup"], ExitCode.STORAGE_ERROR),
        (["query", "SELEC nonsense"], ExitCode.STORAGE_ERROR),
        (["no-such-command"], ExitCode.CONFIG_ERROR),
    ],
)
def test_failures_map_to_exit_codes(
    argv: list[str], expected: ExitCode, capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli_entrypoint(argv) == expected

    assert capsys.readouterr().err.strip()


def test_unexpected_exceptions_are_internal_errors(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def explode(argv: object) -> int:
        raise RuntimeError("boom")

    monkeypatch.setattr("clic_tools.ui.cli.run_cli", explode)

    assert cli_entrypoint(["status"]) == ExitCode.INTERNAL_ERROR
    assert "RuntimeError: boom" in capsys.readouterr().err


def test_unknown_exit_codes_are_normalized(capsys: pytest.CaptureFixture[str]) -> None:
    assert main_module._normalize_exit_code(None) == ExitCode.SUCCESS
    assert main_module._normalize_exit_code(1) == ExitCode.FAILED
    assert main_module._normalize_exit_code(99) == ExitCode.INTERNAL_ERROR
    assert main_module._normalize_exit_code("fatal") == ExitCode.INTERNAL_ERROR
    assert "fatal" in capsys.readouterr().err


def test_renderer_prints_plain_tables_and_markers(capsys: pytest.CaptureFixture[str]) -> None:
    renderer = CLIRenderer(no_color=True)

    renderer.table(("module", "state"), [("ai-engine", "ok"), ("[bold]x[/bold]", None)])
    renderer.ok("checked")
    renderer.fail("broken")
    renderer.items(["a", "b"], prefix="+ ")

    out = capsys.readouterr().out
    assert "ai-engine" in out
    assert "[bold]x[/bold]" in out
    assert "  OK    checked" in out
    assert "  FAIL  broken" in out
    assert "+ a" in out
