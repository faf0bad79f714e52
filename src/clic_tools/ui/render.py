"""Output rendering for the clic-db CLI.

File: src/clic_tools/ui/render.py
Last updated: 2026-10-19

Purpose
- Provide a thin rendering layer for CLI output on top of ``rich``.
- Respect NO_COLOR environment variable and --no-color CLI flag.

What should be included in this file
- CLIRenderer class with methods for common output patterns.
- Factory function to create a renderer with appropriate settings.

Functional requirements
- Output must stay readable (no markup, no color) when piped or captured.
- All public methods must be safe to call in any environment.

Non-functional requirements
- Cell text is never truncated; long values fold onto extra lines.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from collections.abc import Sequence


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    """Thin CLI output renderer backed by a ``rich`` console."""

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)
        self._console = Console(
            no_color=not self._color,
            highlight=False,
            soft_wrap=True,
            emoji=False,
        )

    def heading(self, text: str) -> None:
        self._console.print(text, style="bold" if self._color else None, markup=False)

    def kv(self, key: str, value: object) -> None:
        self._console.print(f"{key}: {value}", markup=False)

    def text(self, line: str) -> None:
        self._console.print(line, markup=False)

    def blank(self) -> None:
        self._console.print()

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._console.print()
        self.heading(title)

    def warning(self, text: str) -> None:
        self._console.print(
            f"  Warning: {text}", style="yellow" if self._color else None, markup=False
        )

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            self._console.print(f"  {prefix}{entry}", markup=False)

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[object]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a table; nothing is printed for an empty row set."""

        if not rows:
            return
        if title:
            self.section(title)
        table = Table(
            show_header=True,
            header_style="bold" if self._color else None,
            show_edge=False,
            box=None,
            pad_edge=False,
        )
        for header in headers:
            table.add_column(header, overflow="fold")
        for row in rows:
            cells = [Text("" if cell is None else str(cell)) for cell in row]
            cells.extend(Text("") for _ in range(len(headers) - len(cells)))
            table.add_row(*cells[: len(headers)])
        self._console.print(table)

    def ok(self, label: str) -> None:
        self._console.print(
            f"  OK    {label}", style="green" if self._color else None, markup=False
        )

    def fail(self, label: str) -> None:
        self._console.print(f"  FAIL  {label}", style="red" if self._color else None, markup=False)


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
