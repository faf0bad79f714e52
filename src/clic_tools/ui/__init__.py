"""UI package exports for the CLI and its rendering layer."""

from clic_tools.ui.cli import CLIError, build_parser, run_cli
from clic_tools.ui.render import CLIRenderer, create_renderer

__all__ = [
    "CLIError",
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "run_cli",
]
