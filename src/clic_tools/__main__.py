"""Module entrypoint for ``python -m clic_tools``."""

from __future__ import annotations

from clic_tools.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
