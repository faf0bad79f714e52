"""
clic-tools — persistence layer

File: src/clic_tools/persistence/__init__.py
Last updated: 2026-10-19

Purpose
- Module storage files: handles, registry, migrations, connection manager,
  cross-database queries, maintenance and repositories.

What should be included in this file
- Nothing beyond this docstring; import from the submodules directly
  (``clic_tools.persistence.connections``, ``.federation``, ...).

Functional requirements
- Importing the package must not open or create any storage file.

Non-functional requirements
- SQLite only (stdlib ``sqlite3``); one file per business module.
"""
