"""
clic-tools — storage package root

File: src/clic_tools/__init__.py
Last updated: 2026-10-19

Purpose
- Package root for the Clic-Tools module storage layer.

What should be included in this file
- Package docstring only; public symbols live in their subpackages.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init,
  no storage files opened).

Non-functional requirements
- Keep import time fast; never import heavy submodules here.
"""
