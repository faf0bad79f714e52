"""
clic-tools — integration test package

File: tests/integration/__init__.py
Last updated: 2026-10-19

Purpose
- Test package marker file.

Functional requirements
- Must not import clic_tools at import time; these tests drive the CLI in a subprocess.

Non-functional requirements
- Every test works inside its own temporary directory.
"""
