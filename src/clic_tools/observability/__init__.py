"""Public observability primitives: session logging and correlation context."""

from clic_tools.observability.logging import (
    correlation_scope,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "correlation_scope",
    "setup_logging",
    "shutdown_logging",
]
