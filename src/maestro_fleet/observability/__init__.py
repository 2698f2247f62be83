"""
maestro-fleet observability package.

File: src/maestro_fleet/observability/__init__.py

Purpose
- Export per-run JSON-lines logging setup and the sandbox/location scope helper.
"""

from maestro_fleet.observability.logging import (
    correlation_scope,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "correlation_scope",
    "setup_logging",
    "shutdown_logging",
]
