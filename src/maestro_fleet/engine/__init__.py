"""
maestro-fleet — container-engine boundary

File: src/maestro_fleet/engine/__init__.py

Purpose
- Opaque command-execution boundary used by every fleet, auth, and firewall operation.

Functional requirements
- Nonzero exit is an operation failure; a missing engine binary is a failed result.
- Concurrent external-process spawns are capped by the default runner.
"""

from maestro_fleet.engine.client import (
    REGISTRY_FORMAT,
    ContainerEngine,
    EngineBinary,
    EngineCommandError,
    EngineError,
    EngineUnavailableError,
)
from maestro_fleet.engine.runner import CommandResult, CommandRunner, SubprocessCommandRunner

__all__ = [
    "REGISTRY_FORMAT",
    "CommandResult",
    "CommandRunner",
    "ContainerEngine",
    "EngineBinary",
    "EngineCommandError",
    "EngineError",
    "EngineUnavailableError",
    "SubprocessCommandRunner",
]
