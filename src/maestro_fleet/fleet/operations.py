"""Sandbox lifecycle operations: stop, restart, delete, and bulk stop of dormant sandboxes."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from maestro_fleet.engine.client import EngineCommandError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from maestro_fleet.engine.client import ContainerEngine
    from maestro_fleet.fleet.fetcher import SandboxRecord

logger = logging.getLogger(__name__)

RESTART_SETTLE_SECONDS: Final[float] = 2.0
VOLUME_SUFFIXES: Final[tuple[str, ...]] = ("-npm", "-uv", "-history")


class SandboxStateError(RuntimeError):
    """Raised when a sandbox is missing or not in the state an operation needs."""

    def __init__(self, name: str, state: str | None) -> None:
        self.name = name
        self.state = state
        if state is None:
            message = f"sandbox {name} not found"
        else:
            message = f"sandbox {name} is not running (status: {state})"
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class StopTally:
    stopped: tuple[str, ...] = ()
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.stopped) + len(self.failed)

    @property
    def all_stopped(self) -> bool:
        return not self.failed


def resolve_sandbox_name(name: str, prefix: str) -> str:
    """Accept either the short or the full name and return the full name."""

    if name.startswith(prefix):
        return name
    return f"{prefix}{name}"


def require_running(engine: ContainerEngine, name: str) -> None:
    state = engine.container_state(name)
    if state != "running":
        raise SandboxStateError(name, state)


def stop_sandbox(engine: ContainerEngine, name: str) -> None:
    logger.info("stopping sandbox %s", name, extra={"sandbox": name})
    engine.stop(name)


def restart_sandbox(
    engine: ContainerEngine,
    name: str,
    *,
    settle_seconds: float = RESTART_SETTLE_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Full stop + start, then pause so the session manager can come up."""

    logger.info("restarting sandbox %s", name, extra={"sandbox": name})
    engine.stop(name)
    engine.start(name)
    if settle_seconds > 0:
        sleep(settle_seconds)


def delete_sandbox(engine: ContainerEngine, name: str) -> list[str]:
    """Force-remove ``name`` with its anonymous volumes, then its named volumes.

    Named-volume removal is best-effort; the returned list holds the volumes
    that were actually removed.
    """

    logger.info("deleting sandbox %s", name, extra={"sandbox": name})
    engine.remove(name, volumes=True)

    removed: list[str] = []
    for suffix in VOLUME_SUFFIXES:
        volume = f"{name}{suffix}"
        result = engine.remove_volume(volume)
        if result.succeeded:
            removed.append(volume)
        else:
            logger.debug("volume %s not removed: %s", volume, result.detail())
    return removed


def dormant_records(records: Iterable[SandboxRecord]) -> list[SandboxRecord]:
    return [record for record in records if record.is_running and record.dormant]


def stop_dormant(engine: ContainerEngine, records: Iterable[SandboxRecord]) -> StopTally:
    """Stop every running sandbox whose agent process is gone; continue past failures."""

    stopped: list[str] = []
    failed: dict[str, str] = {}
    for record in dormant_records(records):
        try:
            engine.stop(record.name)
        except EngineCommandError as exc:
            logger.warning("failed to stop %s: %s", record.name, exc)
            failed[record.name] = str(exc)
            continue
        stopped.append(record.name)
    return StopTally(stopped=tuple(stopped), failed=failed)


__all__ = [
    "RESTART_SETTLE_SECONDS",
    "VOLUME_SUFFIXES",
    "SandboxStateError",
    "StopTally",
    "delete_sandbox",
    "dormant_records",
    "require_running",
    "resolve_sandbox_name",
    "restart_sandbox",
    "stop_dormant",
    "stop_sandbox",
]
