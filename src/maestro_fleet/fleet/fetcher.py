"""
maestro-fleet — composite fleet state fetcher.

File: src/maestro_fleet/fleet/fetcher.py

Purpose
- Build one ``SandboxRecord`` per prefix-matching sandbox by running the
  read-only probes concurrently.

Functional requirements
- All rows run concurrently; within a row all probes run concurrently.
- The call returns only after every probe of every row has finished.
- A failing probe degrades to its sentinel; a row is never dropped.
- Non-running rows run only the branch probe.
- Fails only when the registry query fails.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Final

from maestro_fleet.auth.credentials import current_time_ms
from maestro_fleet.constants import AUTH_NO_AUTH, NO_VALUE, UNKNOWN_BRANCH
from maestro_fleet.fleet.probes import ProbeFailure, SandboxProbes
from maestro_fleet.fleet.registry import RegistryRow, query_registry, short_name
from maestro_fleet.utils.concurrency import WorkerPool

if TYPE_CHECKING:
    from maestro_fleet.config.settings import FleetSettings
    from maestro_fleet.engine.client import ContainerEngine

logger = logging.getLogger(__name__)

# field name -> value substituted when its probe fails
PROBE_SENTINELS: Final[dict[str, object]] = {
    "branch": UNKNOWN_BRANCH,
    "needs_attention": False,
    "dormant": True,
    "auth_status": AUTH_NO_AUTH,
    "last_activity": NO_VALUE,
    "git_status": NO_VALUE,
}


@dataclass(frozen=True, slots=True)
class SandboxRecord:
    """Composite per-sandbox status, rebuilt on every query."""

    name: str
    short_name: str
    state: str
    status_text: str
    created_at: datetime
    branch: str = UNKNOWN_BRANCH
    dormant: bool = True
    needs_attention: bool = False
    auth_status: str = NO_VALUE
    last_activity: str = NO_VALUE
    git_status: str = NO_VALUE

    @property
    def is_running(self) -> bool:
        return self.state == "running"


class _RecordBuilder:
    """Mutable per-row field store; probe threads write under one lock."""

    __slots__ = ("_fields", "_lock", "_row", "_short")

    def __init__(self, row: RegistryRow, prefix: str) -> None:
        self._row = row
        self._short = short_name(row.name, prefix)
        self._lock = threading.Lock()
        self._fields: dict[str, Any] = {}

    def set(self, field_name: str, value: object) -> None:
        with self._lock:
            self._fields[field_name] = value

    def build(self) -> SandboxRecord:
        with self._lock:
            fields = dict(self._fields)
        return SandboxRecord(
            name=self._row.name,
            short_name=self._short,
            state=self._row.state,
            status_text=self._row.status_text,
            created_at=self._row.created_at,
            **fields,
        )


def fetch_fleet(
    engine: ContainerEngine,
    prefix: str,
    *,
    settings: FleetSettings,
    include_stopped: bool = True,
    now_provider: Callable[[], int] | None = None,
) -> list[SandboxRecord]:
    """Return one record per prefix-matching sandbox, in registry order.

    ``now_provider`` returns the current time in epoch milliseconds.
    """

    rows = query_registry(engine, prefix, include_stopped=include_stopped)
    if not rows:
        return []

    probes = SandboxProbes(
        engine,
        settings.sandbox,
        expiring_soon_hours=settings.auth.expiring_soon_hours,
        now_ms=now_provider or current_time_ms,
    )
    pool = WorkerPool(max_workers=settings.engine.max_workers, thread_name_prefix="fleet-row")
    outcomes = pool.run_all([_row_task(probes, row, prefix) for row in rows])

    records: list[SandboxRecord] = []
    for row, outcome in zip(rows, outcomes, strict=True):
        if outcome.ok and outcome.value is not None:
            records.append(outcome.value)
            continue
        logger.warning(
            "building record for %s failed; using sentinels",
            row.name,
            exc_info=outcome.error,
            extra={"sandbox": row.name},
        )
        records.append(_sentinel_record(row, prefix))
    return records


def build_record(probes: SandboxProbes, row: RegistryRow, prefix: str) -> SandboxRecord:
    """Run the probes for one row concurrently and assemble its record."""

    builder = _RecordBuilder(row, prefix)
    plan: list[tuple[str, Callable[[str], object]]] = [("branch", probes.branch)]
    if row.is_running:
        plan.extend(
            [
                ("needs_attention", probes.attention),
                ("dormant", lambda name: not probes.agent_alive(name)),
                ("auth_status", probes.auth),
                ("last_activity", probes.activity),
                ("git_status", probes.git_status),
            ]
        )
    else:
        builder.set("dormant", True)
        builder.set("needs_attention", False)

    tasks = [_probe_task(builder, field_name, probe, row.name) for field_name, probe in plan]
    pool = WorkerPool(max_workers=len(tasks), thread_name_prefix="fleet-probe")
    for (field_name, _), outcome in zip(plan, pool.run_all(tasks), strict=True):
        if outcome.ok:
            continue
        logger.warning(
            "%s probe for %s raised unexpectedly",
            field_name,
            row.name,
            exc_info=outcome.error,
            extra={"sandbox": row.name},
        )
        builder.set(field_name, PROBE_SENTINELS[field_name])
    return builder.build()


def _row_task(probes: SandboxProbes, row: RegistryRow, prefix: str) -> Callable[[], SandboxRecord]:
    def task() -> SandboxRecord:
        return build_record(probes, row, prefix)

    return task


def _probe_task(
    builder: _RecordBuilder,
    field_name: str,
    probe: Callable[[str], object],
    name: str,
) -> Callable[[], None]:
    def task() -> None:
        try:
            value = probe(name)
        except ProbeFailure as exc:
            logger.debug("%s", exc, extra={"sandbox": name})
            value = PROBE_SENTINELS[field_name]
        builder.set(field_name, value)

    return task


def _sentinel_record(row: RegistryRow, prefix: str) -> SandboxRecord:
    return SandboxRecord(
        name=row.name,
        short_name=short_name(row.name, prefix),
        state=row.state,
        status_text=row.status_text,
        created_at=row.created_at,
        branch=UNKNOWN_BRANCH,
        dormant=True,
        needs_attention=False,
        auth_status=AUTH_NO_AUTH if row.is_running else NO_VALUE,
        last_activity=NO_VALUE,
        git_status=NO_VALUE,
    )


__all__ = [
    "PROBE_SENTINELS",
    "SandboxRecord",
    "build_record",
    "fetch_fleet",
]
