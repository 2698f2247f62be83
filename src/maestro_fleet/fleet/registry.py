"""Sandbox registry query: one bulk engine listing, filtered by name prefix."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Final

from maestro_fleet.constants import ZERO_TIME

if TYPE_CHECKING:
    from maestro_fleet.engine.client import ContainerEngine

logger = logging.getLogger(__name__)

RUNNING_STATE: Final[str] = "running"
CREATED_AT_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S %z"

_FIELD_COUNT: Final[int] = 4


@dataclass(frozen=True, slots=True)
class RegistryRow:
    """One prefix-matching row of the bulk listing."""

    name: str
    status_text: str
    state: str
    created_at: datetime

    @property
    def is_running(self) -> bool:
        return self.state == RUNNING_STATE


def short_name(name: str, prefix: str) -> str:
    """Strip one leading ``prefix`` from ``name``; return ``name`` unchanged otherwise."""

    if prefix and name.startswith(prefix):
        return name[len(prefix) :]
    return name


def parse_created_at(text: str) -> datetime:
    """Parse ``YYYY-MM-DD HH:MM:SS ±HHMM ZONE``; ``ZERO_TIME`` when unparseable.

    The trailing zone abbreviation is informational; the numeric offset wins.
    """

    parts = text.strip().split()
    if len(parts) < 3:
        return ZERO_TIME
    try:
        return datetime.strptime(" ".join(parts[:3]), CREATED_AT_FORMAT)
    except ValueError:
        return ZERO_TIME


def parse_registry_output(text: str, prefix: str) -> list[RegistryRow]:
    rows: list[RegistryRow] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        fields = line.split("\t")
        if len(fields) < _FIELD_COUNT:
            logger.debug("skipping malformed registry row: %r", line)
            continue
        name = fields[0].strip()
        if not name.startswith(prefix):
            continue
        rows.append(
            RegistryRow(
                name=name,
                status_text=fields[1].strip(),
                state=fields[2].strip(),
                created_at=parse_created_at(fields[3]),
            )
        )
    return rows


def query_registry(
    engine: ContainerEngine, prefix: str, *, include_stopped: bool = True
) -> list[RegistryRow]:
    """Issue the bulk listing and return prefix-matching rows in engine order.

    Raises :class:`~maestro_fleet.engine.EngineUnavailableError` when the
    listing itself fails. An empty listing is a valid empty result.
    """

    output = engine.list_containers(include_stopped=include_stopped)
    rows = parse_registry_output(output, prefix)
    logger.debug("registry query matched %d sandbox(es) for prefix %r", len(rows), prefix)
    return rows


__all__ = [
    "CREATED_AT_FORMAT",
    "RUNNING_STATE",
    "RegistryRow",
    "parse_created_at",
    "parse_registry_output",
    "query_registry",
    "short_name",
]
