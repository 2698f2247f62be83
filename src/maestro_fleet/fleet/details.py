"""Single-sandbox detail view built from structured inspect output plus the row probes."""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Final

from maestro_fleet.auth.credentials import current_time_ms
from maestro_fleet.constants import NO_VALUE, ZERO_TIME
from maestro_fleet.fleet.fetcher import build_record
from maestro_fleet.fleet.probes import SandboxProbes, format_duration
from maestro_fleet.fleet.registry import RegistryRow, short_name

if TYPE_CHECKING:
    from maestro_fleet.config.settings import FleetSettings
    from maestro_fleet.engine.client import ContainerEngine

LOG_TAIL_LINES: Final[int] = 50
LOGS_UNAVAILABLE: Final[str] = "(logs unavailable)"
UNLIMITED: Final[str] = "unlimited"
SENSITIVE_ENV_MARKERS: Final[tuple[str, ...]] = ("TOKEN", "SECRET", "PASSWORD")

_RFC3339_FRACTION = re.compile(r"\.(\d+)")
_BYTES_PER_GIB: Final[float] = 1024.0**3


@dataclass(frozen=True, slots=True)
class SandboxDetails:
    name: str
    short_name: str
    status: str
    uptime: str
    cpus: str
    memory: str
    ip_address: str
    ports: tuple[str, ...]
    volumes: tuple[str, ...]
    environment: tuple[str, ...]
    branch: str
    git_status: str
    auth_status: str
    last_activity: str
    recent_logs: str


def fetch_sandbox_details(
    engine: ContainerEngine,
    name: str,
    *,
    settings: FleetSettings,
    now_provider: Callable[[], int] | None = None,
) -> SandboxDetails:
    """Inspect ``name`` and combine it with the status probes.

    Raises :class:`~maestro_fleet.engine.EngineCommandError` when the sandbox
    cannot be inspected; every other gap degrades to a placeholder.
    """

    now_ms = now_provider or current_time_ms
    data = engine.inspect(name)
    state = _mapping(data.get("State"))
    host_config = _mapping(data.get("HostConfig"))
    network = _mapping(data.get("NetworkSettings"))
    config = _mapping(data.get("Config"))

    status = str(state.get("Status") or "unknown")
    prefix = settings.containers.prefix

    row = RegistryRow(
        name=name,
        status_text=status,
        state=status,
        created_at=parse_rfc3339(str(data.get("Created") or "")),
    )
    probes = SandboxProbes(
        engine,
        settings.sandbox,
        expiring_soon_hours=settings.auth.expiring_soon_hours,
        now_ms=now_ms,
    )
    record = build_record(probes, row, prefix)

    logs = engine.logs(name, tail=LOG_TAIL_LINES)
    recent_logs = logs.stdout + logs.stderr if logs.succeeded else LOGS_UNAVAILABLE

    return SandboxDetails(
        name=name,
        short_name=short_name(name, prefix),
        status=status,
        uptime=_uptime(state.get("StartedAt"), now_ms()),
        cpus=_cpus(host_config.get("NanoCpus")),
        memory=_memory(host_config.get("Memory")),
        ip_address=str(network.get("IPAddress") or ""),
        ports=_ports(network.get("Ports")),
        volumes=_mounts(data.get("Mounts")),
        environment=filter_environment(config.get("Env")),
        branch=record.branch,
        git_status=record.git_status,
        auth_status=record.auth_status if record.is_running else NO_VALUE,
        last_activity=record.last_activity,
        recent_logs=recent_logs,
    )


def parse_rfc3339(text: str) -> datetime:
    """Parse engine timestamps with up to nanosecond precision; ``ZERO_TIME`` on failure."""

    raw = text.strip()
    if not raw:
        return ZERO_TIME
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    raw = _RFC3339_FRACTION.sub(lambda match: "." + match.group(1)[:6].ljust(6, "0"), raw, 1)
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return ZERO_TIME
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def filter_environment(env: object) -> tuple[str, ...]:
    if not isinstance(env, list):
        return ()
    return tuple(
        entry
        for entry in env
        if isinstance(entry, str)
        and not any(marker in entry.upper() for marker in SENSITIVE_ENV_MARKERS)
    )


def _mapping(value: object) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _uptime(started_at: object, now_ms: int) -> str:
    if not isinstance(started_at, str):
        return NO_VALUE
    started = parse_rfc3339(started_at)
    if started.year <= 1:
        return NO_VALUE
    return format_duration(now_ms / 1000.0 - started.timestamp())


def _cpus(nano_cpus: object) -> str:
    if isinstance(nano_cpus, (int, float)) and not isinstance(nano_cpus, bool) and nano_cpus > 0:
        return f"{nano_cpus / 1e9:.1f}"
    return UNLIMITED


def _memory(memory: object) -> str:
    if isinstance(memory, (int, float)) and not isinstance(memory, bool) and memory > 0:
        return f"{memory / _BYTES_PER_GIB:.1f} GB"
    return UNLIMITED


def _ports(ports: object) -> tuple[str, ...]:
    if not isinstance(ports, Mapping):
        return ()
    out: list[str] = []
    for container_port in sorted(ports):
        bindings = ports[container_port]
        if not isinstance(bindings, list):
            continue
        for binding in bindings:
            if isinstance(binding, Mapping) and binding.get("HostPort"):
                out.append(f"{binding['HostPort']} -> {container_port}")
    return tuple(out)


def _mounts(mounts: object) -> tuple[str, ...]:
    if not isinstance(mounts, list):
        return ()
    return tuple(
        f"{mount.get('Source', '')} -> {mount.get('Destination', '')}"
        for mount in mounts
        if isinstance(mount, Mapping)
    )


__all__ = [
    "LOGS_UNAVAILABLE",
    "LOG_TAIL_LINES",
    "SandboxDetails",
    "fetch_sandbox_details",
    "filter_environment",
    "parse_rfc3339",
]
