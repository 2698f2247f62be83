"""Typed, immutable views over a validated config mapping."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from maestro_fleet.config.schema import assert_valid_config, default_config


@dataclass(frozen=True, slots=True)
class ContainerSettings:
    prefix: str
    legacy_prefixes: tuple[str, ...] = ()

    @property
    def scan_prefixes(self) -> tuple[str, ...]:
        """Configured prefix first, then distinct legacy prefixes."""

        ordered = [self.prefix]
        for item in self.legacy_prefixes:
            if item not in ordered:
                ordered.append(item)
        return tuple(ordered)


@dataclass(frozen=True, slots=True)
class EngineSettings:
    binary: str = "docker"
    command_timeout_seconds: float | None = None
    max_concurrent_commands: int = 16
    max_workers: int = 8


@dataclass(frozen=True, slots=True)
class SandboxSettings:
    workspace_dir: str
    session_name: str
    agent_process: str
    remote_user: str
    remote_owner: str
    root_user: str
    credentials_path: str


@dataclass(frozen=True, slots=True)
class AuthSettings:
    host_credentials_path: Path
    expiring_soon_hours: float


@dataclass(frozen=True, slots=True)
class FirewallSettings:
    allowed_domains: tuple[str, ...]
    resolver_config_path: str
    allow_set: str
    upstream_dns: str
    restart_pause_seconds: float


@dataclass(frozen=True, slots=True)
class DisplaySettings:
    max_table_width: int = 160


@dataclass(frozen=True, slots=True)
class FleetSettings:
    """Everything the fleet, auth and firewall layers read from config."""

    containers: ContainerSettings
    engine: EngineSettings
    sandbox: SandboxSettings
    auth: AuthSettings
    firewall: FirewallSettings
    display: DisplaySettings
    apps: dict[str, str] = field(default_factory=dict)
    config_path: Path | None = None

    @classmethod
    def from_config(
        cls, config: dict[str, Any], *, config_path: Path | None = None
    ) -> FleetSettings:
        validated = assert_valid_config(config)
        containers = validated["containers"]
        engine = validated["engine"]
        sandbox = validated["sandbox"]
        auth = validated["auth"]
        firewall = validated["firewall"]
        return cls(
            containers=ContainerSettings(
                prefix=containers["prefix"],
                legacy_prefixes=tuple(containers["legacy_prefixes"]),
            ),
            engine=EngineSettings(
                binary=engine["binary"],
                command_timeout_seconds=engine["command_timeout_seconds"],
                max_concurrent_commands=engine["max_concurrent_commands"],
                max_workers=engine["max_workers"],
            ),
            sandbox=SandboxSettings(**sandbox),
            auth=AuthSettings(
                host_credentials_path=Path(auth["host_credentials_path"]).expanduser(),
                expiring_soon_hours=auth["expiring_soon_hours"],
            ),
            firewall=FirewallSettings(
                allowed_domains=tuple(firewall["allowed_domains"]),
                resolver_config_path=firewall["resolver_config_path"],
                allow_set=firewall["allow_set"],
                upstream_dns=firewall["upstream_dns"],
                restart_pause_seconds=firewall["restart_pause_seconds"],
            ),
            display=DisplaySettings(max_table_width=validated["display"]["max_table_width"]),
            apps=dict(validated["apps"]),
            config_path=config_path,
        )

    @classmethod
    def defaults(cls) -> FleetSettings:
        return cls.from_config(dict(default_config()))


__all__ = [
    "AuthSettings",
    "ContainerSettings",
    "DisplaySettings",
    "EngineSettings",
    "FirewallSettings",
    "FleetSettings",
    "SandboxSettings",
]
