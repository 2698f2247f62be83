"""Stable constants shared across the fleet, auth, and firewall layers."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Sandbox naming.
DEFAULT_CONTAINER_PREFIX: Final[str] = "mcl-"
LEGACY_CONTAINER_PREFIX: Final[str] = "mcl-"

# Location id used for the control host replica.
HOST_LOCATION: Final[str] = "host"

# Paths inside each sandbox.
REMOTE_WORKSPACE_DIR: Final[str] = "/workspace"
REMOTE_CREDENTIALS_PATH: Final[str] = "/home/node/.claude/.credentials.json"
REMOTE_USER: Final[str] = "node"
REMOTE_OWNER: Final[str] = "node:node"
ROOT_USER: Final[str] = "root"
SESSION_NAME: Final[str] = "main"
AGENT_PROCESS: Final[str] = "claude"

# Resolver (dnsmasq) inside each sandbox.
RESOLVER_CONFIG_PATH: Final[str] = "/tmp/dnsmasq-firewall.conf"
ALLOW_SET_NAME: Final[str] = "allowed-domains"
UPSTREAM_DNS: Final[str] = "8.8.8.8"

# Host-side defaults.
DEFAULT_CONFIG_DIR: Final[str] = "~/.maestro"
DEFAULT_HOST_CREDENTIALS_PATH: Final[str] = "~/.maestro/.claude/.credentials.json"

# Sentinels used when a detail probe fails.
UNKNOWN_BRANCH: Final[str] = "unknown"
NO_VALUE: Final[str] = "-"
AUTH_NO_AUTH: Final[str] = "✗ NO AUTH"
AUTH_INVALID: Final[str] = "✗ INVALID"
AUTH_EXPIRED: Final[str] = "✗ EXPIRED"

# Zero-value creation time for registry rows whose timestamp does not parse.
ZERO_TIME: Final[datetime] = datetime(1, 1, 1, tzinfo=UTC)

# Credential freshness threshold used for warnings and auth labels.
EXPIRING_SOON_HOURS: Final[float] = 24.0

__all__ = [
    "AGENT_PROCESS",
    "ALLOW_SET_NAME",
    "AUTH_EXPIRED",
    "AUTH_INVALID",
    "AUTH_NO_AUTH",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONFIG_DIR",
    "DEFAULT_CONTAINER_PREFIX",
    "DEFAULT_HOST_CREDENTIALS_PATH",
    "EXPIRING_SOON_HOURS",
    "HOST_LOCATION",
    "LEGACY_CONTAINER_PREFIX",
    "NO_VALUE",
    "REMOTE_CREDENTIALS_PATH",
    "REMOTE_OWNER",
    "REMOTE_USER",
    "REMOTE_WORKSPACE_DIR",
    "RESOLVER_CONFIG_PATH",
    "ROOT_USER",
    "SESSION_NAME",
    "UNKNOWN_BRANCH",
    "UPSTREAM_DNS",
    "ZERO_TIME",
]
