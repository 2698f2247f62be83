"""
maestro-fleet — configuration schema and validation.

File: src/maestro_fleet/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.

What should be included in this file
- Schema versioning and migration guidance.
- Validation rules for required fields, types, enums, and numeric constraints.
- Deterministic deep-merge helpers.
- Redaction rules for sensitive fields.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Every section is a fixed, enumerated set of keys; ``apps`` is the single
  free-form name -> path map.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from maestro_fleet.constants import (
    AGENT_PROCESS,
    ALLOW_SET_NAME,
    CONFIG_SCHEMA_VERSION,
    DEFAULT_CONTAINER_PREFIX,
    DEFAULT_HOST_CREDENTIALS_PATH,
    EXPIRING_SOON_HOURS,
    LEGACY_CONTAINER_PREFIX,
    REMOTE_CREDENTIALS_PATH,
    REMOTE_OWNER,
    REMOTE_USER,
    REMOTE_WORKSPACE_DIR,
    RESOLVER_CONFIG_PATH,
    ROOT_USER,
    SESSION_NAME,
    UPSTREAM_DNS,
)

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_APP_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {
        "secret",
        "token",
        "password",
        "passwd",
        "apikey",
        "private",
        "credential",
        "oauth",
    }
)
_SENSITIVE_KEY_PHRASES: Final[tuple[str, ...]] = (
    "api_key",
    "access_token",
    "refresh_token",
    "client_secret",
    "private_key",
    "password",
    "secret",
)

# Config paths that should be ``~``-expanded by the loader.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("auth", "host_credentials_path"),
    ("observability", "log_dir"),
)

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
ENGINE_BINARIES: Final[tuple[str, ...]] = ("docker", "podman")

DEFAULT_ALLOWED_DOMAINS: Final[tuple[str, ...]] = (
    "github.com",
    "api.github.com",
    "registry.npmjs.org",
    "pypi.org",
    "files.pythonhosted.org",
    "api.anthropic.com",
    "statsig.anthropic.com",
    "sentry.io",
)


class MetaConfig(TypedDict):
    schema_version: int


class ContainersConfig(TypedDict):
    prefix: str
    legacy_prefixes: list[str]


class EngineConfig(TypedDict):
    binary: Literal["docker", "podman"]
    command_timeout_seconds: float | None
    max_concurrent_commands: int
    max_workers: int


class SandboxConfig(TypedDict):
    workspace_dir: str
    session_name: str
    agent_process: str
    remote_user: str
    remote_owner: str
    root_user: str
    credentials_path: str


class AuthConfig(TypedDict):
    host_credentials_path: str
    expiring_soon_hours: float


class FirewallConfig(TypedDict):
    allowed_domains: list[str]
    resolver_config_path: str
    allow_set: str
    upstream_dns: str
    restart_pause_seconds: float


class DisplayConfig(TypedDict):
    max_table_width: int


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stderr: bool
    redact_secrets: bool


class FleetConfig(TypedDict):
    meta: MetaConfig
    containers: ContainersConfig
    engine: EngineConfig
    sandbox: SandboxConfig
    auth: AuthConfig
    firewall: FirewallConfig
    display: DisplayConfig
    observability: ObservabilityConfig
    apps: dict[str, str]


DEFAULT_CONFIG: Final[FleetConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "containers": {
        "prefix": DEFAULT_CONTAINER_PREFIX,
        "legacy_prefixes": [LEGACY_CONTAINER_PREFIX],
    },
    "engine": {
        "binary": "docker",
        "command_timeout_seconds": None,
        "max_concurrent_commands": 16,
        "max_workers": 8,
    },
    "sandbox": {
        "workspace_dir": REMOTE_WORKSPACE_DIR,
        "session_name": SESSION_NAME,
        "agent_process": AGENT_PROCESS,
        "remote_user": REMOTE_USER,
        "remote_owner": REMOTE_OWNER,
        "root_user": ROOT_USER,
        "credentials_path": REMOTE_CREDENTIALS_PATH,
    },
    "auth": {
        "host_credentials_path": DEFAULT_HOST_CREDENTIALS_PATH,
        "expiring_soon_hours": EXPIRING_SOON_HOURS,
    },
    "firewall": {
        "allowed_domains": list(DEFAULT_ALLOWED_DOMAINS),
        "resolver_config_path": RESOLVER_CONFIG_PATH,
        "allow_set": ALLOW_SET_NAME,
        "upstream_dns": UPSTREAM_DNS,
        "restart_pause_seconds": 0.2,
    },
    "display": {
        "max_table_width": 160,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "~/.maestro/logs",
        "log_to_stderr": False,
        "redact_secrets": True,
    },
    "apps": {},
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation result with normalized config when no issues were found."""

    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> FleetConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade config.yml to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the maestro-fleet runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``.

    Lists are replaced, not concatenated.
    """

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return deterministic redacted representation for logs."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    validators: dict[str, Callable[[dict[str, object], str, _IssueCollector], dict[str, Any]]] = {
        "meta": _validate_meta,
        "containers": _validate_containers,
        "engine": _validate_engine,
        "sandbox": _validate_sandbox,
        "auth": _validate_auth,
        "firewall": _validate_firewall,
        "display": _validate_display,
        "observability": _validate_observability,
        "apps": _validate_apps,
    }
    _reject_unknown_keys(payload, set(validators), "", issues)
    _require_keys(payload, set(validators), "", issues)

    out: dict[str, Any] = {}
    for key in sorted(validators):
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is None:
            continue
        out[key] = validators[key](section, key, issues)
    return out


def _validate_meta(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"schema_version"}, path, issues)
    _require_keys(payload, {"schema_version"}, path, issues)

    out: dict[str, Any] = {}
    if "schema_version" in payload:
        parsed = _as_int(
            payload["schema_version"], _join(path, "schema_version"), issues, minimum=1
        )
        if parsed is not None:
            out["schema_version"] = parsed
            if parsed != ConfigSchemaVersion:
                issues.add(_join(path, "schema_version"), migration_guidance(parsed))
    return out


def _validate_containers(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"prefix", "legacy_prefixes"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "prefix" in payload:
        out["prefix"] = _as_str(payload["prefix"], _join(path, "prefix"), issues)
    if "legacy_prefixes" in payload:
        out["legacy_prefixes"] = _as_str_list(
            payload["legacy_prefixes"], _join(path, "legacy_prefixes"), issues
        )
    return out


def _validate_engine(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"binary", "command_timeout_seconds", "max_concurrent_commands", "max_workers"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed - {"command_timeout_seconds"}, path, issues)

    out: dict[str, Any] = {}
    if "binary" in payload:
        out["binary"] = _as_enum(
            payload["binary"], _join(path, "binary"), issues, allowed_values=ENGINE_BINARIES
        )
    timeout = payload.get("command_timeout_seconds")
    if timeout is None:
        out["command_timeout_seconds"] = None
    else:
        parsed_timeout = _as_float(timeout, _join(path, "command_timeout_seconds"), issues)
        if parsed_timeout is not None and parsed_timeout <= 0:
            issues.add(_join(path, "command_timeout_seconds"), "must be > 0")
        out["command_timeout_seconds"] = parsed_timeout
    for key in ("max_concurrent_commands", "max_workers"):
        if key in payload:
            out[key] = _as_int(payload[key], _join(path, key), issues, minimum=1)
    return out


def _validate_sandbox(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {
        "workspace_dir",
        "session_name",
        "agent_process",
        "remote_user",
        "remote_owner",
        "root_user",
        "credentials_path",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in sorted(allowed):
        if key in payload:
            out[key] = _as_path_text(payload[key], _join(path, key), issues)
    for key in ("workspace_dir", "credentials_path"):
        value = out.get(key)
        if isinstance(value, str) and not value.startswith("/"):
            issues.add(_join(path, key), "must be an absolute path inside the sandbox")
    return out


def _validate_auth(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"host_credentials_path", "expiring_soon_hours"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "host_credentials_path" in payload:
        out["host_credentials_path"] = _as_path_text(
            payload["host_credentials_path"], _join(path, "host_credentials_path"), issues
        )
    if "expiring_soon_hours" in payload:
        out["expiring_soon_hours"] = _as_float(
            payload["expiring_soon_hours"], _join(path, "expiring_soon_hours"), issues, minimum=0.0
        )
    return out


def _validate_firewall(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {
        "allowed_domains",
        "resolver_config_path",
        "allow_set",
        "upstream_dns",
        "restart_pause_seconds",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "allowed_domains" in payload:
        out["allowed_domains"] = _as_str_list(
            payload["allowed_domains"], _join(path, "allowed_domains"), issues
        )
    for key in ("resolver_config_path", "allow_set", "upstream_dns"):
        if key in payload:
            out[key] = _as_path_text(payload[key], _join(path, key), issues)
    if "restart_pause_seconds" in payload:
        out["restart_pause_seconds"] = _as_float(
            payload["restart_pause_seconds"],
            _join(path, "restart_pause_seconds"),
            issues,
            minimum=0.0,
        )
    return out


def _validate_display(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    _reject_unknown_keys(payload, {"max_table_width"}, path, issues)
    _require_keys(payload, {"max_table_width"}, path, issues)

    out: dict[str, Any] = {}
    if "max_table_width" in payload:
        out["max_table_width"] = _as_int(
            payload["max_table_width"], _join(path, "max_table_width"), issues, minimum=40
        )
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stderr", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        level = payload["log_level"]
        if isinstance(level, str):
            level = level.upper()
        out["log_level"] = _as_enum(
            level, _join(path, "log_level"), issues, allowed_values=LOG_LEVELS
        )
    if "log_dir" in payload:
        out["log_dir"] = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
    for key in ("log_to_stderr", "redact_secrets"):
        if key in payload:
            out[key] = _as_bool(payload[key], _join(path, key), issues)
    return out


def _validate_apps(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(payload):
        item_path = _join(path, name)
        if not _APP_NAME_PATTERN.fullmatch(name):
            issues.add(item_path, "app name must be a plain file name")
            continue
        source = _as_path_text(payload[name], item_path, issues)
        if source is not None:
            out[name] = source
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected list, got {type(value).__name__}")
        return None
    out: list[str] = []
    for index, item in enumerate(value):
        parsed = _as_str(item, f"{path}[{index}]", issues)
        if parsed is not None:
            out.append(parsed)
    return out


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in config.yml")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if normalized.endswith("_path"):
        return False
    if any(phrase in normalized for phrase in _SENSITIVE_KEY_PHRASES):
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        out[key] = _deep_copy_value(value[key])
    return out


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, str):
                out[key] = _deep_copy_value(item)
        return out
    if isinstance(value, (list, tuple)):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            item = value[key]
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(item, key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "DEFAULT_ALLOWED_DOMAINS",
    "DEFAULT_CONFIG",
    "ENGINE_BINARIES",
    "LOG_LEVELS",
    "PATH_FIELDS",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "FleetConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
