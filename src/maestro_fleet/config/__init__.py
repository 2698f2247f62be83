"""
maestro-fleet config package public API.

File: src/maestro_fleet/config/__init__.py

Purpose
- Export config loading/validation entrypoints, typed settings, and public error types.

Functional requirements
- Support loading from ``~/.maestro/config.yml`` + ``MAESTRO_`` env overrides.
- Fail fast with clear structured validation/load errors.

Non-functional requirements
- Keep import-time surface small and deterministic.
"""

from maestro_fleet.config.loader import (
    CONFIG_PATH_ENV,
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    ConfigLoadError,
    default_config_path,
    dump_effective_config,
    effective_config,
    load_config,
    load_yaml_file,
    normalize_paths,
)
from maestro_fleet.config.schema import (
    DEFAULT_ALLOWED_DOMAINS,
    DEFAULT_CONFIG,
    PATH_FIELDS,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    FleetConfig,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)
from maestro_fleet.config.settings import (
    AuthSettings,
    ContainerSettings,
    DisplaySettings,
    EngineSettings,
    FirewallSettings,
    FleetSettings,
    SandboxSettings,
)
from maestro_fleet.config.store import persist_allowed_domain

__all__ = [
    "CONFIG_PATH_ENV",
    "AuthSettings",
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ContainerSettings",
    "DEFAULT_ALLOWED_DOMAINS",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "DisplaySettings",
    "ENV_PREFIX",
    "EngineSettings",
    "FirewallSettings",
    "FleetConfig",
    "FleetSettings",
    "PATH_FIELDS",
    "SandboxSettings",
    "assert_valid_config",
    "default_config",
    "default_config_path",
    "dump_effective_config",
    "effective_config",
    "load_config",
    "load_yaml_file",
    "merge_config",
    "migration_guidance",
    "normalize_paths",
    "persist_allowed_domain",
    "redact_config",
    "validate_config",
]
