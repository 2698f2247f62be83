"""
maestro-fleet — runtime config loader.

File: src/maestro_fleet/config/loader.py

Purpose
- Build the effective config from four layers: defaults, the YAML file,
  ``MAESTRO_*`` environment variables and command-line flags.

Notes
- Precedence is CLI > env > file > defaults.
- Env var names follow the config tree: ``engine.max_workers`` is
  ``MAESTRO_ENGINE_MAX_WORKERS``; list values are comma separated.
- Host-side paths are expanded and anchored at the config file's directory.
- A missing default config file is not an error; a missing explicit one is.
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Final

import yaml

from maestro_fleet.config.schema import (
    PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from maestro_fleet.constants import DEFAULT_CONFIG_DIR

DEFAULT_CONFIG_FILE: Final[str] = "config.yml"
ENV_PREFIX: Final[str] = "MAESTRO_"
CONFIG_PATH_ENV: Final[str] = f"{ENV_PREFIX}CONFIG"

_BOOL_WORDS: Final[dict[str, bool]] = {
    **dict.fromkeys(("1", "true", "yes", "on"), True),
    **dict.fromkeys(("0", "false", "no", "off"), False),
}
_NO_ENV_SECTIONS: Final[frozenset[str]] = frozenset({"apps", "meta"})
# Leaves whose default is None still need a type for env parsing.
_NULLABLE_LEAVES: Final[dict[tuple[str, ...], type]] = {
    ("engine", "command_timeout_seconds"): float,
}


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def default_config_path(environ: Mapping[str, str] | None = None) -> Path:
    """Return ``$MAESTRO_CONFIG`` when set, else ``~/.maestro/config.yml``."""

    env_map = os.environ if environ is None else environ
    override = env_map.get(CONFIG_PATH_ENV, "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return (Path(DEFAULT_CONFIG_DIR).expanduser() / DEFAULT_CONFIG_FILE).resolve()


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with deterministic precedence: CLI > env > file > defaults.

    ``cli_overrides`` maps dotted keys (``"containers.prefix"``) to values;
    ``None`` values mean the flag was not given and are skipped.
    """

    env_map = os.environ if environ is None else environ
    explicit = config_path is not None or bool(env_map.get(CONFIG_PATH_ENV, "").strip())
    source = (
        Path(config_path).expanduser().resolve()
        if config_path is not None
        else default_config_path(env_map)
    )

    layered = assert_valid_config(
        merge_config(default_config(), load_yaml_file(source, required=explicit))
    )
    for overlay in (env_overrides(layered, env_map), _nest_dotted(cli_overrides or {})):
        if overlay:
            layered = merge_config(layered, overlay)

    return assert_valid_config(normalize_paths(layered, base_dir=source.parent))


def load_yaml_file(path: str | Path, *, required: bool) -> dict[str, Any]:
    """Parse a YAML mapping from ``path``; an empty document yields ``{}``."""

    target = Path(path)
    if not target.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {target}")
        return {}

    try:
        with target.open("r", encoding="utf-8") as handle:
            parsed = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"invalid YAML in {target}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {target}: {exc}") from exc

    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ConfigLoadError(f"config root must be a mapping: {target}")
    return parsed


def env_var_name(path: Sequence[str]) -> str:
    """``("engine", "max_workers")`` -> ``MAESTRO_ENGINE_MAX_WORKERS``."""

    return ENV_PREFIX + "_".join(part.upper() for part in path)


def env_overrides(
    current: Mapping[str, object],
    environ: Mapping[str, str],
    _path: tuple[str, ...] = (),
) -> dict[str, Any]:
    """Collect ``MAESTRO_*`` values for every scalar or list leaf of ``current``.

    The value type is taken from the leaf already present in ``current``.
    Free-form sections (``apps``, ``meta``) have no env mapping.
    """

    found: dict[str, Any] = {}
    for key, leaf in current.items():
        path = (*_path, key)
        if path[0] in _NO_ENV_SECTIONS:
            continue
        if isinstance(leaf, Mapping):
            nested = env_overrides(leaf, environ, path)
            if nested:
                found[key] = nested
            continue
        name = env_var_name(path)
        if name not in environ:
            continue
        kind = _NULLABLE_LEAVES.get(path) if leaf is None else type(leaf)
        if kind is None:
            continue
        found[key] = _parse_env(name, environ[name], kind)
    return found


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Expand ``~``/``$VAR`` in host-side path fields and anchor relative ones at ``base_dir``."""

    result = merge_config({}, config)
    targets: list[tuple[str, ...]] = list(PATH_FIELDS)
    apps = result.get("apps")
    if isinstance(apps, dict):
        targets.extend(("apps", name) for name in sorted(apps))

    for section, key in targets:
        holder = result.get(section)
        if isinstance(holder, dict) and isinstance(holder.get(key), str):
            holder[key] = _host_path(holder[key], base_dir)
    return result


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _parse_env(name: str, raw: str, kind: type) -> object:
    text = raw.strip()
    if kind is bool:
        if text.lower() not in _BOOL_WORDS:
            raise ConfigLoadError(f"{name}: expected a boolean (true/false/yes/no/on/off/1/0)")
        return _BOOL_WORDS[text.lower()]
    if kind is list:
        return [item.strip() for item in text.split(",") if item.strip()]
    if kind in (int, float):
        try:
            return kind(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{name}: expected {kind.__name__}, got {raw!r}") from exc
    return text


def _nest_dotted(flat: Mapping[str, object]) -> dict[str, Any]:
    nested: dict[str, Any] = {}
    for dotted, value in flat.items():
        if value is None:
            continue
        *parents, leaf = dotted.split(".")
        if not leaf or not all(parents):
            raise ConfigLoadError(f"invalid override key {dotted!r}")
        cursor = nested
        for part in parents:
            cursor = cursor.setdefault(part, {})
        cursor[leaf] = value
    return nested


def _host_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "CONFIG_PATH_ENV",
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "default_config_path",
    "dump_effective_config",
    "effective_config",
    "env_overrides",
    "env_var_name",
    "load_config",
    "load_yaml_file",
    "normalize_paths",
]
