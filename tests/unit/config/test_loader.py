"""
maestro-fleet — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, YAML, env overrides, and CLI overrides.

What this test file should cover
- Precedence: CLI > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
- Redacted effective config dumping.

Functional requirements
- Works offline without a home-directory config file.

Non-functional requirements
- Deterministic output across repeated loads.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from maestro_fleet.config import FleetSettings
from maestro_fleet.config.loader import (
    ConfigLoadError,
    default_config_path,
    dump_effective_config,
    env_overrides,
    env_var_name,
    load_config,
    load_yaml_file,
)
from maestro_fleet.config.schema import ConfigValidationError

REPO_ROOT = Path(__file__).resolve().parents[3]


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    empty_path = tmp_path / "empty.yml"
    _write_config(empty_path, "")
    _write_config(config_path, "engine:\n  max_workers: 4\n")

    default_loaded = load_config(empty_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"MAESTRO_ENGINE_MAX_WORKERS": "6"})
    cli_loaded = load_config(
        config_path,
        environ={"MAESTRO_ENGINE_MAX_WORKERS": "6"},
        cli_overrides={"engine.max_workers": 7},
    )

    assert default_loaded["engine"]["max_workers"] == 8
    assert file_loaded["engine"]["max_workers"] == 4
    assert env_loaded["engine"]["max_workers"] == 6
    assert cli_loaded["engine"]["max_workers"] == 7


def test_env_mapping_coerces_lists_booleans_and_optional_timeout(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "MAESTRO_CONTAINERS_LEGACY_PREFIXES": "old-, older-",
            "MAESTRO_OBSERVABILITY_LOG_TO_STDERR": "yes",
            "MAESTRO_ENGINE_COMMAND_TIMEOUT_SECONDS": "12.5",
            "MAESTRO_ENGINE_BINARY": "podman",
        },
    )

    assert loaded["containers"]["legacy_prefixes"] == ["old-", "older-"]
    assert loaded["observability"]["log_to_stderr"] is True
    assert loaded["engine"]["command_timeout_seconds"] == 12.5
    assert loaded["engine"]["binary"] == "podman"


def test_invalid_env_coercion_raises_actionable_error(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="MAESTRO_ENGINE_MAX_WORKERS"):
        load_config(config_path, environ={"MAESTRO_ENGINE_MAX_WORKERS": "many"})


def test_cli_none_overrides_are_ignored(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_config(config_path, "")

    loaded = load_config(config_path, cli_overrides={"engine.binary": None}, environ={})

    assert loaded["engine"]["binary"] == "docker"


def test_missing_default_config_file_falls_back_to_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))

    loaded = load_config(environ={})

    assert loaded["containers"]["prefix"] == "mcl-"


def test_missing_explicit_config_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "nope.yml", environ={})


def test_config_env_var_selects_file(tmp_path: Path) -> None:
    config_path = tmp_path / "custom.yml"
    _write_config(config_path, "containers:\n  prefix: box-\n")

    environ = {"MAESTRO_CONFIG": str(config_path)}

    assert default_config_path(environ) == config_path.resolve()
    assert load_config(environ=environ)["containers"]["prefix"] == "box-"


def test_invalid_yaml_and_non_mapping_roots_are_rejected(tmp_path: Path) -> None:
    broken = tmp_path / "broken.yml"
    _write_config(broken, "engine: [unclosed\n")
    listing = tmp_path / "list.yml"
    _write_config(listing, "- a\n- b\n")

    with pytest.raises(ConfigLoadError, match="invalid YAML"):
        load_yaml_file(broken, required=True)
    with pytest.raises(ConfigLoadError, match="must be a mapping"):
        load_yaml_file(listing, required=True)


def test_unknown_file_keys_fail_validation(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_config(config_path, "engine:\n  turbo: true\n")

    with pytest.raises(ConfigValidationError, match="engine.turbo"):
        load_config(config_path, environ={})


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "config.yml"
    _write_config(
        config_path,
        "auth:\n  host_credentials_path: creds/.credentials.json\n"
        "apps:\n  setup.sh: ./scripts/setup.sh\n",
    )

    loaded = load_config(config_path, environ={})
    base = config_path.resolve().parent
    expected_creds = base / "creds" / ".credentials.json"

    assert loaded["auth"]["host_credentials_path"] == expected_creds.as_posix()
    assert loaded["apps"]["setup.sh"] == (base / "scripts" / "setup.sh").as_posix()


def test_loader_is_deterministic_for_same_inputs(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_config(config_path, "display:\n  max_table_width: 120\n")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert json.loads(first)["display"]["max_table_width"] == 120


def test_repo_example_config_loads_and_builds_settings() -> None:
    example = REPO_ROOT / "config.example.yml"

    loaded = load_config(example, environ={})
    settings = FleetSettings.from_config(loaded, config_path=example)

    assert settings.containers.scan_prefixes == ("mcl-",)
    assert settings.engine.command_timeout_seconds is None
    assert "api.anthropic.com" in settings.firewall.allowed_domains
    assert settings.config_path == example


def test_env_names_follow_the_config_tree() -> None:
    assert env_var_name(("engine", "max_workers")) == "MAESTRO_ENGINE_MAX_WORKERS"
    assert env_var_name(("display", "max_table_width")) == "MAESTRO_DISPLAY_MAX_TABLE_WIDTH"


def test_env_overrides_skip_free_form_sections_and_unset_vars() -> None:
    current = {
        "engine": {"max_workers": 8, "command_timeout_seconds": None, "binary": "docker"},
        "apps": {"setup.sh": "./setup.sh"},
    }
    environ = {
        "MAESTRO_ENGINE_MAX_WORKERS": " 3 ",
        "MAESTRO_APPS_SETUP.SH": "/tmp/x",
        "MAESTRO_UNRELATED": "1",
    }

    assert env_overrides(current, environ) == {"engine": {"max_workers": 3}}


def test_invalid_boolean_env_names_the_variable(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="MAESTRO_OBSERVABILITY_LOG_TO_STDERR"):
        load_config(config_path, environ={"MAESTRO_OBSERVABILITY_LOG_TO_STDERR": "maybe"})


def test_cli_overrides_beat_env_for_prefix_and_engine(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_config(config_path, "containers:\n  prefix: file-\n")

    loaded = load_config(
        config_path,
        environ={"MAESTRO_CONTAINERS_PREFIX": "env-"},
        cli_overrides={"containers.prefix": "cli-", "engine.binary": "podman"},
    )

    assert loaded["containers"]["prefix"] == "cli-"
    assert loaded["engine"]["binary"] == "podman"


def test_malformed_override_key_is_rejected(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="invalid override key"):
        load_config(config_path, environ={}, cli_overrides={"engine.": "podman"})
