"""Unit tests for typed settings built from validated config."""

from __future__ import annotations

from pathlib import Path

import pytest

from maestro_fleet.config.schema import ConfigValidationError, default_config, merge_config
from maestro_fleet.config.settings import ContainerSettings, FleetSettings


def test_defaults_expose_typed_sections() -> None:
    settings = FleetSettings.defaults()

    assert settings.containers.prefix == "mcl-"
    assert settings.engine.max_concurrent_commands == 16
    assert settings.sandbox.workspace_dir == "/workspace"
    assert settings.sandbox.credentials_path == "/home/node/.claude/.credentials.json"
    assert isinstance(settings.auth.host_credentials_path, Path)
    assert settings.firewall.allow_set == "allowed-domains"
    assert settings.config_path is None


def test_scan_prefixes_put_configured_prefix_first_and_dedupe() -> None:
    containers = ContainerSettings(prefix="box-", legacy_prefixes=("mcl-", "box-", "mcl-"))

    assert containers.scan_prefixes == ("box-", "mcl-")


def test_from_config_rejects_invalid_payload() -> None:
    config = merge_config(default_config(), {"display": {"max_table_width": 10}})

    with pytest.raises(ConfigValidationError, match="display.max_table_width"):
        FleetSettings.from_config(config)
