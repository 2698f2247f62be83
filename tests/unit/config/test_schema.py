"""
maestro-fleet — unit tests for config schema validation

File: tests/unit/config/test_schema.py

Purpose
- Validate strict config schema behavior, structured errors, and redaction.

What this test file should cover
- Built-in defaults validate successfully.
- Rejects unknown keys and invalid types with actionable paths.
- Rejects embedded secrets while accepting credential file paths.
- Ensures redaction is recursive and non-destructive.

Functional requirements
- No network usage.

Non-functional requirements
- Deterministic and fast.
"""

from __future__ import annotations

import pytest

from maestro_fleet.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    migration_guidance,
    redact_config,
    validate_config,
)


def _issues(config: dict[str, object]) -> dict[str, str]:
    result = validate_config(config)
    assert not result.is_valid
    return {issue.path: issue.message for issue in result.issues}


def test_default_config_validates_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["meta"]["schema_version"] == ConfigSchemaVersion
    assert result.config["containers"]["prefix"] == "mcl-"
    assert result.config["engine"]["command_timeout_seconds"] is None


def test_unknown_key_rejection_is_explicit() -> None:
    config = merge_config(default_config(), {"engine": {"turbo": True}})

    issues = _issues(config)

    assert issues["engine.turbo"] == "unknown field"


def test_embedded_secret_is_rejected_but_credential_path_is_allowed() -> None:
    config = merge_config(default_config(), {"auth": {"access_token": "abc"}})

    issues = _issues(config)

    assert "auth.access_token" in issues
    assert "embedded secret values are forbidden" in issues["auth.access_token"]
    assert "auth.host_credentials_path" not in issues


def test_type_validation_reports_structured_paths() -> None:
    config = merge_config(default_config(), {"engine": {"max_workers": "eight"}})

    issues = _issues(config)

    assert "expected integer" in issues["engine.max_workers"]


def test_range_violation_reports_exact_path() -> None:
    config = merge_config(
        default_config(), {"engine": {"max_concurrent_commands": 0, "command_timeout_seconds": -1}}
    )

    issues = _issues(config)

    assert issues["engine.max_concurrent_commands"] == "must be >= 1"
    assert issues["engine.command_timeout_seconds"] == "must be > 0"


def test_engine_binary_is_an_enum() -> None:
    config = merge_config(default_config(), {"engine": {"binary": "lxc"}})

    issues = _issues(config)

    assert "expected one of: docker, podman" in issues["engine.binary"]


def test_sandbox_paths_must_be_absolute() -> None:
    config = merge_config(default_config(), {"sandbox": {"workspace_dir": "workspace"}})

    issues = _issues(config)

    assert issues["sandbox.workspace_dir"] == "must be an absolute path inside the sandbox"


def test_log_level_is_case_insensitive() -> None:
    config = merge_config(default_config(), {"observability": {"log_level": "debug"}})

    validated = assert_valid_config(config)

    assert validated["observability"]["log_level"] == "DEBUG"


def test_apps_names_must_be_plain_file_names() -> None:
    config = merge_config(default_config(), {"apps": {"../evil": "/tmp/x", "ok.sh": "/tmp/ok"}})

    issues = _issues(config)

    assert issues == {"apps.../evil": "app name must be a plain file name"}


def test_schema_version_mismatch_carries_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": ConfigSchemaVersion + 1}})

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)

    assert "upgrade the maestro-fleet runtime" in str(excinfo.value)
    assert "schema version is current" == migration_guidance(ConfigSchemaVersion)


def test_merge_config_replaces_lists_and_leaves_inputs_untouched() -> None:
    base = default_config()
    merged = merge_config(base, {"firewall": {"allowed_domains": ["example.com"]}})

    assert merged["firewall"]["allowed_domains"] == ["example.com"]
    assert "github.com" in base["firewall"]["allowed_domains"]


def test_redaction_is_recursive_and_non_destructive() -> None:
    payload = {"auth": {"refresh_token": "r-1", "host_credentials_path": "/tmp/c.json"}}

    redacted = redact_config(payload)

    assert redacted == {
        "auth": {"host_credentials_path": "/tmp/c.json", "refresh_token": "<redacted>"}
    }
    assert payload["auth"]["refresh_token"] == "r-1"
