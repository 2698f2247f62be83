"""Unit tests for credential reconciliation across the host and sandboxes."""

from __future__ import annotations

import stat
import tempfile
from collections.abc import Callable
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING

import pytest
from hypothesis import given
from hypothesis import strategies as st

from maestro_fleet.auth.reconciler import (
    AllCredentialsExpiredError,
    CredentialReconciler,
    CredentialReplica,
    NoCredentialsFoundError,
    PropagationError,
)
from maestro_fleet.config.settings import FleetSettings
from maestro_fleet.engine.client import ContainerEngine

if TYPE_CHECKING:
    from conftest import FakeCommandRunner

NOW = 1_700_000_000_000
HOUR = 3_600_000
REMOTE = "/home/node/.claude/.credentials.json"

CredentialsFactory = Callable[..., bytes]


@pytest.fixture
def reconciler(engine: ContainerEngine, settings: FleetSettings) -> CredentialReconciler:
    return CredentialReconciler(engine, settings=settings, now_provider=lambda: NOW)


def _host_path(settings: FleetSettings) -> Path:
    return Path(settings.auth.host_credentials_path)


def _write_host(settings: FleetSettings, data: bytes) -> None:
    path = _host_path(settings)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _running(fake_runner: FakeCommandRunner, line: Callable[..., str], *names: str) -> None:
    fake_runner.on("docker", "ps", "--format", stdout="".join(line(name) + "\n" for name in names))
    fake_runner.on("docker", "exec", "-u", "root")


def _copy_in_calls(fake_runner: FakeCommandRunner) -> list[tuple[str, ...]]:
    return [call for call in fake_runner.calls_matching("docker", "cp") if ":" in call[3]]


def test_freshest_sandbox_replica_wins_and_propagates(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
    make_credentials: CredentialsFactory,
) -> None:
    _write_host(settings, make_credentials(NOW - 2 * HOUR, token="host"))
    fresh = make_credentials(NOW + 147 * HOUR, token="fresh")
    fake_runner.files[f"mcl-a:{REMOTE}"] = fresh
    fake_runner.files[f"mcl-b:{REMOTE}"] = make_credentials(NOW - 3 * HOUR, token="stale")
    _running(fake_runner, make_registry_line, "mcl-a", "mcl-b")

    report = reconciler.reconcile()

    assert report.winner.location == "mcl-a"
    assert report.winner_status() == "Valid for 6.1d"
    assert report.tally.render() == "synced 2/2"
    assert report.tally.synced == ("host", "mcl-b")
    assert not report.expiring_soon
    host = _host_path(settings)
    assert host.read_bytes() == fresh
    assert stat.S_IMODE(host.stat().st_mode) == 0o600
    assert fake_runner.files[f"mcl-b:{REMOTE}"] == fresh
    assert ("docker", "exec", "-u", "root", "mcl-b", "chown", "node:node", REMOTE) in (
        fake_runner.calls
    )
    assert [call[3] for call in _copy_in_calls(fake_runner)] == [f"mcl-b:{REMOTE}"]


def test_no_readable_replica_raises_without_writing(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
) -> None:
    _running(fake_runner, make_registry_line, "mcl-a", "mcl-b")

    with pytest.raises(NoCredentialsFoundError) as excinfo:
        reconciler.reconcile()

    assert "re-authenticate" in str(excinfo.value)
    assert {failure.location for failure in excinfo.value.scan.failures} == {
        "host",
        "mcl-a",
        "mcl-b",
    }
    assert _copy_in_calls(fake_runner) == []
    assert not _host_path(settings).exists()


def test_all_expired_refuses_to_propagate(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
    make_credentials: CredentialsFactory,
) -> None:
    host_bytes = make_credentials(NOW - 5 * HOUR)
    _write_host(settings, host_bytes)
    fake_runner.files[f"mcl-a:{REMOTE}"] = make_credentials(NOW - HOUR)
    _running(fake_runner, make_registry_line, "mcl-a")

    with pytest.raises(AllCredentialsExpiredError, match="mcl-a: EXPIRED 1.0h ago"):
        reconciler.reconcile()

    assert _copy_in_calls(fake_runner) == []
    assert _host_path(settings).read_bytes() == host_bytes


def test_winner_expiring_exactly_now_is_expired(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
    make_credentials: CredentialsFactory,
) -> None:
    _write_host(settings, make_credentials(NOW))
    _running(fake_runner, make_registry_line)

    with pytest.raises(AllCredentialsExpiredError):
        reconciler.reconcile()


def test_host_winner_with_no_sandboxes_syncs_nothing(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
    make_credentials: CredentialsFactory,
) -> None:
    _write_host(settings, make_credentials(NOW + 3 * HOUR))
    _running(fake_runner, make_registry_line)

    report = reconciler.reconcile()

    assert report.winner.is_host
    assert report.tally.render() == "synced 0/0"
    assert report.expiring_soon


def test_every_target_failing_is_a_propagation_error(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
    make_credentials: CredentialsFactory,
) -> None:
    _write_host(settings, make_credentials(NOW + 48 * HOUR))
    _running(fake_runner, make_registry_line, "mcl-b")
    fake_runner.on("docker", "cp", returncode=1, stderr="permission denied")

    with pytest.raises(PropagationError, match=r"synced 0/1") as excinfo:
        reconciler.reconcile()

    assert excinfo.value.report.tally.failures[0].target == "mcl-b"


def test_failed_ownership_fix_is_only_a_warning(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
    make_credentials: CredentialsFactory,
) -> None:
    _write_host(settings, make_credentials(NOW + 48 * HOUR))
    _running(fake_runner, make_registry_line, "mcl-b")
    fake_runner.on("docker", "exec", "-u", "root", returncode=1, stderr="chown: denied")

    report = reconciler.reconcile()

    assert report.tally.render() == "synced 1/1"
    assert len(report.tally.warnings) == 1
    assert "chown: denied" in report.tally.warnings[0]


def test_scratch_copies_are_removed(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
    make_credentials: CredentialsFactory,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(scratch))
    _write_host(settings, make_credentials(NOW + 48 * HOUR))
    fake_runner.files[f"mcl-a:{REMOTE}"] = b"{broken"
    _running(fake_runner, make_registry_line, "mcl-a", "mcl-b")

    report = reconciler.reconcile()

    assert report.tally.render() == "synced 2/2"
    assert [failure.location for failure in report.scan.failures] == ["mcl-a", "mcl-b"]
    assert list(scratch.iterdir()) == []


def test_legacy_prefixes_are_scanned_once(
    fake_runner: FakeCommandRunner,
    engine: ContainerEngine,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
) -> None:
    containers = replace(settings.containers, prefix="box-", legacy_prefixes=("mcl-",))
    custom = replace(settings, containers=containers)
    _running(fake_runner, make_registry_line, "mcl-a", "box-b", "other")

    names = CredentialReconciler(engine, settings=custom).running_sandboxes()

    assert names == ["box-b", "mcl-a"]


def test_sync_to_sandbox_pushes_only_to_that_sandbox(
    fake_runner: FakeCommandRunner,
    reconciler: CredentialReconciler,
    settings: FleetSettings,
    make_registry_line: Callable[..., str],
    make_credentials: CredentialsFactory,
) -> None:
    host_bytes = make_credentials(NOW + 48 * HOUR, token="host")
    _write_host(settings, host_bytes)
    fake_runner.files[f"mcl-a:{REMOTE}"] = make_credentials(NOW - HOUR)
    _running(fake_runner, make_registry_line, "mcl-a", "mcl-b")

    winner = reconciler.sync_to_sandbox("mcl-a")

    assert winner.is_host
    assert fake_runner.files[f"mcl-a:{REMOTE}"] == host_bytes
    assert [call[3] for call in _copy_in_calls(fake_runner)] == [f"mcl-a:{REMOTE}"]


def _replica(index: int, expires_at_ms: int) -> CredentialReplica:
    return CredentialReplica(
        location=f"loc-{index}", source_path="", expires_at_ms=expires_at_ms, content=b""
    )


@given(st.lists(st.integers(min_value=0, max_value=5), min_size=1, max_size=8))
def test_select_prefers_latest_expiry_then_scan_order(expiries: list[int]) -> None:
    replicas = [_replica(index, value) for index, value in enumerate(expiries)]

    winner = CredentialReconciler.select(replicas)

    assert winner.location == f"loc-{expiries.index(max(expiries))}"
