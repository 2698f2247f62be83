"""Unit tests for engine command construction and error mapping."""

from __future__ import annotations

import json
import re
from typing import TYPE_CHECKING

import pytest

from maestro_fleet.engine.client import (
    REGISTRY_FORMAT,
    ContainerEngine,
    EngineBinary,
    EngineCommandError,
    EngineError,
    EngineUnavailableError,
    name_filter,
)

if TYPE_CHECKING:
    from conftest import FakeCommandRunner


def test_list_containers_builds_bulk_query(
    fake_runner: FakeCommandRunner, engine: ContainerEngine
) -> None:
    fake_runner.on("docker", "ps", stdout="rows")

    assert engine.list_containers() == "rows"
    assert engine.list_containers(include_stopped=False) == "rows"

    assert fake_runner.calls == [
        ("docker", "ps", "-a", "--format", REGISTRY_FORMAT),
        ("docker", "ps", "--format", REGISTRY_FORMAT),
    ]


def test_list_containers_failure_is_engine_unavailable(
    fake_runner: FakeCommandRunner, engine: ContainerEngine
) -> None:
    fake_runner.on("docker", "ps", returncode=1, stderr="Cannot connect to the Docker daemon")

    with pytest.raises(EngineUnavailableError, match="Cannot connect"):
        engine.list_containers()


def test_container_state_reports_missing_as_none(
    fake_runner: FakeCommandRunner, engine: ContainerEngine
) -> None:
    fake_runner.on("docker", "ps", "-a", "--filter", name_filter("mcl-a"), stdout="exited\n")
    fake_runner.on("docker", "ps", "-a", "--filter", name_filter("mcl-b"), stdout="")

    assert engine.container_state("mcl-a") == "exited"
    assert engine.container_state("mcl-b") is None


@pytest.mark.parametrize(
    ("reported", "expected"),
    [
        ("/mcl-a.1", True),
        ("mcl-a.1", True),
        ("mcl-a.10", False),
        ("mcl-aX1", False),
        ("/old-mcl-a.1", False),
    ],
)
def test_name_filter_matches_docker_and_podman_names(reported: str, expected: bool) -> None:
    pattern = name_filter("mcl-a.1").removeprefix("name=")

    assert (re.search(pattern, reported) is not None) is expected


def test_container_state_uses_same_filter_under_podman(fake_runner: FakeCommandRunner) -> None:
    podman = ContainerEngine(fake_runner, binary="podman")
    fake_runner.on("podman", "ps", "-a", "--filter", "name=^/?mcl\\-a$", stdout="running\n")

    assert podman.container_state("mcl-a") == "running"


def test_exec_places_user_before_container_name(
    fake_runner: FakeCommandRunner, engine: ContainerEngine
) -> None:
    fake_runner.on("docker", "exec")

    engine.exec("mcl-a", ("id",), user="root")
    engine.exec_shell("mcl-a", "echo hi")

    assert fake_runner.calls == [
        ("docker", "exec", "-u", "root", "mcl-a", "id"),
        ("docker", "exec", "mcl-a", "sh", "-c", "echo hi"),
    ]


def test_inspect_parses_first_object_and_maps_errors(
    fake_runner: FakeCommandRunner, engine: ContainerEngine
) -> None:
    fake_runner.on("docker", "inspect", "mcl-a", stdout=json.dumps([{"Name": "/mcl-a"}]))
    fake_runner.on("docker", "inspect", "mcl-bad", stdout="not json")
    fake_runner.on("docker", "inspect", "mcl-gone", returncode=1, stderr="No such object")

    assert engine.inspect("mcl-a") == {"Name": "/mcl-a"}
    with pytest.raises(EngineError, match="malformed JSON"):
        engine.inspect("mcl-bad")
    with pytest.raises(EngineCommandError, match="No such object"):
        engine.inspect("mcl-gone")


def test_lifecycle_failures_raise_command_errors(
    fake_runner: FakeCommandRunner, engine: ContainerEngine
) -> None:
    fake_runner.on("docker", "stop", returncode=1, stderr="boom")
    fake_runner.on("docker", "rm")

    with pytest.raises(EngineCommandError) as excinfo:
        engine.stop("mcl-a")
    engine.remove("mcl-a")

    assert excinfo.value.returncode == 1
    assert str(excinfo.value) == "stop mcl-a failed: boom"
    assert fake_runner.calls[-1] == ("docker", "rm", "-f", "-v", "mcl-a")


def test_attach_runs_interactively(fake_runner: FakeCommandRunner, engine: ContainerEngine) -> None:
    fake_runner.on("docker", "exec", "-it")

    result = engine.attach("mcl-a", "main")

    assert result.succeeded
    assert fake_runner.interactive_calls == [
        ("docker", "exec", "-it", "mcl-a", "tmux", "attach", "-t", "main")
    ]


def test_binary_selection_and_validation(fake_runner: FakeCommandRunner) -> None:
    podman = ContainerEngine(fake_runner, binary="Podman")

    assert podman.binary == EngineBinary.PODMAN.value
    with pytest.raises(ValueError, match="unsupported engine"):
        ContainerEngine(fake_runner, binary="lxc")
    with pytest.raises(ValueError, match="timeout_seconds"):
        ContainerEngine(fake_runner, timeout_seconds=0)
