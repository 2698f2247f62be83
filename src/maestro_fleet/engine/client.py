"""Container-engine client: the only place that builds engine command lines."""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import TYPE_CHECKING, Any

from maestro_fleet.engine.runner import CommandResult, CommandRunner, SubprocessCommandRunner

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

REGISTRY_FORMAT = "{{.Names}}\t{{.Status}}\t{{.State}}\t{{.CreatedAt}}"


class EngineError(RuntimeError):
    """Base error for container-engine failures."""


class EngineUnavailableError(EngineError):
    """Raised when the engine cannot answer a bulk query at all."""


class EngineCommandError(EngineError):
    """Raised when a single engine operation fails."""

    def __init__(self, result: CommandResult, *, action: str | None = None) -> None:
        self.command = result.command
        self.returncode = result.returncode
        self.stdout = result.stdout
        self.stderr = result.stderr
        label = action or " ".join(result.command)
        super().__init__(f"{label} failed: {result.detail()}")


class EngineBinary(str, Enum):
    """Engine CLIs that speak the docker command-line dialect."""

    DOCKER = "docker"
    PODMAN = "podman"


class ContainerEngine:
    """Issue read/write operations against a docker-compatible engine CLI.

    Methods that return :class:`CommandResult` never raise on command failure;
    callers decide how a failure degrades. Methods documented as raising wrap
    failures in :class:`EngineCommandError` or :class:`EngineUnavailableError`.
    """

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        binary: EngineBinary | str = EngineBinary.DOCKER,
        timeout_seconds: float | None = None,
    ) -> None:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._runner = runner or SubprocessCommandRunner()
        self._binary = _coerce_binary(binary)
        self._timeout_seconds = timeout_seconds

    @property
    def binary(self) -> str:
        return self._binary.value

    @property
    def runner(self) -> CommandRunner:
        return self._runner

    def run(self, *args: str, stdin_text: str | None = None) -> CommandResult:
        return self._runner.run(
            (self.binary, *args),
            timeout_seconds=self._timeout_seconds,
            stdin_text=stdin_text,
        )

    # -- registry -------------------------------------------------------

    def is_responsive(self) -> bool:
        return self.run("info").succeeded

    def list_containers(self, *, include_stopped: bool = True) -> str:
        """Return raw tab-separated registry rows.

        Raises :class:`EngineUnavailableError` when the bulk call fails.
        """

        args = ["ps"]
        if include_stopped:
            args.append("-a")
        args.extend(["--format", REGISTRY_FORMAT])
        result = self.run(*args)
        if not result.succeeded:
            raise EngineUnavailableError(
                f"{self.binary} ps failed: {result.detail()} (is the engine running?)"
            )
        return result.stdout

    def list_running_names(self) -> list[str]:
        result = self.run("ps", "--filter", "status=running", "--format", "{{.Names}}")
        if not result.succeeded:
            raise EngineUnavailableError(f"{self.binary} ps failed: {result.detail()}")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def container_state(self, name: str) -> str | None:
        """Return the lifecycle state of ``name`` or ``None`` when it does not exist."""

        result = self.run("ps", "-a", "--filter", name_filter(name), "--format", "{{.State}}")
        if not result.succeeded:
            raise EngineUnavailableError(f"{self.binary} ps failed: {result.detail()}")
        state = result.stdout.strip().splitlines()
        return state[0].strip() if state else None

    def inspect(self, name: str) -> dict[str, Any]:
        result = self.run("inspect", name)
        if not result.succeeded:
            raise EngineCommandError(result, action=f"inspect {name}")
        try:
            payload = json.loads(result.stdout)
        except json.JSONDecodeError as exc:
            raise EngineError(f"inspect {name} returned malformed JSON: {exc}") from exc
        if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
            raise EngineError(f"inspect {name} returned no container data")
        return payload[0]

    def logs(self, name: str, *, tail: int = 50) -> CommandResult:
        return self.run("logs", "--tail", str(tail), name)

    # -- exec and file copy ---------------------------------------------

    def exec(self, name: str, argv: Sequence[str], *, user: str | None = None) -> CommandResult:
        args = ["exec"]
        if user is not None:
            args.extend(["-u", user])
        args.append(name)
        args.extend(argv)
        return self.run(*args)

    def exec_shell(self, name: str, script: str, *, user: str | None = None) -> CommandResult:
        return self.exec(name, ("sh", "-c", script), user=user)

    def copy_from(self, name: str, remote_path: str, local_path: Path | str) -> CommandResult:
        return self.run("cp", f"{name}:{remote_path}", str(local_path))

    def copy_to(self, local_path: Path | str, name: str, remote_path: str) -> CommandResult:
        return self.run("cp", str(local_path), f"{name}:{remote_path}")

    def attach_command(self, name: str, session: str) -> tuple[str, ...]:
        return (self.binary, "exec", "-it", name, "tmux", "attach", "-t", session)

    def attach(self, name: str, session: str) -> CommandResult:
        return self._runner.run(self.attach_command(name, session), interactive=True)

    # -- lifecycle ------------------------------------------------------

    def stop(self, name: str) -> None:
        self._check(self.run("stop", name), f"stop {name}")

    def start(self, name: str) -> None:
        self._check(self.run("start", name), f"start {name}")

    def remove(self, name: str, *, volumes: bool = True) -> None:
        args = ["rm", "-f"]
        if volumes:
            args.append("-v")
        args.append(name)
        self._check(self.run(*args), f"remove {name}")

    def remove_volume(self, volume: str) -> CommandResult:
        return self.run("volume", "rm", volume)

    @staticmethod
    def _check(result: CommandResult, action: str) -> None:
        if not result.succeeded:
            raise EngineCommandError(result, action=action)


def name_filter(name: str) -> str:
    """Exact-name ``--filter`` value; docker prefixes names with ``/``, podman does not."""

    return f"name=^/?{re.escape(name)}$"


def _coerce_binary(value: EngineBinary | str) -> EngineBinary:
    if isinstance(value, EngineBinary):
        return value
    if not isinstance(value, str):
        raise ValueError("binary must be a string or EngineBinary")
    normalized = value.strip().lower()
    try:
        return EngineBinary(normalized)
    except ValueError as exc:
        allowed = ", ".join(item.value for item in EngineBinary)
        raise ValueError(f"unsupported engine {value!r}; expected one of: {allowed}") from exc


__all__ = [
    "REGISTRY_FORMAT",
    "ContainerEngine",
    "EngineBinary",
    "EngineCommandError",
    "EngineError",
    "EngineUnavailableError",
    "name_filter",
]
