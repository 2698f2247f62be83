"""Command runners for the container-engine boundary."""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from maestro_fleet.utils.concurrency import BoundedSemaphore

if TYPE_CHECKING:
    from collections.abc import Sequence


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized result of one external-process call."""

    command: tuple[str, ...]
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.returncode == 0

    def detail(self) -> str:
        """Best human-readable failure detail."""

        if self.timed_out:
            return "timed out"
        text = self.stderr.strip() or self.stdout.strip()
        if text:
            return text
        if self.returncode is None:
            return "command could not be started"
        return f"exit status {self.returncode}"


class CommandRunner(Protocol):
    """Injectable command runner used for deterministic/offline testing."""

    def run(
        self,
        command: Sequence[str],
        *,
        timeout_seconds: float | None = None,
        stdin_text: str | None = None,
        interactive: bool = False,
    ) -> CommandResult: ...


class SubprocessCommandRunner:
    """Default command runner backed by ``subprocess.run``.

    A shared :class:`BoundedSemaphore` caps how many external processes run at
    once across every thread that uses this runner.
    """

    def __init__(self, *, max_concurrent: int = 16) -> None:
        self._limiter = BoundedSemaphore(max_concurrent)

    @property
    def limiter(self) -> BoundedSemaphore:
        return self._limiter

    def run(
        self,
        command: Sequence[str],
        *,
        timeout_seconds: float | None = None,
        stdin_text: str | None = None,
        interactive: bool = False,
    ) -> CommandResult:
        argv = tuple(command)
        if not argv:
            raise ValueError("command must not be empty")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        if interactive:
            return self._run_interactive(argv)

        started = time.perf_counter()
        with self._limiter.permit():
            try:
                completed = subprocess.run(
                    list(argv),
                    check=False,
                    capture_output=True,
                    text=True,
                    timeout=timeout_seconds,
                    input=stdin_text,
                )
            except subprocess.TimeoutExpired as exc:
                return CommandResult(
                    command=argv,
                    returncode=None,
                    stdout=_coerce_timeout_stream(exc.stdout),
                    stderr=_coerce_timeout_stream(exc.stderr),
                    timed_out=True,
                    duration_ms=_elapsed_ms(started),
                )
            except OSError as exc:
                return CommandResult(
                    command=argv,
                    returncode=None,
                    stdout="",
                    stderr=f"{argv[0]}: {exc.strerror or exc}",
                    duration_ms=_elapsed_ms(started),
                )

        return CommandResult(
            command=argv,
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            duration_ms=_elapsed_ms(started),
        )

    def _run_interactive(self, argv: tuple[str, ...]) -> CommandResult:
        started = time.perf_counter()
        try:
            completed = subprocess.run(list(argv), check=False)
        except OSError as exc:
            return CommandResult(
                command=argv,
                returncode=None,
                stdout="",
                stderr=f"{argv[0]}: {exc.strerror or exc}",
                duration_ms=_elapsed_ms(started),
            )
        return CommandResult(
            command=argv,
            returncode=completed.returncode,
            stdout="",
            stderr="",
            duration_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def _coerce_timeout_stream(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = [
    "CommandResult",
    "CommandRunner",
    "SubprocessCommandRunner",
]
