"""Shared offline fixtures: a scripted engine runner and default settings."""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from pathlib import Path

import pytest

from maestro_fleet.config.settings import FleetSettings
from maestro_fleet.engine.client import ContainerEngine
from maestro_fleet.engine.runner import CommandResult

Handler = Callable[[tuple[str, ...]], CommandResult]


@dataclass(frozen=True, slots=True)
class _Rule:
    prefix: tuple[str, ...]
    contains: str | None
    returncode: int | None
    stdout: str
    stderr: str
    timed_out: bool
    handler: Handler | None

    def matches(self, command: tuple[str, ...]) -> bool:
        if command[: len(self.prefix)] != self.prefix:
            return False
        if self.contains is not None and not any(self.contains in arg for arg in command):
            return False
        return True


class FakeCommandRunner:
    """Deterministic stand-in for the subprocess runner.

    Rules match by command prefix (binary included); the most recently added
    matching rule wins. ``cp`` commands without a rule copy between the local
    filesystem and the in-memory ``files`` map keyed by ``"<sandbox>:<path>"``.
    Anything else unscripted fails with exit status 1.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.interactive_calls: list[tuple[str, ...]] = []
        self.files: dict[str, bytes] = {}
        self._rules: list[_Rule] = []
        self._lock = threading.Lock()

    def on(
        self,
        *prefix: str,
        contains: str | None = None,
        returncode: int | None = 0,
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False,
        handler: Handler | None = None,
    ) -> FakeCommandRunner:
        with self._lock:
            self._rules.append(
                _Rule(
                    prefix=tuple(prefix),
                    contains=contains,
                    returncode=returncode,
                    stdout=stdout,
                    stderr=stderr,
                    timed_out=timed_out,
                    handler=handler,
                )
            )
        return self

    def run(
        self,
        command: Sequence[str],
        *,
        timeout_seconds: float | None = None,
        stdin_text: str | None = None,
        interactive: bool = False,
    ) -> CommandResult:
        argv = tuple(command)
        with self._lock:
            self.calls.append(argv)
            if interactive:
                self.interactive_calls.append(argv)
            rule = next((item for item in reversed(self._rules) if item.matches(argv)), None)

        if rule is not None:
            if rule.handler is not None:
                return rule.handler(argv)
            return CommandResult(
                command=argv,
                returncode=rule.returncode,
                stdout=rule.stdout,
                stderr=rule.stderr,
                timed_out=rule.timed_out,
            )
        if len(argv) == 4 and argv[1] == "cp":
            return self._copy(argv)
        return CommandResult(command=argv, returncode=1, stdout="", stderr="unscripted command")

    def calls_matching(self, *prefix: str) -> list[tuple[str, ...]]:
        with self._lock:
            return [call for call in self.calls if call[: len(prefix)] == tuple(prefix)]

    def _copy(self, argv: tuple[str, ...]) -> CommandResult:
        source, destination = argv[2], argv[3]
        if ":" in source and not Path(source).exists():
            with self._lock:
                data = self.files.get(source)
            if data is None:
                return CommandResult(
                    command=argv, returncode=1, stdout="", stderr=f"no such file: {source}"
                )
            Path(destination).write_bytes(data)
            return CommandResult(command=argv, returncode=0, stdout="", stderr="")

        data = Path(source).read_bytes()
        with self._lock:
            self.files[destination] = data
        return CommandResult(command=argv, returncode=0, stdout="", stderr="")


def registry_line(name: str, state: str = "running", status: str | None = None) -> str:
    """One tab-separated row in the bulk listing format."""

    status_text = status or ("Up 2 hours" if state == "running" else "Exited (0) 1 hour ago")
    return f"{name}\t{status_text}\t{state}\t2024-01-01 10:00:00 +0000 UTC"


def credentials_json(expires_at_ms: int, token: str = "tok") -> bytes:
    return (
        '{"claudeAiOauth": {"accessToken": "%s", "expiresAt": %d}}' % (token, expires_at_ms)
    ).encode("utf-8")


NOW_MS = 1_700_000_000_000
HOUR_MS = 3_600_000


def script_sandbox(
    runner: FakeCommandRunner,
    name: str,
    *,
    branch: str = "main",
    attention: str = "0:0\n",
    processes: str = "Ss   bash\nSl+  claude --resume\n",
    expires_at_ms: int | None = NOW_MS + 48 * HOUR_MS,
    active_since_s: int = NOW_MS // 1000 - 120,
    git_repo: bool = True,
    dirty: int = 0,
    ahead: int = 0,
    behind: int = 0,
) -> None:
    """Script every probe of one healthy running sandbox."""

    runner.on("docker", "exec", name, "git", "-C", stdout=f"{branch}\n")
    runner.on("docker", "exec", name, "tmux", "list-windows", stdout=attention)
    runner.on("docker", "exec", name, "ps", "-eo", stdout=processes)
    runner.on("docker", "exec", name, "tmux", "display-message", stdout=f"{active_since_s}\n")
    runner.on("docker", "exec", name, "test", "-d", returncode=0 if git_repo else 1)
    runner.on("docker", "exec", name, "sh", "-c", contains="--porcelain", stdout=f"{dirty}\n")
    runner.on("docker", "exec", name, "sh", "-c", contains="@{u}..HEAD", stdout=f"{ahead}\n")
    runner.on("docker", "exec", name, "sh", "-c", contains="HEAD..@{u}", stdout=f"{behind}\n")
    if expires_at_ms is not None:
        runner.files[f"{name}:/home/node/.claude/.credentials.json"] = credentials_json(
            expires_at_ms
        )


@pytest.fixture
def fake_runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def engine(fake_runner: FakeCommandRunner) -> ContainerEngine:
    return ContainerEngine(fake_runner, binary="docker")


@pytest.fixture
def settings(tmp_path: Path) -> FleetSettings:
    defaults = FleetSettings.defaults()
    return replace(
        defaults,
        auth=replace(defaults.auth, host_credentials_path=tmp_path / "host" / ".credentials.json"),
        firewall=replace(defaults.firewall, restart_pause_seconds=0.0),
    )


@pytest.fixture
def make_registry_line() -> Callable[..., str]:
    return registry_line


@pytest.fixture
def make_credentials() -> Callable[..., bytes]:
    return credentials_json


@pytest.fixture
def scripted_sandbox(fake_runner: FakeCommandRunner) -> Callable[..., None]:
    def script(name: str, **kwargs: object) -> None:
        script_sandbox(fake_runner, name, **kwargs)  # type: ignore[arg-type]

    return script


@pytest.fixture
def now_ms() -> Callable[[], int]:
    return lambda: NOW_MS
