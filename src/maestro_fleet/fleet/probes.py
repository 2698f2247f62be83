"""
maestro-fleet — per-sandbox read-only probes.

File: src/maestro_fleet/fleet/probes.py

Purpose
- Each probe issues one or a few engine calls against a single sandbox and
  returns one field of the composite record.

Functional requirements
- A probe that cannot produce its value raises ``ProbeFailure``; callers
  substitute the documented sentinel.
- "No git repository" and "credential file unreadable" are labels, not failures.
- Temporary credential copies are deleted whether or not the read succeeded.
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from maestro_fleet.auth.credentials import (
    CredentialReadError,
    auth_label,
    current_time_ms,
    read_credentials,
)
from maestro_fleet.constants import AUTH_INVALID, NO_VALUE
from maestro_fleet.utils.fs import scratch_file

if TYPE_CHECKING:
    from maestro_fleet.config.settings import SandboxSettings
    from maestro_fleet.engine.client import ContainerEngine
    from maestro_fleet.engine.runner import CommandResult

logger = logging.getLogger(__name__)

ATTENTION_FORMAT: Final[str] = "#{window_bell_flag}:#{window_silence_flag}"
ACTIVITY_FORMAT: Final[str] = "#{pane_active_since}"
DEAD_PROCESS_STATES: Final[frozenset[str]] = frozenset({"Z", "X"})

_SECONDS_PER_MINUTE: Final[float] = 60.0
_SECONDS_PER_HOUR: Final[float] = 3600.0
_SECONDS_PER_DAY: Final[float] = 86400.0


class ProbeFailure(RuntimeError):
    """Raised by a probe that could not determine its value."""

    def __init__(self, probe: str, sandbox: str, detail: str) -> None:
        self.probe = probe
        self.sandbox = sandbox
        self.detail = detail
        super().__init__(f"{probe} probe failed for {sandbox}: {detail}")


def format_duration(seconds: float) -> str:
    """Compact elapsed time: ``42s``, ``17m``, ``3.5h``, ``2.0d``."""

    elapsed = max(seconds, 0.0)
    if elapsed < _SECONDS_PER_MINUTE:
        return f"{elapsed:.0f}s"
    if elapsed < _SECONDS_PER_HOUR:
        return f"{elapsed / _SECONDS_PER_MINUTE:.0f}m"
    if elapsed < _SECONDS_PER_DAY:
        return f"{elapsed / _SECONDS_PER_HOUR:.1f}h"
    return f"{elapsed / _SECONDS_PER_DAY:.1f}d"


def parse_attention(output: str) -> bool:
    """True when any ``bell:silence`` window line carries a set flag."""

    for line in output.splitlines():
        parts = line.strip().split(":")
        if len(parts) != 2:
            continue
        if "1" in (parts[0], parts[1]):
            return True
    return False


def parse_agent_liveness(output: str, agent_process: str) -> bool:
    """True when ``ps -eo stat=,args=`` output lists a live agent process."""

    for line in output.splitlines():
        fields = line.strip().split(None, 1)
        if len(fields) != 2:
            continue
        stat, args = fields
        if agent_process not in args:
            continue
        if stat[:1] in DEAD_PROCESS_STATES:
            continue
        return True
    return False


def format_git_status(dirty: int, ahead: int, behind: int) -> str:
    indicators = []
    if dirty:
        indicators.append(f"Δ{dirty}")
    if ahead:
        indicators.append(f"↑{ahead}")
    if behind:
        indicators.append(f"↓{behind}")
    if not indicators:
        return "✓"
    return " ".join(indicators)


class SandboxProbes:
    """Read-only probes for one engine and one sandbox layout."""

    def __init__(
        self,
        engine: ContainerEngine,
        sandbox: SandboxSettings,
        *,
        expiring_soon_hours: float,
        now_ms: Callable[[], int] | None = None,
    ) -> None:
        self._engine = engine
        self._sandbox = sandbox
        self._expiring_soon_hours = expiring_soon_hours
        self._now_ms = now_ms or current_time_ms

    def branch(self, name: str) -> str:
        result = self._engine.exec(
            name, ("git", "-C", self._sandbox.workspace_dir, "branch", "--show-current")
        )
        self._require(result, "branch", name)
        return result.stdout.strip()

    def attention(self, name: str) -> bool:
        result = self._engine.exec(
            name,
            ("tmux", "list-windows", "-t", self._sandbox.session_name, "-F", ATTENTION_FORMAT),
        )
        self._require(result, "attention", name)
        return parse_attention(result.stdout)

    def agent_alive(self, name: str) -> bool:
        result = self._engine.exec(name, ("ps", "-eo", "stat=,args="))
        self._require(result, "liveness", name)
        return parse_agent_liveness(result.stdout, self._sandbox.agent_process)

    def auth(self, name: str) -> str:
        with scratch_file(prefix=f"maestro-creds-{name}-", suffix=".json") as local_copy:
            result = self._engine.copy_from(name, self._sandbox.credentials_path, local_copy)
            self._require(result, "auth", name)
            try:
                artifact = read_credentials(local_copy, source=name)
            except CredentialReadError as exc:
                logger.debug("credential artifact in %s is unreadable: %s", name, exc)
                return AUTH_INVALID
        return auth_label(
            artifact.expires_at_ms,
            self._now_ms(),
            expiring_soon_hours=self._expiring_soon_hours,
        )

    def activity(self, name: str) -> str:
        target = f"{self._sandbox.session_name}:0"
        result = self._engine.exec(
            name, ("tmux", "display-message", "-t", target, "-p", ACTIVITY_FORMAT)
        )
        self._require(result, "activity", name)
        raw = result.stdout.strip()
        try:
            active_since = int(raw)
        except ValueError as exc:
            raise ProbeFailure("activity", name, f"unexpected timestamp {raw!r}") from exc
        return format_duration(self._now_ms() / 1000.0 - active_since)

    def git_status(self, name: str) -> str:
        workspace = self._sandbox.workspace_dir
        check = self._engine.exec(name, ("test", "-d", f"{workspace}/.git"))
        if check.returncode is None or check.timed_out:
            raise ProbeFailure("git", name, check.detail())
        if not check.succeeded:
            return NO_VALUE

        quoted = shlex.quote(workspace)
        dirty = self._count(name, f"cd {quoted} && git status --porcelain 2>/dev/null | wc -l")
        ahead = self._count(name, f"cd {quoted} && git rev-list --count @{{u}}..HEAD 2>/dev/null")
        behind = self._count(name, f"cd {quoted} && git rev-list --count HEAD..@{{u}} 2>/dev/null")
        return format_git_status(dirty, ahead, behind)

    def _count(self, name: str, script: str) -> int:
        # Missing upstream or a failing sub-command just omits the indicator.
        result = self._engine.exec_shell(name, script)
        if not result.succeeded:
            return 0
        try:
            return int(result.stdout.strip() or "0")
        except ValueError:
            return 0

    @staticmethod
    def _require(result: CommandResult, probe: str, name: str) -> None:
        if not result.succeeded:
            raise ProbeFailure(probe, name, result.detail())


__all__ = [
    "ACTIVITY_FORMAT",
    "ATTENTION_FORMAT",
    "ProbeFailure",
    "SandboxProbes",
    "format_duration",
    "format_git_status",
    "parse_agent_liveness",
    "parse_attention",
]
