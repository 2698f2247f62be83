"""
maestro-fleet — per-sandbox domain whitelist propagation.

File: src/maestro_fleet/firewall/whitelist.py

Purpose
- Add an allowed domain to a running sandbox's DNS-driven egress firewall.

Functional requirements
- The resolver config gains ``ipset=/<domain>/<set>`` and ``server=/<domain>/<dns>``
  only when the ``ipset`` rule is absent; repeated calls never append twice.
- The resolver is restarted (kill, short pause, relaunch) on every call.
- The post-restart resolution probe is advisory: its failure is a warning.
- Append or restart failure raises ``WhitelistError``.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from maestro_fleet.observability.logging import correlation_scope

if TYPE_CHECKING:
    from collections.abc import Sequence

    from maestro_fleet.config.settings import FleetSettings
    from maestro_fleet.engine.client import ContainerEngine

logger = logging.getLogger(__name__)

RESOLVE_PREVIEW_LINES: Final[int] = 5

_DOMAIN_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^(?=.{1,253}$)(?!-)[a-z0-9-]{1,63}(?<!-)(?:\.(?!-)[a-z0-9-]{1,63}(?<!-))*$"
)


class WhitelistError(RuntimeError):
    """Raised when the resolver config cannot be updated or restarted."""


class SandboxNotRunningError(WhitelistError):
    def __init__(self, sandbox: str, state: str | None) -> None:
        self.sandbox = sandbox
        self.state = state
        detail = "not found" if state is None else f"not running (status: {state})"
        super().__init__(f"sandbox {sandbox} is {detail}")


class InvalidDomainError(WhitelistError, ValueError):
    def __init__(self, domain: str) -> None:
        self.domain = domain
        super().__init__(f"invalid domain name {domain!r}")


@dataclass(frozen=True, slots=True)
class WhitelistResult:
    sandbox: str
    domain: str
    already_configured: bool
    resolved: tuple[str, ...] = ()
    warning: str | None = None


def normalize_domain(domain: str) -> str:
    """Lower-case ``domain``, drop one trailing dot, and validate hostname syntax."""

    candidate = domain.strip().lower()
    if candidate.endswith("."):
        candidate = candidate[:-1]
    if not _DOMAIN_PATTERN.fullmatch(candidate):
        raise InvalidDomainError(domain)
    return candidate


class DomainWhitelist:
    def __init__(self, engine: ContainerEngine, *, settings: FleetSettings) -> None:
        self._engine = engine
        self._settings = settings

    @property
    def resolver_config(self) -> str:
        return self._settings.firewall.resolver_config_path

    def is_configured(self, sandbox: str, domain: str) -> bool:
        result = self._engine.exec(
            sandbox, ("grep", "-qF", f"ipset=/{domain}/", self.resolver_config)
        )
        return result.succeeded

    def add_domain(
        self, sandbox: str, domain: str, *, require_running: bool = True
    ) -> WhitelistResult:
        name = normalize_domain(domain)
        with correlation_scope(command="add-domain", sandbox=sandbox):
            if require_running:
                state = self._engine.container_state(sandbox)
                if state != "running":
                    raise SandboxNotRunningError(sandbox, state)

            already = self.is_configured(sandbox, name)
            if already:
                logger.info("domain %s already configured in %s", name, sandbox)
            else:
                self._append_rules(sandbox, name)
            self._restart_resolver(sandbox)
            resolved, warning = self._probe_resolution(sandbox, name)
            return WhitelistResult(
                sandbox=sandbox,
                domain=name,
                already_configured=already,
                resolved=resolved,
                warning=warning,
            )

    def add_domain_everywhere(
        self, domain: str, sandboxes: Sequence[str] | None = None
    ) -> dict[str, WhitelistResult | WhitelistError]:
        """Best-effort add to each sandbox; one failure does not stop the rest."""

        name = normalize_domain(domain)
        targets = list(sandboxes) if sandboxes is not None else self._running_sandboxes()
        outcome: dict[str, WhitelistResult | WhitelistError] = {}
        for sandbox in targets:
            try:
                outcome[sandbox] = self.add_domain(sandbox, name, require_running=False)
            except WhitelistError as exc:
                logger.warning("failed to add domain %s to %s: %s", name, sandbox, exc)
                outcome[sandbox] = exc
        return outcome

    def _running_sandboxes(self) -> list[str]:
        prefixes = self._settings.containers.scan_prefixes
        return [
            item
            for item in self._engine.list_running_names()
            if any(item.startswith(prefix) for prefix in prefixes)
        ]

    def _append_rules(self, sandbox: str, domain: str) -> None:
        firewall = self._settings.firewall
        rules = (
            f"ipset=/{domain}/{firewall.allow_set}",
            f"server=/{domain}/{firewall.upstream_dns}",
        )
        script = "printf '%s\\n' {} >> {}".format(
            " ".join(shlex.quote(rule) for rule in rules), shlex.quote(self.resolver_config)
        )
        result = self._engine.exec_shell(sandbox, script, user=self._settings.sandbox.root_user)
        if not result.succeeded:
            raise WhitelistError(
                f"failed to update resolver config in {sandbox}: {result.detail()}"
            )
        logger.info("added %s to resolver config in %s", domain, sandbox)

    def _restart_resolver(self, sandbox: str) -> None:
        pause = self._settings.firewall.restart_pause_seconds
        script = (
            f"pkill -9 dnsmasq 2>/dev/null || true; sleep {pause:g}; "
            f"dnsmasq --conf-file={shlex.quote(self.resolver_config)}"
        )
        result = self._engine.exec_shell(sandbox, script, user=self._settings.sandbox.root_user)
        if not result.succeeded:
            raise WhitelistError(f"failed to restart resolver in {sandbox}: {result.detail()}")

    def _probe_resolution(self, sandbox: str, domain: str) -> tuple[tuple[str, ...], str | None]:
        result = self._engine.exec_shell(
            sandbox, f"dig +short {shlex.quote(domain)} | head -{RESOLVE_PREVIEW_LINES}"
        )
        if not result.succeeded:
            warning = f"initial resolution failed: {result.detail()}"
            logger.warning("%s in %s", warning, sandbox)
            return (), warning
        addresses = tuple(line.strip() for line in result.stdout.splitlines() if line.strip())
        if not addresses:
            warning = f"initial resolution of {domain} returned no addresses"
            logger.warning("%s in %s", warning, sandbox)
            return (), warning
        return addresses, None


__all__ = [
    "DomainWhitelist",
    "InvalidDomainError",
    "SandboxNotRunningError",
    "WhitelistError",
    "WhitelistResult",
    "normalize_domain",
]
