"""Unit tests for adding allowed domains to sandbox resolver configs."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from maestro_fleet.config.settings import FleetSettings
from maestro_fleet.engine.client import ContainerEngine, name_filter
from maestro_fleet.engine.runner import CommandResult
from maestro_fleet.firewall.whitelist import (
    DomainWhitelist,
    InvalidDomainError,
    SandboxNotRunningError,
    WhitelistError,
    WhitelistResult,
    normalize_domain,
)

if TYPE_CHECKING:
    from conftest import FakeCommandRunner


@pytest.fixture
def whitelist(engine: ContainerEngine, settings: FleetSettings) -> DomainWhitelist:
    return DomainWhitelist(engine, settings=settings)


def _script_sandbox(fake_runner: FakeCommandRunner, name: str, *, state: str = "running") -> None:
    """Resolver config whose grep reflects earlier appends."""

    appended: list[str] = []

    def grep(argv: tuple[str, ...]) -> CommandResult:
        return CommandResult(command=argv, returncode=0 if appended else 1, stdout="", stderr="")

    def append(argv: tuple[str, ...]) -> CommandResult:
        appended.append(argv[-1])
        return CommandResult(command=argv, returncode=0, stdout="", stderr="")

    fake_runner.on("docker", "ps", "-a", "--filter", name_filter(name), stdout=f"{state}\n")
    fake_runner.on("docker", "exec", name, "grep", handler=grep)
    fake_runner.on(
        "docker", "exec", "-u", "root", name, "sh", "-c", contains="printf", handler=append
    )
    fake_runner.on("docker", "exec", "-u", "root", name, "sh", "-c", contains="pkill")
    fake_runner.on("docker", "exec", name, "sh", "-c", contains="dig", stdout="140.82.112.3\n")


def _appends(fake_runner: FakeCommandRunner, name: str) -> list[tuple[str, ...]]:
    return [
        call
        for call in fake_runner.calls_matching("docker", "exec", "-u", "root", name, "sh", "-c")
        if "printf" in call[-1]
    ]


def test_add_domain_appends_rules_and_restarts_resolver(
    fake_runner: FakeCommandRunner, whitelist: DomainWhitelist
) -> None:
    _script_sandbox(fake_runner, "mcl-a")

    result = whitelist.add_domain("mcl-a", "Example.COM.")

    assert result == WhitelistResult(
        sandbox="mcl-a", domain="example.com", already_configured=False, resolved=("140.82.112.3",)
    )
    [append] = _appends(fake_runner, "mcl-a")
    assert "ipset=/example.com/allowed-domains" in append[-1]
    assert "server=/example.com/8.8.8.8" in append[-1]
    assert ">> /tmp/dnsmasq-firewall.conf" in append[-1]
    restarts = [call for call in fake_runner.calls if "pkill" in call[-1]]
    assert len(restarts) == 1
    assert "dnsmasq --conf-file=/tmp/dnsmasq-firewall.conf" in restarts[0][-1]


def test_repeated_add_never_appends_twice(
    fake_runner: FakeCommandRunner, whitelist: DomainWhitelist
) -> None:
    _script_sandbox(fake_runner, "mcl-a")

    first = whitelist.add_domain("mcl-a", "example.com")
    second = whitelist.add_domain("mcl-a", "example.com")

    assert not first.already_configured
    assert second.already_configured
    assert len(_appends(fake_runner, "mcl-a")) == 1
    assert len([call for call in fake_runner.calls if "pkill" in call[-1]]) == 2


def test_failed_resolution_lookup_is_only_a_warning(
    fake_runner: FakeCommandRunner, whitelist: DomainWhitelist
) -> None:
    _script_sandbox(fake_runner, "mcl-a")
    fake_runner.on("docker", "exec", "mcl-a", "sh", "-c", contains="dig", stdout="")

    result = whitelist.add_domain("mcl-a", "example.com")

    assert result.resolved == ()
    assert result.warning == "initial resolution of example.com returned no addresses"


def test_restart_failure_raises(fake_runner: FakeCommandRunner, whitelist: DomainWhitelist) -> None:
    _script_sandbox(fake_runner, "mcl-a")
    fake_runner.on(
        "docker",
        "exec",
        "-u",
        "root",
        "mcl-a",
        "sh",
        "-c",
        contains="pkill",
        returncode=1,
        stderr="dnsmasq: bad config",
    )

    with pytest.raises(WhitelistError, match="failed to restart resolver in mcl-a"):
        whitelist.add_domain("mcl-a", "example.com")


def test_stopped_sandbox_is_rejected_before_any_exec(
    fake_runner: FakeCommandRunner, whitelist: DomainWhitelist
) -> None:
    _script_sandbox(fake_runner, "mcl-a", state="exited")

    with pytest.raises(SandboxNotRunningError, match=r"not running \(status: exited\)"):
        whitelist.add_domain("mcl-a", "example.com")

    assert fake_runner.calls_matching("docker", "exec") == []


@pytest.mark.parametrize("domain", ["", "exa mple.com", "-bad.com", "a..b", "x" * 64 + ".com"])
def test_invalid_domains_are_rejected(domain: str) -> None:
    with pytest.raises(InvalidDomainError):
        normalize_domain(domain)


def test_add_domain_everywhere_continues_past_failures(
    fake_runner: FakeCommandRunner, whitelist: DomainWhitelist
) -> None:
    fake_runner.on(
        "docker", "ps", "--filter", "status=running", stdout="mcl-a\nmcl-b\nunrelated\n"
    )
    _script_sandbox(fake_runner, "mcl-a")
    _script_sandbox(fake_runner, "mcl-b")
    fake_runner.on(
        "docker",
        "exec",
        "-u",
        "root",
        "mcl-a",
        "sh",
        "-c",
        contains="printf",
        returncode=1,
        stderr="read-only file system",
    )

    outcome = whitelist.add_domain_everywhere("example.com")

    assert list(outcome) == ["mcl-a", "mcl-b"]
    assert isinstance(outcome["mcl-a"], WhitelistError)
    assert "read-only file system" in str(outcome["mcl-a"])
    assert isinstance(outcome["mcl-b"], WhitelistResult)
    assert fake_runner.calls_matching("docker", "ps", "-a") == []
