"""Command-line interface router for maestro-fleet."""

from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Final

from maestro_fleet.auth.credentials import format_expiration
from maestro_fleet.auth.reconciler import CredentialReconciler
from maestro_fleet.config import (
    ConfigLoadError,
    ConfigValidationError,
    FleetSettings,
    default_config_path,
    effective_config,
    load_config,
    persist_allowed_domain,
)
from maestro_fleet.config.schema import ENGINE_BINARIES
from maestro_fleet.engine.client import ContainerEngine, EngineUnavailableError
from maestro_fleet.engine.runner import SubprocessCommandRunner
from maestro_fleet.firewall.whitelist import DomainWhitelist, WhitelistError, normalize_domain
from maestro_fleet.fleet.details import fetch_sandbox_details
from maestro_fleet.fleet.display import render_table, select_by_index
from maestro_fleet.fleet.fetcher import SandboxRecord, fetch_fleet
from maestro_fleet.fleet.operations import (
    SandboxStateError,
    delete_sandbox,
    dormant_records,
    require_running,
    resolve_sandbox_name,
    restart_sandbox,
    stop_dormant,
    stop_sandbox,
)
from maestro_fleet.observability.logging import setup_logging, shutdown_logging
from maestro_fleet.ui.render import CLIRenderer, create_renderer

if TYPE_CHECKING:
    from maestro_fleet.auth.reconciler import ReconcileReport

PROG: Final[str] = "maestro-fleet"


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog=PROG,
        description=(
            "maestro-fleet: status and credential sync for agent sandboxes.\n\n"
            "Common workflows:\n"
            "  maestro-fleet list                 Show every sandbox with status\n"
            "  maestro-fleet connect              Pick a running sandbox and attach\n"
            "  maestro-fleet refresh-tokens       Sync the freshest credentials everywhere\n"
            "  maestro-fleet add-domain NAME DOM  Allow a domain through a sandbox firewall\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to config YAML (default: $MAESTRO_CONFIG or ~/.maestro/config.yml).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument(
        "--prefix",
        default=None,
        help="Container name prefix to manage (overrides containers.prefix).",
    )
    common.add_argument(
        "--engine",
        choices=ENGINE_BINARIES,
        default=None,
        help="Container engine CLI to drive (overrides engine.binary).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    list_parser = subparsers.add_parser(
        "list",
        aliases=["ls", "ps"],
        parents=[common],
        help="List all sandboxes with status and attention indicators",
    )
    list_parser.add_argument(
        "--running", action="store_true", help="Only include running sandboxes"
    )
    list_parser.set_defaults(handler=_cmd_list)

    connect_parser = subparsers.add_parser(
        "connect",
        parents=[common],
        help="Attach to a running sandbox's session",
        description=(
            "Attach to the session manager inside a running sandbox.\n\n"
            "Without a name: auto-connects when exactly one sandbox is running,\n"
            "otherwise shows a numbered table to pick from.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    connect_parser.add_argument("name", nargs="?", default=None, help="Sandbox name")
    connect_parser.set_defaults(handler=_cmd_connect)

    details_parser = subparsers.add_parser(
        "details",
        parents=[common],
        help="Show resources, mounts, status and recent logs for one sandbox",
    )
    details_parser.add_argument("name", help="Sandbox name (short or full)")
    details_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    details_parser.set_defaults(handler=_cmd_details)

    stop_parser = subparsers.add_parser(
        "stop",
        parents=[common],
        help="Stop a sandbox, or every dormant sandbox when no name is given",
    )
    stop_parser.add_argument("name", nargs="?", default=None, help="Sandbox name")
    stop_parser.add_argument(
        "--yes", "-y", action="store_true", help="Do not ask for confirmation"
    )
    stop_parser.set_defaults(handler=_cmd_stop)

    restart_parser = subparsers.add_parser(
        "restart",
        parents=[common],
        help="Stop and start a sandbox so its session manager comes back fresh",
    )
    restart_parser.add_argument("name", nargs="?", default=None, help="Sandbox name")
    restart_parser.set_defaults(handler=_cmd_restart)

    delete_parser = subparsers.add_parser(
        "delete",
        aliases=["rm"],
        parents=[common],
        help="Remove a sandbox together with its volumes",
    )
    delete_parser.add_argument("name", help="Sandbox name (short or full)")
    delete_parser.add_argument(
        "--yes", "-y", action="store_true", help="Do not ask for confirmation"
    )
    delete_parser.set_defaults(handler=_cmd_delete)

    refresh_parser = subparsers.add_parser(
        "refresh-tokens",
        parents=[common],
        help="Find the freshest credentials and sync them to host and sandboxes",
    )
    refresh_parser.set_defaults(handler=_cmd_refresh_tokens)

    domain_parser = subparsers.add_parser(
        "add-domain",
        parents=[common],
        help="Add an allowed domain to a sandbox firewall",
        description=(
            "Add a domain to a running sandbox's resolver-driven firewall.\n\n"
            "Examples:\n"
            "  maestro-fleet add-domain my-task example.com\n"
            "  maestro-fleet add-domain my-task example.com --persist\n"
            "  maestro-fleet add-domain example.com --all\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    domain_parser.add_argument("name", nargs="?", default=None, help="Sandbox name")
    domain_parser.add_argument("domain", help="Domain to allow")
    domain_parser.add_argument(
        "--persist",
        action="store_true",
        help="Also add the domain to firewall.allowed_domains in the config file",
    )
    domain_parser.add_argument(
        "--all", action="store_true", help="Apply to every running sandbox"
    )
    domain_parser.set_defaults(handler=_cmd_add_domain)

    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
    )
    config_parser.add_argument("--json", action="store_true", help="Emit JSON output")
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    finally:
        shutdown_logging()
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_list(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    engine = _engine_for(settings)
    renderer = _get_renderer(args)

    if not engine.is_responsive():
        raise EngineUnavailableError(f"{engine.binary} is not responding; is the engine running?")

    records = fetch_fleet(
        engine,
        settings.containers.prefix,
        settings=settings,
        include_stopped=not _flag(args, "running"),
    )
    if not records:
        renderer.text("No sandboxes found.")
        return 0

    table = render_table(
        records,
        numbered=False,
        terminal_width=renderer.terminal_width(),
        max_width=settings.display.max_table_width,
    )
    renderer.fleet_table(table)
    renderer.next_steps(
        [
            f"{PROG} connect <name>",
            f"{PROG} details <name>",
            f"{PROG} stop <name>",
        ]
    )
    return 0


def _cmd_connect(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    engine = _engine_for(settings)
    renderer = _get_renderer(args)

    raw_name = _optional_str(getattr(args, "name", None))
    if raw_name is not None:
        name = resolve_sandbox_name(raw_name, settings.containers.prefix)
        require_running(engine, name)
    else:
        name = _pick_running(engine, settings, renderer, action="connect")

    renderer.text(f"Connecting to {name}...")
    renderer.text("Detach with: Ctrl+b d")
    result = engine.attach(name, settings.sandbox.session_name)
    if result.returncode is None:
        raise CLIError(f"could not attach to {name}: {result.detail()}")
    return result.returncode


def _cmd_details(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    engine = _engine_for(settings)
    name = resolve_sandbox_name(
        _require_str(getattr(args, "name", None), "name"), settings.containers.prefix
    )
    details = fetch_sandbox_details(engine, name, settings=settings)

    if _flag(args, "json"):
        _emit_json(
            {
                "name": details.name,
                "status": details.status,
                "uptime": details.uptime,
                "cpus": details.cpus,
                "memory": details.memory,
                "ip_address": details.ip_address,
                "ports": list(details.ports),
                "volumes": list(details.volumes),
                "environment": list(details.environment),
                "branch": details.branch,
                "git_status": details.git_status,
                "auth_status": details.auth_status,
                "last_activity": details.last_activity,
            }
        )
        return 0

    renderer = _get_renderer(args)
    renderer.heading(details.short_name)
    renderer.kv("Status", details.status)
    renderer.kv("Uptime", details.uptime)
    renderer.kv("Branch", details.branch)
    renderer.kv("Git", details.git_status)
    renderer.kv("Auth", details.auth_status)
    renderer.kv("Last activity", details.last_activity)
    renderer.kv("CPUs", details.cpus)
    renderer.kv("Memory", details.memory)
    renderer.kv("IP address", details.ip_address or "-")
    if details.ports:
        renderer.section("Ports:")
        renderer.items(details.ports)
    if details.volumes:
        renderer.section("Volumes:")
        renderer.items(details.volumes)
    if details.environment and renderer.verbose:
        renderer.section("Environment:")
        renderer.items(details.environment)
    renderer.section("Recent logs:")
    renderer.text(details.recent_logs.rstrip("\n"))
    return 0


def _cmd_stop(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    engine = _engine_for(settings)
    renderer = _get_renderer(args)

    raw_name = _optional_str(getattr(args, "name", None))
    if raw_name is not None:
        name = resolve_sandbox_name(raw_name, settings.containers.prefix)
        renderer.text(f"Stopping {name}...")
        stop_sandbox(engine, name)
        renderer.success(f"Sandbox {name} stopped")
        return 0

    candidates = dormant_records(_running_records(engine, settings))
    if not candidates:
        renderer.text("No dormant sandboxes found.")
        renderer.text("(Dormant = running sandboxes where the agent process has exited)")
        return 0

    renderer.text(f"Found {len(candidates)} dormant sandbox(es):")
    renderer.items([f"{record.short_name} (branch: {record.branch})" for record in candidates])
    if not _flag(args, "yes") and not renderer.confirm("\nStop all dormant sandboxes?"):
        renderer.text("Cancelled.")
        return 0

    tally = stop_dormant(engine, candidates)
    for name in tally.stopped:
        renderer.ok(f"Stopped {name}")
    for name, reason in sorted(tally.failed.items()):
        renderer.fail(f"{name}: {reason}")
    if tally.all_stopped:
        renderer.success(f"Stopped {len(tally.stopped)} sandbox(es)")
        return 0
    renderer.warning(f"Stopped {len(tally.stopped)}/{tally.attempted} sandbox(es)")
    return 1


def _cmd_restart(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    engine = _engine_for(settings)
    renderer = _get_renderer(args)

    raw_name = _optional_str(getattr(args, "name", None))
    if raw_name is not None:
        name = resolve_sandbox_name(raw_name, settings.containers.prefix)
        _require_exists(engine, name)
    else:
        name = _pick_running(engine, settings, renderer, action="restart")

    renderer.text(f"Restarting {name}...")
    restart_sandbox(engine, name)
    renderer.success(f"Sandbox {name} restarted")
    renderer.next_steps([f"{PROG} connect {name}"])
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    engine = _engine_for(settings)
    renderer = _get_renderer(args)

    name = resolve_sandbox_name(
        _require_str(getattr(args, "name", None), "name"), settings.containers.prefix
    )
    _require_exists(engine, name)
    if not _flag(args, "yes") and not renderer.confirm(
        f"Delete {name} and its volumes? This cannot be undone."
    ):
        renderer.text("Cancelled.")
        return 0

    removed = delete_sandbox(engine, name)
    for volume in removed:
        renderer.ok(f"Removed volume {volume}")
    renderer.success(f"Sandbox {name} deleted")
    return 0


def _cmd_refresh_tokens(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    engine = _engine_for(settings)
    renderer = _get_renderer(args)

    renderer.text("Scanning for credentials...")
    report = CredentialReconciler(engine, settings=settings).reconcile()
    _render_reconcile(renderer, report)
    return 0


def _cmd_add_domain(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    engine = _engine_for(settings)
    renderer = _get_renderer(args)
    whitelist = DomainWhitelist(engine, settings=settings)

    domain = _require_str(getattr(args, "domain", None), "domain")
    raw_name = _optional_str(getattr(args, "name", None))
    apply_all = _flag(args, "all")

    if apply_all:
        if raw_name is not None:
            raise CLIError("--all does not take a sandbox name", exit_code=2)
        outcome = whitelist.add_domain_everywhere(domain)
        if not outcome:
            renderer.text("No running sandboxes found.")
        failures = 0
        for sandbox, result in outcome.items():
            if isinstance(result, WhitelistError):
                failures += 1
                renderer.fail(f"{sandbox}: {result}")
                continue
            renderer.ok(f"{sandbox}: {result.domain} allowed")
            if result.warning:
                renderer.warning(f"{sandbox}: {result.warning}")
        exit_code = 1 if failures and failures == len(outcome) else 0
    else:
        if raw_name is None:
            raise CLIError("a sandbox name is required unless --all is given", exit_code=2)
        name = resolve_sandbox_name(raw_name, settings.containers.prefix)
        renderer.text(f"Adding {domain} to firewall whitelist for {name}...")
        result = whitelist.add_domain(name, domain)
        if result.already_configured:
            renderer.text(f"  Domain {result.domain} already in resolver config")
        if result.warning:
            renderer.warning(result.warning)
        else:
            renderer.text(f"  Resolved {len(result.resolved)} address(es)")
        renderer.success(f"Domain {result.domain} added to {name}")
        exit_code = 0

    config_path = settings.config_path or default_config_path()
    if _flag(args, "persist"):
        changed = persist_allowed_domain(
            config_path,
            normalize_domain(domain),
            defaults=settings.firewall.allowed_domains,
        )
        if changed:
            renderer.success(f"Updated {config_path}")
        else:
            renderer.text(f"Domain already listed in {config_path}")
    else:
        renderer.text(f"\nTo make this permanent, re-run with --persist (updates {config_path}).")
    return exit_code


def _cmd_config(args: argparse.Namespace) -> int:
    config, _ = _load_effective_config(args)
    redacted = effective_config(config)
    if _flag(args, "json"):
        _emit_json(redacted)
        return 0
    renderer = _get_renderer(args)
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Rendering helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: object) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _render_reconcile(renderer: CLIRenderer, report: ReconcileReport) -> None:
    for replica in report.scan.replicas:
        status = format_expiration(replica.expires_at_ms, report.now_ms)
        renderer.ok(f"{replica.location}: {status}")
    for failure in report.scan.failures:
        renderer.fail(f"{failure.location}: could not read credentials ({failure.reason})")

    renderer.section(f"Found fresh token in {report.winner.location}")
    expires = datetime.fromtimestamp(report.winner.expires_at_ms / 1000.0, tz=UTC)
    renderer.kv("  Expires", expires.strftime("%a, %d %b %Y %H:%M:%S %Z"))
    renderer.kv("  Status", report.winner_status())
    if report.expiring_soon:
        renderer.warning("token expires soon; consider re-authenticating")

    renderer.section("Syncing credentials...")
    for target in report.tally.synced:
        renderer.ok(f"Synced to {target}")
    for failure in report.tally.failures:
        renderer.fail(f"Failed to sync to {failure.target}: {failure.reason}")
    for warning in report.tally.warnings:
        renderer.warning(warning)
    renderer.blank()
    renderer.success(f"Refresh complete: {report.tally.render()}")


# ---------------------------------------------------------------------------
# Helpers: config, engine
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> tuple[dict[str, object], str | None]:
    config_path = _optional_str(getattr(args, "config_path", None))
    try:
        loaded = load_config(config_path, cli_overrides=_config_overrides(args))
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    return loaded, config_path


def _config_overrides(args: argparse.Namespace) -> dict[str, object]:
    """Map common flags onto dotted config keys; unset flags map to None."""

    return {
        "containers.prefix": _optional_str(getattr(args, "prefix", None)),
        "engine.binary": getattr(args, "engine", None),
    }


def _load_settings(args: argparse.Namespace) -> FleetSettings:
    config, config_path = _load_effective_config(args)
    resolved_path = (
        default_config_path()
        if config_path is None
        else Path(config_path).expanduser().resolve()
    )
    observability = config.get("observability")
    if isinstance(observability, dict):
        setup_logging(observability, run_id=_run_id(args))
    return FleetSettings.from_config(config, config_path=resolved_path)


def _engine_for(settings: FleetSettings) -> ContainerEngine:
    runner = SubprocessCommandRunner(max_concurrent=settings.engine.max_concurrent_commands)
    return ContainerEngine(
        runner,
        binary=settings.engine.binary,
        timeout_seconds=settings.engine.command_timeout_seconds,
    )


def _running_records(engine: ContainerEngine, settings: FleetSettings) -> list[SandboxRecord]:
    """Running sandboxes under the configured and legacy prefixes, deduplicated by name."""

    seen: set[str] = set()
    records: list[SandboxRecord] = []
    for prefix in settings.containers.scan_prefixes:
        for record in fetch_fleet(engine, prefix, settings=settings, include_stopped=False):
            if record.name in seen or not record.is_running:
                continue
            seen.add(record.name)
            records.append(record)
    return records


def _pick_running(
    engine: ContainerEngine, settings: FleetSettings, renderer: CLIRenderer, *, action: str
) -> str:
    """Auto-pick the only running sandbox, otherwise prompt with a numbered table."""

    running = _running_records(engine, settings)
    if not running:
        raise CLIError("no running sandboxes found")
    if len(running) == 1:
        renderer.text(f"Auto-selecting {running[0].short_name}")
        return running[0].name

    table = render_table(
        running,
        numbered=True,
        terminal_width=renderer.terminal_width(),
        max_width=settings.display.max_table_width,
    )
    renderer.heading(f"Select a sandbox to {action}:")
    renderer.blank()
    renderer.fleet_table(table)
    answer = renderer.prompt(f"\nEnter number (1-{len(table.order)}): ")
    return select_by_index(table.order, answer).name


def _require_exists(engine: ContainerEngine, name: str) -> None:
    if engine.container_state(name) is None:
        raise SandboxStateError(name, None)


def _run_id(args: argparse.Namespace) -> str:
    command = str(getattr(args, "command", "cli") or "cli")
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{command}-{os.getpid()}"


# ---------------------------------------------------------------------------
# Helpers: argument parsing
# ---------------------------------------------------------------------------


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str):
        raise CLIError(f"invalid {name}: expected string", exit_code=2)
    cleaned = value.strip()
    if not cleaned:
        raise CLIError(f"invalid {name}: value cannot be empty", exit_code=2)
    return cleaned


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=2)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = [
    "CLIError",
    "build_parser",
    "run_cli",
]
