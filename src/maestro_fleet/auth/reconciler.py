"""
maestro-fleet — credential freshness reconciler.

File: src/maestro_fleet/auth/reconciler.py

Purpose
- Keep one shared OAuth artifact consistent across the control host and every
  running sandbox, any of which may have refreshed it independently.

What should be included in this file
- Scan: best-effort concurrent reads of every replica, temp copies always removed.
- Select: the replica with the latest expiry; ties go to the first in scan order.
- Validate: refuse to propagate an expired winner.
- Propagate: independent, unretried writes to every other location.

Functional requirements
- Zero readable replicas is ``NoCredentialsFoundError``; an expired winner is
  ``AllCredentialsExpiredError``. Neither propagates anything.
- The tally reads ``synced N/M``; ``N == 0`` with ``M > 0`` raises ``PropagationError``.
- A failed ownership fix downgrades to a warning on an otherwise synced target.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from maestro_fleet.auth.credentials import (
    CredentialError,
    CredentialReadError,
    current_time_ms,
    format_expiration,
    is_expired,
    is_expiring_soon,
    read_credentials,
)
from maestro_fleet.constants import HOST_LOCATION
from maestro_fleet.fleet.registry import parse_registry_output
from maestro_fleet.observability.logging import correlation_scope
from maestro_fleet.utils.concurrency import WorkerPool
from maestro_fleet.utils.fs import atomic_write, scratch_file

if TYPE_CHECKING:
    from collections.abc import Sequence

    from maestro_fleet.config.settings import FleetSettings
    from maestro_fleet.engine.client import ContainerEngine

logger = logging.getLogger(__name__)

HOST_FILE_MODE: Final[int] = 0o600
REAUTH_HINT: Final[str] = (
    "re-authenticate the agent on the host, then run `maestro-fleet refresh-tokens` again"
)


@dataclass(frozen=True, slots=True)
class CredentialReplica:
    """One readable copy of the artifact found during a scan."""

    location: str
    source_path: str
    expires_at_ms: int
    content: bytes = field(repr=False)

    @property
    def is_host(self) -> bool:
        return self.location == HOST_LOCATION


@dataclass(frozen=True, slots=True)
class ScanFailure:
    location: str
    reason: str


@dataclass(frozen=True, slots=True)
class ScanResult:
    replicas: tuple[CredentialReplica, ...]
    sandboxes: tuple[str, ...]
    failures: tuple[ScanFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class PropagationFailure:
    target: str
    reason: str


@dataclass(frozen=True, slots=True)
class PropagationTally:
    synced: tuple[str, ...] = ()
    failures: tuple[PropagationFailure, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def attempted(self) -> int:
        return len(self.synced) + len(self.failures)

    def render(self) -> str:
        return f"synced {len(self.synced)}/{self.attempted}"

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True, slots=True)
class ReconcileReport:
    scan: ScanResult
    winner: CredentialReplica
    tally: PropagationTally
    expiring_soon: bool
    now_ms: int

    def winner_status(self) -> str:
        return format_expiration(self.winner.expires_at_ms, self.now_ms)


class NoCredentialsFoundError(CredentialError):
    """No location held a readable artifact."""

    def __init__(self, scan: ScanResult) -> None:
        self.scan = scan
        self.hint = REAUTH_HINT
        super().__init__(
            f"no valid credentials found on the host or in any sandbox; {REAUTH_HINT}"
        )


class AllCredentialsExpiredError(CredentialError):
    """The freshest artifact found is already expired."""

    def __init__(self, winner: CredentialReplica, now_ms: int) -> None:
        self.winner = winner
        self.now_ms = now_ms
        self.hint = REAUTH_HINT
        status = format_expiration(winner.expires_at_ms, now_ms)
        super().__init__(
            f"all credentials are expired (latest in {winner.location}: {status}); {REAUTH_HINT}"
        )


class PropagationError(CredentialError):
    """Every propagation target failed."""

    def __init__(self, report: ReconcileReport) -> None:
        self.report = report
        details = "; ".join(f"{item.target}: {item.reason}" for item in report.tally.failures)
        super().__init__(f"credential propagation failed ({report.tally.render()}): {details}")


class CredentialReconciler:
    """Scan -> Select -> Validate -> Propagate over host + running sandboxes."""

    def __init__(
        self,
        engine: ContainerEngine,
        *,
        settings: FleetSettings,
        now_provider: Callable[[], int] | None = None,
        max_workers: int | None = None,
    ) -> None:
        self._engine = engine
        self._settings = settings
        self._now_ms = now_provider or current_time_ms
        self._pool = WorkerPool(
            max_workers=max_workers or settings.engine.max_workers,
            thread_name_prefix="credential-sync",
        )

    @property
    def host_path(self) -> str:
        return str(self._settings.auth.host_credentials_path)

    @property
    def remote_path(self) -> str:
        return self._settings.sandbox.credentials_path

    def running_sandboxes(self) -> list[str]:
        """Running sandbox names under the configured and legacy prefixes, deduplicated."""

        output = self._engine.list_containers(include_stopped=False)
        names: list[str] = []
        for prefix in self._settings.containers.scan_prefixes:
            for row in parse_registry_output(output, prefix):
                if row.is_running and row.name not in names:
                    names.append(row.name)
        return names

    def scan(self) -> ScanResult:
        replicas: list[CredentialReplica] = []
        failures: list[ScanFailure] = []

        try:
            host = read_credentials(self.host_path, source=HOST_LOCATION)
        except CredentialReadError as exc:
            logger.warning(
                "host credentials unreadable: %s", exc.reason, extra={"location": HOST_LOCATION}
            )
            failures.append(ScanFailure(location=HOST_LOCATION, reason=exc.reason))
        else:
            replicas.append(
                CredentialReplica(
                    location=HOST_LOCATION,
                    source_path=self.host_path,
                    expires_at_ms=host.expires_at_ms,
                    content=host.content,
                )
            )

        sandboxes = self.running_sandboxes()
        outcomes = self._pool.run_all([self._extract_task(name) for name in sandboxes])
        for name, outcome in zip(sandboxes, outcomes, strict=True):
            if outcome.ok and outcome.value is not None:
                replicas.append(outcome.value)
                continue
            error = outcome.error
            if not isinstance(error, (CredentialError, OSError)):
                raise error if error is not None else RuntimeError(f"no result for {name}")
            reason = error.reason if isinstance(error, CredentialReadError) else str(error)
            logger.warning(
                "credentials in %s unreadable: %s", name, reason, extra={"sandbox": name}
            )
            failures.append(ScanFailure(location=name, reason=reason))

        return ScanResult(
            replicas=tuple(replicas), sandboxes=tuple(sandboxes), failures=tuple(failures)
        )

    @staticmethod
    def select(replicas: Sequence[CredentialReplica]) -> CredentialReplica:
        if not replicas:
            raise NoCredentialsFoundError(ScanResult(replicas=(), sandboxes=()))
        winner = replicas[0]
        for candidate in replicas[1:]:
            if candidate.expires_at_ms > winner.expires_at_ms:
                winner = candidate
        return winner

    def validate(self, replica: CredentialReplica, *, now_ms: int | None = None) -> None:
        now = self._now_ms() if now_ms is None else now_ms
        if is_expired(replica.expires_at_ms, now):
            raise AllCredentialsExpiredError(replica, now)

    def propagate(
        self, winner: CredentialReplica, sandboxes: Sequence[str]
    ) -> PropagationTally:
        synced: list[str] = []
        failures: list[PropagationFailure] = []
        warnings: list[str] = []

        if not winner.is_host:
            try:
                atomic_write(
                    self.host_path, winner.content, mode=HOST_FILE_MODE, make_parents=True
                )
            except OSError as exc:
                logger.warning(
                    "failed to sync credentials to host: %s",
                    exc,
                    extra={"location": HOST_LOCATION},
                )
                failures.append(PropagationFailure(target=HOST_LOCATION, reason=str(exc)))
            else:
                synced.append(HOST_LOCATION)

        targets = [name for name in sandboxes if name != winner.location]
        outcomes = self._pool.run_all([self._push_task(winner, name) for name in targets])
        for name, outcome in zip(targets, outcomes, strict=True):
            if not outcome.ok:
                error = outcome.error
                if not isinstance(error, OSError):
                    raise error if error is not None else RuntimeError(f"no result for {name}")
                failures.append(PropagationFailure(target=name, reason=str(error)))
                continue
            failure, warning = outcome.value if outcome.value is not None else (None, None)
            if failure is not None:
                failures.append(failure)
                continue
            synced.append(name)
            if warning is not None:
                warnings.append(warning)

        return PropagationTally(
            synced=tuple(synced), failures=tuple(failures), warnings=tuple(warnings)
        )

    def reconcile(self) -> ReconcileReport:
        with correlation_scope(command="refresh-tokens"):
            scan = self.scan()
            if not scan.replicas:
                raise NoCredentialsFoundError(scan)
            winner = self.select(scan.replicas)
            now = self._now_ms()
            self.validate(winner, now_ms=now)
            logger.info(
                "freshest credentials in %s (%s)",
                winner.location,
                format_expiration(winner.expires_at_ms, now),
                extra={"location": winner.location},
            )

            tally = self.propagate(winner, scan.sandboxes)
            report = ReconcileReport(
                scan=scan,
                winner=winner,
                tally=tally,
                expiring_soon=is_expiring_soon(
                    winner.expires_at_ms,
                    now,
                    threshold_hours=self._settings.auth.expiring_soon_hours,
                ),
                now_ms=now,
            )
            logger.info("credential reconciliation %s", tally.render())
            if tally.attempted > 0 and not tally.synced:
                raise PropagationError(report)
            return report

    def sync_to_sandbox(self, name: str) -> CredentialReplica:
        """Push the freshest valid artifact into one sandbox only."""

        with correlation_scope(command="refresh-tokens", sandbox=name):
            scan = self.scan()
            if not scan.replicas:
                raise NoCredentialsFoundError(scan)
            winner = self.select(scan.replicas)
            now = self._now_ms()
            self.validate(winner, now_ms=now)
            if winner.location == name:
                return winner

            failure, _warning = self._push(winner, name)
            if failure is not None:
                tally = PropagationTally(failures=(failure,))
                raise PropagationError(
                    ReconcileReport(
                        scan=scan, winner=winner, tally=tally, expiring_soon=False, now_ms=now
                    )
                )
            return winner

    def _extract_task(self, name: str) -> Callable[[], CredentialReplica]:
        def task() -> CredentialReplica:
            return self._extract(name)

        return task

    def _extract(self, name: str) -> CredentialReplica:
        with scratch_file(prefix=f"maestro-creds-{name}-", suffix=".json") as local_copy:
            result = self._engine.copy_from(name, self.remote_path, local_copy)
            if not result.succeeded:
                raise CredentialReadError(name, f"copy-out failed: {result.detail()}")
            artifact = read_credentials(local_copy, source=name)
        return CredentialReplica(
            location=name,
            source_path=f"{name}:{self.remote_path}",
            expires_at_ms=artifact.expires_at_ms,
            content=artifact.content,
        )

    def _push_task(
        self, winner: CredentialReplica, name: str
    ) -> Callable[[], tuple[PropagationFailure | None, str | None]]:
        def task() -> tuple[PropagationFailure | None, str | None]:
            return self._push(winner, name)

        return task

    def _push(
        self, winner: CredentialReplica, name: str
    ) -> tuple[PropagationFailure | None, str | None]:
        sandbox = self._settings.sandbox
        with scratch_file(
            prefix="maestro-creds-push-", suffix=".json", content=winner.content
        ) as staged:
            copied = self._engine.copy_to(staged, name, self.remote_path)
        if not copied.succeeded:
            logger.warning(
                "failed to sync credentials to %s: %s",
                name,
                copied.detail(),
                extra={"sandbox": name},
            )
            return PropagationFailure(target=name, reason=copied.detail()), None

        chown = self._engine.exec(
            name, ("chown", sandbox.remote_owner, self.remote_path), user=sandbox.root_user
        )
        if not chown.succeeded:
            warning = f"synced to {name} but failed to fix ownership: {chown.detail()}"
            logger.warning("%s", warning, extra={"sandbox": name})
            return None, warning
        return None, None


__all__ = [
    "HOST_FILE_MODE",
    "REAUTH_HINT",
    "AllCredentialsExpiredError",
    "CredentialReconciler",
    "CredentialReplica",
    "NoCredentialsFoundError",
    "PropagationError",
    "PropagationFailure",
    "PropagationTally",
    "ReconcileReport",
    "ScanFailure",
    "ScanResult",
]
