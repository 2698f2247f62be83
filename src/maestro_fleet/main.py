"""Executable CLI entrypoint for ``maestro_fleet``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    OPERATION_FAILED = 1
    CONFIG_ERROR = 2
    ENGINE_UNAVAILABLE = 3
    INTERNAL_ERROR = 4


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m maestro_fleet`` and the console script."""

    try:
        from maestro_fleet.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except KeyboardInterrupt:
        _write_stderr("interrupted")
        return int(ExitCode.OPERATION_FAILED)
    except Exception as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        _emit_failure(exc, exit_code)
        return int(exit_code)


def _normalize_exit_code(raw_code: object) -> int:
    if isinstance(raw_code, int) and raw_code in {0, 1, 2, 3, 4}:
        return raw_code
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, int):
        # Attached sessions may exit with arbitrary codes.
        return int(ExitCode.OPERATION_FAILED)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def _route_exception(exc: BaseException) -> ExitCode:
    config_error_types = _config_error_types()
    operation_error_types = _operation_error_types()
    from maestro_fleet.engine.client import EngineUnavailableError

    for item in _iter_exception_chain(exc):
        if isinstance(item, EngineUnavailableError):
            return ExitCode.ENGINE_UNAVAILABLE
        if isinstance(item, config_error_types):
            return ExitCode.CONFIG_ERROR
        if isinstance(item, operation_error_types):
            return ExitCode.OPERATION_FAILED
    return ExitCode.INTERNAL_ERROR


def _config_error_types() -> tuple[type[BaseException], ...]:
    from maestro_fleet.config.loader import ConfigLoadError
    from maestro_fleet.config.schema import ConfigValidationError

    return (ConfigLoadError, ConfigValidationError)


def _operation_error_types() -> tuple[type[BaseException], ...]:
    from maestro_fleet.auth.credentials import CredentialError
    from maestro_fleet.engine.client import EngineCommandError
    from maestro_fleet.firewall.whitelist import WhitelistError
    from maestro_fleet.fleet.display import SelectionError
    from maestro_fleet.fleet.operations import SandboxStateError

    return (
        CredentialError,
        EngineCommandError,
        SandboxStateError,
        SelectionError,
        WhitelistError,
    )


def _iter_exception_chain(exc: BaseException) -> list[BaseException]:
    seen: set[int] = set()
    items: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None:
        marker = id(current)
        if marker in seen:
            break
        seen.add(marker)
        items.append(current)
        if current.__cause__ is not None:
            current = current.__cause__
            continue
        if current.__context__ is not None and not current.__suppress_context__:
            current = current.__context__
            continue
        break
    return items


def _emit_failure(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR:
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        return
    _write_stderr(f"error: {str(exc).strip() or exc.__class__.__name__}")


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint"]
