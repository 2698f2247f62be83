"""
maestro-fleet — per-run JSON-lines logging.

File: src/maestro_fleet/observability/logging.py

Purpose
- Route the ``maestro_fleet`` logger tree into ``<log_dir>/<run_id>/maestro-fleet.jsonl``.
- Tag every event with the run id and the sandbox/location it concerns.
- Keep credential material (OAuth tokens, bearer headers, API keys) out of log lines.

Notes
- Scope fields set with :func:`correlation_scope` are captured in the emitting
  thread; explicit ``extra={"sandbox": ...}`` on a call wins over the scope.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

LOGGER_NAME: Final[str] = "maestro_fleet"
LOG_FILENAME: Final[str] = "maestro-fleet.jsonl"
REDACTED: Final[str] = "***REDACTED***"

SCOPE_FIELDS: Final[tuple[str, ...]] = ("command", "sandbox", "location")

_SECRET_KEY_PARTS: Final[tuple[str, ...]] = (
    "token",
    "secret",
    "password",
    "authorization",
    "oauth",
    "api_key",
    "credential_content",
)
_SECRET_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r'("(?:accessToken|refreshToken|idToken)"\s*:\s*)"[^"]*"'),
        rf'\1"{REDACTED}"',
    ),
    (re.compile(r"(?i)\bBearer\s+[A-Za-z0-9._~+/=-]+"), f"Bearer {REDACTED}"),
    (re.compile(r"sk-ant-[A-Za-z0-9_-]{12,}"), REDACTED),
    (
        re.compile(r"(?i)\b((?:access_|refresh_)?token|password|secret|api_key)=[^\s&,;]+"),
        rf"\1={REDACTED}",
    ),
)
# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS: Final[frozenset[str]] = frozenset(
    (*vars(logging.makeLogRecord({})), "message", "asctime")
)

_scope: ContextVar[Mapping[str, str]] = ContextVar("maestro_fleet_log_scope", default={})
_installed: list[logging.Handler] = []


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Attach ``command``/``sandbox``/``location`` to every event logged inside the block.

    A ``None`` value clears that field for the duration of the block.
    """

    merged = dict(_scope.get())
    for key, value in fields.items():
        if value:
            merged[key] = value
        else:
            merged.pop(key, None)
    token = _scope.set(merged)
    try:
        yield
    finally:
        _scope.reset(token)


def redact(value: object) -> object:
    """Strip credential material from strings, mappings and sequences."""

    if isinstance(value, str):
        for pattern, replacement in _SECRET_PATTERNS:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, Mapping):
        return {
            str(key): REDACTED if _is_secret_key(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


class _ScopeFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _scope.get().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record, scope fields flattened at the top level."""

    def __init__(self, *, run_id: str, redact_secrets: bool = True) -> None:
        super().__init__()
        self._run_id = run_id
        self._redact_secrets = redact_secrets

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        event: dict[str, object] = {
            "timestamp": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "run_id": self._run_id,
            "message": record.getMessage(),
        }
        extras: dict[str, object] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS:
                continue
            if key in SCOPE_FIELDS:
                if value is not None:
                    event[key] = str(value)
            else:
                extras[key] = value
        if extras:
            event["fields"] = extras
        if record.exc_info:
            event["exception"] = self.formatException(record.exc_info)

        if self._redact_secrets:
            event = redact(event)  # type: ignore[assignment]
        return json.dumps(event, sort_keys=True, ensure_ascii=False, default=str)


def setup_logging(
    observability: Mapping[str, object],
    *,
    run_id: str,
) -> Path:
    """Install file (and optionally stderr) handlers for one CLI run.

    ``observability`` is the validated ``observability`` config section.
    Returns the path of the JSON-lines file for this run. Calling again
    replaces the handlers from the previous call.
    """

    shutdown_logging()

    level_name = str(observability.get("log_level", "INFO")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        raise ValueError(f"unknown log level: {level_name}")

    run_dir = Path(str(observability.get("log_dir", "~/.maestro/logs"))).expanduser() / run_id
    run_dir.mkdir(parents=True, exist_ok=True)
    log_path = run_dir / LOG_FILENAME

    formatter = JsonLineFormatter(
        run_id=run_id, redact_secrets=bool(observability.get("redact_secrets", True))
    )
    handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if observability.get("log_to_stderr"):
        handlers.append(logging.StreamHandler(sys.stderr))

    logger = logging.getLogger(LOGGER_NAME)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_ScopeFilter())
        logger.addHandler(handler)
        _installed.append(handler)
    logger.setLevel(level)
    logger.propagate = False
    return log_path


def shutdown_logging() -> None:
    """Detach and close every handler installed by :func:`setup_logging`."""

    logger = logging.getLogger(LOGGER_NAME)
    while _installed:
        handler = _installed.pop()
        logger.removeHandler(handler)
        handler.close()


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SECRET_KEY_PARTS)


__all__ = [
    "JsonLineFormatter",
    "LOGGER_NAME",
    "LOG_FILENAME",
    "REDACTED",
    "correlation_scope",
    "redact",
    "setup_logging",
    "shutdown_logging",
]
