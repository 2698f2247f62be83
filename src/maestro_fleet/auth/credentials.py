"""
maestro-fleet — credential artifact reader.

File: src/maestro_fleet/auth/credentials.py

Purpose
- Parse the shared OAuth credential artifact and classify its freshness.

Functional requirements
- The artifact is JSON ``{"claudeAiOauth": {"expiresAt": <epoch-ms>, ...}}``.
- A missing file, unreadable file, malformed JSON, or missing/non-integer
  expiry is a ``CredentialReadError``; nothing else is inferred from the body.
- Expiry is inclusive: an artifact whose expiry equals "now" is expired.
- Every formatting helper is a pure function of ``(expires_at_ms, now_ms)``.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final

from maestro_fleet.constants import (
    AUTH_EXPIRED,
    EXPIRING_SOON_HOURS,
)

OAUTH_SECTION: Final[str] = "claudeAiOauth"
EXPIRES_AT_FIELD: Final[str] = "expiresAt"

_MS_PER_HOUR: Final[float] = 3_600_000.0
_HOURS_PER_DAY: Final[float] = 24.0


class CredentialError(RuntimeError):
    """Base error for credential read and reconciliation failures."""


class CredentialReadError(CredentialError):
    """Raised when a credential artifact cannot be read or parsed."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


@dataclass(frozen=True, slots=True)
class CredentialArtifact:
    """Parsed credential artifact; ``content`` keeps the exact bytes read."""

    expires_at_ms: int
    source: str
    content: bytes = field(repr=False)


def current_time_ms() -> int:
    return time.time_ns() // 1_000_000


def parse_credentials(data: bytes, *, source: str) -> CredentialArtifact:
    try:
        payload = json.loads(data.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise CredentialReadError(source, f"not valid UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise CredentialReadError(source, f"malformed JSON: {exc}") from exc

    if not isinstance(payload, dict):
        raise CredentialReadError(source, "top-level JSON value must be an object")
    oauth = payload.get(OAUTH_SECTION)
    if not isinstance(oauth, dict):
        raise CredentialReadError(source, f"missing {OAUTH_SECTION!r} object")
    expires_at = oauth.get(EXPIRES_AT_FIELD)
    if isinstance(expires_at, bool) or not isinstance(expires_at, int):
        raise CredentialReadError(
            source, f"{OAUTH_SECTION}.{EXPIRES_AT_FIELD} must be an integer epoch-ms value"
        )
    return CredentialArtifact(expires_at_ms=expires_at, source=source, content=data)


def read_credentials(path: str | Path, *, source: str | None = None) -> CredentialArtifact:
    """Read and parse the artifact at ``path``.

    Raises :class:`CredentialReadError` for every failure mode.
    """

    target = Path(path)
    label = source or str(target)
    try:
        data = target.read_bytes()
    except FileNotFoundError as exc:
        raise CredentialReadError(label, "credential file not found") from exc
    except OSError as exc:
        raise CredentialReadError(label, f"unable to read credential file: {exc}") from exc
    return parse_credentials(data, source=label)


def is_expired(expires_at_ms: int, now_ms: int) -> bool:
    return expires_at_ms <= now_ms


def time_until_expiration_ms(expires_at_ms: int, now_ms: int) -> int:
    """Milliseconds until expiry; negative once expired."""

    return expires_at_ms - now_ms


def is_expiring_soon(
    expires_at_ms: int, now_ms: int, *, threshold_hours: float = EXPIRING_SOON_HOURS
) -> bool:
    remaining = time_until_expiration_ms(expires_at_ms, now_ms)
    return 0 < remaining < threshold_hours * _MS_PER_HOUR


def format_expiration(expires_at_ms: int, now_ms: int) -> str:
    """Human-readable freshness: ``EXPIRED 1.5h ago``, ``Valid for 3.0h`` or ``Valid for 2.0d``."""

    remaining = time_until_expiration_ms(expires_at_ms, now_ms)
    if remaining <= 0:
        return f"EXPIRED {-remaining / _MS_PER_HOUR:.1f}h ago"
    hours = remaining / _MS_PER_HOUR
    if hours < _HOURS_PER_DAY:
        return f"Valid for {hours:.1f}h"
    return f"Valid for {hours / _HOURS_PER_DAY:.1f}d"


def auth_label(
    expires_at_ms: int,
    now_ms: int,
    *,
    expiring_soon_hours: float = EXPIRING_SOON_HOURS,
) -> str:
    """Compact status-table label for a readable artifact."""

    if is_expired(expires_at_ms, now_ms):
        return AUTH_EXPIRED
    hours = time_until_expiration_ms(expires_at_ms, now_ms) / _MS_PER_HOUR
    if hours < expiring_soon_hours:
        return f"⚠ {hours:.1f}h"
    return f"✓ {hours:.1f}h"


__all__ = [
    "EXPIRES_AT_FIELD",
    "OAUTH_SECTION",
    "CredentialArtifact",
    "CredentialError",
    "CredentialReadError",
    "auth_label",
    "current_time_ms",
    "format_expiration",
    "is_expired",
    "is_expiring_soon",
    "parse_credentials",
    "read_credentials",
    "time_until_expiration_ms",
]
