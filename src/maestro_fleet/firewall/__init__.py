"""
maestro-fleet firewall package.

File: src/maestro_fleet/firewall/__init__.py

Purpose
- Propagate allowed domains into sandbox resolver configs.
"""

from maestro_fleet.firewall.whitelist import (
    DomainWhitelist,
    InvalidDomainError,
    SandboxNotRunningError,
    WhitelistError,
    WhitelistResult,
    normalize_domain,
)

__all__ = [
    "DomainWhitelist",
    "InvalidDomainError",
    "SandboxNotRunningError",
    "WhitelistError",
    "WhitelistResult",
    "normalize_domain",
]
