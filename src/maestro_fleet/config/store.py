"""Write-back helpers for the user config file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from maestro_fleet.config.loader import ConfigLoadError, load_yaml_file
from maestro_fleet.config.schema import DEFAULT_ALLOWED_DOMAINS
from maestro_fleet.utils.fs import atomic_write

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)


def persist_allowed_domain(
    path: str | Path,
    domain: str,
    *,
    defaults: Sequence[str] = DEFAULT_ALLOWED_DOMAINS,
) -> bool:
    """Add ``domain`` to ``firewall.allowed_domains`` in the YAML file at ``path``.

    When the file has no list yet, the new list starts from ``defaults`` so that
    persisting one domain never drops the built-in ones. Returns ``False`` when
    the domain was already present and nothing was written.
    """

    target = Path(path).expanduser()
    payload: dict[str, Any] = load_yaml_file(target, required=False)

    firewall = payload.get("firewall")
    if firewall is None:
        firewall = {}
        payload["firewall"] = firewall
    if not isinstance(firewall, dict):
        raise ConfigLoadError(f"{target}: 'firewall' must be a mapping")

    current = firewall.get("allowed_domains")
    if current is None:
        domains = list(defaults)
    elif isinstance(current, list):
        domains = [str(item) for item in current]
    else:
        raise ConfigLoadError(f"{target}: 'firewall.allowed_domains' must be a list")

    if domain in domains:
        logger.debug("domain %s already persisted in %s", domain, target)
        return False

    domains.append(domain)
    firewall["allowed_domains"] = _dedupe(domains)

    rendered = yaml.safe_dump(payload, sort_keys=False, default_flow_style=False)
    atomic_write(target, rendered, make_parents=True)
    logger.info("persisted domain %s to %s", domain, target)
    return True


def _dedupe(items: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


__all__ = ["persist_allowed_domain"]
