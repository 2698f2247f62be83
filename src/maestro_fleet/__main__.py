"""Module entrypoint for ``python -m maestro_fleet``."""

from __future__ import annotations

from maestro_fleet.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
