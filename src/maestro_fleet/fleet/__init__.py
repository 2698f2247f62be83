"""
maestro-fleet fleet package.

File: src/maestro_fleet/fleet/__init__.py

Purpose
- Registry query, concurrent per-sandbox probes, composite records, table
  ranking/layout, detail view, and lifecycle operations.
"""

from maestro_fleet.fleet.details import SandboxDetails, fetch_sandbox_details
from maestro_fleet.fleet.display import (
    RenderedTable,
    SelectionError,
    TableLayout,
    compute_column_widths,
    layout_table,
    rank_records,
    render_table,
    select_by_index,
    status_label,
)
from maestro_fleet.fleet.fetcher import SandboxRecord, build_record, fetch_fleet
from maestro_fleet.fleet.operations import (
    SandboxStateError,
    StopTally,
    delete_sandbox,
    dormant_records,
    require_running,
    resolve_sandbox_name,
    restart_sandbox,
    stop_dormant,
    stop_sandbox,
)
from maestro_fleet.fleet.probes import ProbeFailure, SandboxProbes, format_duration
from maestro_fleet.fleet.registry import (
    RegistryRow,
    parse_registry_output,
    query_registry,
    short_name,
)

__all__ = [
    "ProbeFailure",
    "RegistryRow",
    "RenderedTable",
    "SandboxDetails",
    "SandboxProbes",
    "SandboxRecord",
    "SandboxStateError",
    "SelectionError",
    "StopTally",
    "TableLayout",
    "build_record",
    "compute_column_widths",
    "delete_sandbox",
    "dormant_records",
    "fetch_fleet",
    "fetch_sandbox_details",
    "format_duration",
    "layout_table",
    "parse_registry_output",
    "query_registry",
    "rank_records",
    "render_table",
    "require_running",
    "resolve_sandbox_name",
    "restart_sandbox",
    "select_by_index",
    "short_name",
    "status_label",
    "stop_dormant",
    "stop_sandbox",
]
