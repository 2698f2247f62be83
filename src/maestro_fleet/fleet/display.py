"""
maestro-fleet — fleet table ranking and layout.

File: src/maestro_fleet/fleet/display.py

Purpose
- Turn a list of ``SandboxRecord`` values into ranked, width-fitted table lines.

Functional requirements
- Ranking: running first, then needs-attention first, then name ascending.
- Column widths scale with the terminal, never shrink below each column's
  minimum, and stop growing at the configured maximum table width; wider
  terminals center the table instead of stretching it.
- Index selection maps a 1-based user input back to the ranked record and
  rejects anything else with ``SelectionError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from maestro_fleet.fleet.fetcher import SandboxRecord

DEFAULT_MAX_TABLE_WIDTH: Final[int] = 160
INDEX_WIDTH: Final[int] = 4

STATUS_WAITING: Final[str] = "⚠️  Waiting"
STATUS_RUNNING: Final[str] = "● Running"
STATUS_STOPPED: Final[str] = "■ Stopped"


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    title: str
    base: int
    minimum: int


COLUMNS: Final[tuple[ColumnSpec, ...]] = (
    ColumnSpec("NAME", 25, 15),
    ColumnSpec("STATUS", 14, 12),
    ColumnSpec("BRANCH", 25, 15),
    ColumnSpec("GIT", 10, 8),
    ColumnSpec("ACTIVITY", 12, 10),
    ColumnSpec("AUTH", 12, 10),
)
TOTAL_BASE_WIDTH: Final[int] = sum(column.base for column in COLUMNS)
# One space between adjacent columns.
SEPARATOR_WIDTH: Final[int] = len(COLUMNS) - 1

_NAME_COLUMN: Final[int] = 0
_BRANCH_COLUMN: Final[int] = 2


class SelectionError(ValueError):
    """Raised when a user-supplied table index does not name a row."""


@dataclass(frozen=True, slots=True)
class TableLayout:
    widths: tuple[int, ...]
    margin: int
    numbered: bool = False

    @property
    def table_width(self) -> int:
        index = INDEX_WIDTH if self.numbered else 0
        return index + sum(self.widths) + SEPARATOR_WIDTH


@dataclass(frozen=True, slots=True)
class RenderedTable:
    lines: tuple[str, ...]
    order: tuple[SandboxRecord, ...]


def rank_records(records: Iterable[SandboxRecord]) -> list[SandboxRecord]:
    return sorted(
        records,
        key=lambda record: (not record.is_running, not record.needs_attention, record.name),
    )


def compute_column_widths(available_width: int, *, numbered: bool = False) -> tuple[int, ...]:
    """Scale the base widths so a full row, separators and index included, fits.

    Below the base total the base widths are used as-is and the row overflows.
    """

    usable = available_width - SEPARATOR_WIDTH - (INDEX_WIDTH if numbered else 0)
    usable = max(usable, TOTAL_BASE_WIDTH)
    widths = [
        max(column.base * usable // TOTAL_BASE_WIDTH, column.minimum) for column in COLUMNS
    ]
    leftover = usable - sum(widths)
    if leftover > 0:
        branch_share = leftover // 2
        widths[_NAME_COLUMN] += leftover - branch_share
        widths[_BRANCH_COLUMN] += branch_share
    return tuple(widths)


def layout_table(
    terminal_width: int,
    *,
    max_width: int = DEFAULT_MAX_TABLE_WIDTH,
    numbered: bool = False,
) -> TableLayout:
    """Size columns for ``min(terminal_width, max_width)``; center the table when capped."""

    widths = compute_column_widths(min(terminal_width, max_width), numbered=numbered)
    layout = TableLayout(widths=widths, margin=0, numbered=numbered)
    if terminal_width <= max_width:
        return layout
    margin = max((terminal_width - layout.table_width) // 2, 0)
    return TableLayout(widths=widths, margin=margin, numbered=numbered)


def status_label(record: SandboxRecord) -> str:
    if record.is_running:
        return STATUS_WAITING if record.needs_attention else STATUS_RUNNING
    if record.state == "exited":
        return STATUS_STOPPED
    return f"? {record.state}"


def render_table(
    records: Iterable[SandboxRecord],
    *,
    numbered: bool = False,
    terminal_width: int = 120,
    max_width: int = DEFAULT_MAX_TABLE_WIDTH,
) -> RenderedTable:
    """Rank ``records`` and render header plus one line per record."""

    order = tuple(rank_records(records))
    layout = layout_table(terminal_width, max_width=max_width, numbered=numbered)
    indent = " " * layout.margin

    header = _format_row([column.title for column in COLUMNS], layout.widths)
    if numbered:
        header = "#".rjust(INDEX_WIDTH - 1) + " " + header
    lines = [indent + header, indent + "-" * len(header)]

    for index, record in enumerate(order, start=1):
        cells = [
            record.short_name,
            status_label(record),
            record.branch,
            record.git_status,
            record.last_activity,
            record.auth_status,
        ]
        line = _format_row(cells, layout.widths)
        if numbered:
            line = f"{index:>{INDEX_WIDTH - 1}} " + line
        lines.append(indent + line)

    return RenderedTable(lines=tuple(lines), order=order)


def select_by_index(order: Sequence[SandboxRecord], raw: str) -> SandboxRecord:
    text = raw.strip()
    if not text:
        raise SelectionError("no selection given")
    if not (text.isascii() and text.isdigit()):
        raise SelectionError(f"invalid selection {text!r}; enter a number")
    index = int(text)
    if not 1 <= index <= len(order):
        raise SelectionError(f"selection {index} out of range (1-{len(order)})")
    return order[index - 1]


def _format_row(cells: Sequence[str], widths: Sequence[int]) -> str:
    return " ".join(_fit(cell, width) for cell, width in zip(cells, widths, strict=True)).rstrip()


def _fit(text: str, width: int) -> str:
    if len(text) > width:
        return text[: width - 1] + "…"
    return text.ljust(width)


__all__ = [
    "COLUMNS",
    "DEFAULT_MAX_TABLE_WIDTH",
    "INDEX_WIDTH",
    "SEPARATOR_WIDTH",
    "STATUS_RUNNING",
    "STATUS_STOPPED",
    "STATUS_WAITING",
    "TOTAL_BASE_WIDTH",
    "ColumnSpec",
    "RenderedTable",
    "SelectionError",
    "TableLayout",
    "compute_column_widths",
    "layout_table",
    "rank_records",
    "render_table",
    "select_by_index",
    "status_label",
]
