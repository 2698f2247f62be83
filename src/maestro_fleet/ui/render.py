"""Output rendering abstraction for the maestro-fleet CLI.

File: src/maestro_fleet/ui/render.py

Purpose
- Provide a thin rendering layer for CLI output.
- Respect NO_COLOR environment variable and --no-color CLI flag.

Functional requirements
- Plain-text rendering must always work without external dependencies.
- All public methods must be safe to call in any environment.
- Prompts read from an injectable input function so handlers stay testable.
"""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Callable
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from collections.abc import Sequence

    from maestro_fleet.fleet.display import RenderedTable

_FALLBACK_TERMINAL_WIDTH = 120

_ANSI_RESET = "\033[0m"
_ANSI_GREEN = "\033[32m"
_ANSI_YELLOW = "\033[33m"
_ANSI_RED = "\033[31m"


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer.

    Produces clean, deterministic plain-text output.
    Respects ``NO_COLOR`` env var and ``--no-color`` flag.
    """

    def __init__(
        self,
        *,
        no_color: bool = False,
        verbose: bool = False,
        stream: TextIO | None = None,
        input_fn: Callable[[str], str] = input,
    ) -> None:
        self.verbose = verbose
        self._stream = stream if stream is not None else sys.stdout
        self._color = _color_allowed(no_color, self._stream)
        self._input = input_fn

    def _print(self, line: str = "") -> None:
        print(line, file=self._stream)

    def _paint(self, code: str, text: str) -> str:
        if not self._color:
            return text
        return f"{code}{text}{_ANSI_RESET}"

    def terminal_width(self) -> int:
        return shutil.get_terminal_size((_FALLBACK_TERMINAL_WIDTH, 24)).columns

    def heading(self, text: str) -> None:
        """Print a heading line."""

        self._print(text)

    def kv(self, key: str, value: object) -> None:
        """Print a key: value pair."""

        self._print(f"{key}: {value}")

    def text(self, line: str) -> None:
        self._print(line)

    def blank(self) -> None:
        self._print()

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        self._print(f"\n{title}")

    def success(self, text: str) -> None:
        self._print(self._paint(_ANSI_GREEN, f"✅ {text}"))

    def warning(self, text: str) -> None:
        self._print(self._paint(_ANSI_YELLOW, f"  Warning: {text}"))

    def error(self, text: str) -> None:
        self._print(self._paint(_ANSI_RED, f"❌ {text}"))

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        """Print a bulleted list."""

        for entry in entries:
            self._print(f"  {prefix}{entry}")

    def ok(self, label: str) -> None:
        self._print(f"  ✓ {label}")

    def fail(self, label: str) -> None:
        self._print(f"  ✗ {label}")

    def fleet_table(self, table: RenderedTable) -> None:
        """Print pre-laid-out fleet table lines."""

        for line in table.lines:
            self._print(line)

    def next_steps(self, steps: Sequence[str]) -> None:
        """Print actionable next-step hints."""

        if not steps:
            return
        self.section("Commands:")
        for step in steps:
            self._print(f"  $ {step}")

    def prompt(self, question: str) -> str:
        """Ask ``question``; end-of-input reads as an empty answer."""

        try:
            return self._input(question)
        except EOFError:
            return ""

    def confirm(self, question: str) -> bool:
        answer = self.prompt(f"{question} (y/N): ").strip().lower()
        return answer in {"y", "yes"}


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


__all__ = ["CLIRenderer", "create_renderer"]
