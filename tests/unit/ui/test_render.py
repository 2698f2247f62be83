"""Unit tests for the plain-text CLI renderer."""

from __future__ import annotations

import io

import pytest

from maestro_fleet.ui.render import CLIRenderer


def _eof(_: str) -> str:
    raise EOFError


def test_non_tty_stream_is_never_colored() -> None:
    stream = io.StringIO()
    renderer = CLIRenderer(stream=stream)

    renderer.success("done")
    renderer.warning("careful")

    assert stream.getvalue() == "✅ done\n  Warning: careful\n"


@pytest.mark.parametrize(("answer", "expected"), [("y", True), (" YES ", True), ("n", False)])
def test_confirm_accepts_only_yes(answer: str, expected: bool) -> None:
    renderer = CLIRenderer(stream=io.StringIO(), input_fn=lambda _: answer)

    assert renderer.confirm("Stop?") is expected


def test_end_of_input_reads_as_empty_answer() -> None:
    renderer = CLIRenderer(stream=io.StringIO(), input_fn=_eof)

    assert renderer.prompt("pick: ") == ""
    assert renderer.confirm("Stop?") is False


def test_next_steps_section() -> None:
    stream = io.StringIO()

    CLIRenderer(stream=stream).next_steps(["maestro-fleet list"])

    assert stream.getvalue() == "\nCommands:\n  $ maestro-fleet list\n"
