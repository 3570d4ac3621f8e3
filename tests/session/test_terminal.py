# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for rootbox/session/terminal.py -- terminal state."""

import logging
import threading

import pytest

from rootbox.session.terminal import TerminalBuffer


class TestOutput:
    """Tests for TerminalBuffer output handling."""

    def test_write_appends(self) -> None:
        """Writes accumulate, continuing the current line."""
        term = TerminalBuffer()
        term.write("hel")
        term.write("lo\nwor")
        term.write("ld")

        assert term.lines == ["hello", "world"]
        assert term.text == "hello\nworld"

    def test_empty_write_is_ignored(self) -> None:
        """An empty write neither changes text nor notifies."""
        term = TerminalBuffer()
        seen: list[str] = []
        term.add_output_listener(seen.append)

        term.write("")

        assert term.text == ""
        assert seen == []

    def test_scrollback_bound(self) -> None:
        """Only the newest max_lines lines are kept."""
        term = TerminalBuffer(max_lines=3)
        term.write("1\n2\n3\n4\n5")

        assert term.lines == ["3", "4", "5"]

    def test_listeners(self) -> None:
        """Listeners receive every write until removed."""
        term = TerminalBuffer()
        seen: list[str] = []
        term.add_output_listener(seen.append)

        term.write("a")
        term.remove_output_listener(seen.append)
        term.write("b")

        assert seen == ["a"]

    def test_remove_unknown_listener(self) -> None:
        """Removing a listener that was never added is harmless."""
        TerminalBuffer().remove_output_listener(print)

    @pytest.mark.parametrize(
        "error", [RuntimeError("boom"), BrokenPipeError(32, "Broken pipe")]
    )
    def test_failing_listener_is_isolated(
        self, error: Exception, caplog
    ) -> None:
        """A raising listener is logged; the write and later listeners stand."""
        term = TerminalBuffer()
        seen: list[str] = []

        def broken(data: str) -> None:
            raise error

        term.add_output_listener(broken)
        term.add_output_listener(seen.append)

        with caplog.at_level(logging.ERROR):
            term.write("a")
            term.write("b")

        assert term.text == "ab"
        assert seen == ["a", "b"]
        assert "Output listener failed" in caplog.text

    def test_wait_for_existing_text(self) -> None:
        term = TerminalBuffer()
        term.write("ready> ")

        assert term.wait_for("ready>", timeout=0.1) is True

    def test_wait_for_timeout(self) -> None:
        assert TerminalBuffer().wait_for("never", timeout=0.05) is False

    def test_wait_for_concurrent_write(self) -> None:
        """wait_for wakes up when another thread writes the needle."""
        term = TerminalBuffer()
        timer = threading.Timer(0.05, term.write, args=("done\n",))
        timer.start()
        try:
            assert term.wait_for("done", timeout=5) is True
        finally:
            timer.join()


class TestInput:
    """Tests for TerminalBuffer keystroke routing."""

    def test_input_before_connect_is_queued(self) -> None:
        """Keystrokes typed early are flushed in order on connect."""
        term = TerminalBuffer()
        sent: list[str] = []
        term.input("l")
        term.input("s\n")

        term.connect_input(sent.append)
        term.input("pwd\n")

        assert sent == ["l", "s\n", "pwd\n"]

    def test_disconnect_queues_again(self) -> None:
        """After disconnecting, input is queued instead of sent."""
        term = TerminalBuffer()
        sent: list[str] = []
        term.connect_input(sent.append)
        term.connect_input(None)

        term.input("x")

        assert sent == []
        other: list[str] = []
        term.connect_input(other.append)
        assert other == ["x"]


class TestResize:
    """Tests for TerminalBuffer geometry."""

    def test_default_size(self) -> None:
        assert TerminalBuffer().size == (80, 24)

    def test_resize_without_handler(self) -> None:
        """Geometry is recorded even when nothing is connected."""
        term = TerminalBuffer()
        term.resize(120, 40)

        assert term.size == (120, 40)

    def test_connect_applies_current_size(self) -> None:
        """Connecting a handler pushes the current geometry to it."""
        term = TerminalBuffer(cols=100, rows=30)
        sizes: list[tuple[int, int]] = []

        term.connect_resize(lambda c, r: sizes.append((c, r)))
        term.resize(132, 43)

        assert sizes == [(100, 30), (132, 43)]
