# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Per-session terminal state.

A TerminalBuffer holds the decoded output of one process (bounded
scrollback) and is the origin of keystrokes and resize requests headed
back to it. Rendering is left to the front end: the buffer stores text as
received, escape sequences included.

The three directions are independent wires:

- output: ``write()`` appends text and notifies output listeners
- input: ``input()`` forwards keystrokes to the connected writer
- resize: ``resize()`` forwards the geometry to the connected handler

Keystrokes typed before a writer is connected are queued and flushed on
connect, in order.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable


logger = logging.getLogger(__name__)

OutputListener = Callable[[str], None]
InputWriter = Callable[[str], None]
ResizeHandler = Callable[[int, int], None]


class TerminalBuffer:
    """Bounded text buffer plus input/resize wiring for one session.

    Thread Safety: write() is called from the session's output pump,
    input()/resize() from the front end. Output state is guarded by a
    condition variable and listeners run outside it. Input has its own
    lock so queued and live keystrokes keep their order.
    """

    def __init__(
        self, max_lines: int = 10000, cols: int = 80, rows: int = 24
    ) -> None:
        self._max_lines = max_lines
        self._lines: list[str] = [""]
        self._cond = threading.Condition()
        self._listeners: list[OutputListener] = []
        self._input_lock = threading.Lock()
        self._input_writer: InputWriter | None = None
        self._pending_input: list[str] = []
        self._resize_handler: ResizeHandler | None = None
        self._cols = cols
        self._rows = rows

    @property
    def text(self) -> str:
        """Everything still in scrollback, newline-joined."""
        with self._cond:
            return "\n".join(self._lines)

    @property
    def lines(self) -> list[str]:
        with self._cond:
            return list(self._lines)

    @property
    def size(self) -> tuple[int, int]:
        """Current geometry as (cols, rows)."""
        with self._cond:
            return self._cols, self._rows

    # -- output ---------------------------------------------------------

    def write(self, data: str) -> None:
        """Append process output and notify listeners."""
        if not data:
            return
        with self._cond:
            head, *rest = data.split("\n")
            self._lines[-1] += head
            self._lines.extend(rest)
            excess = len(self._lines) - self._max_lines
            if excess > 0:
                del self._lines[:excess]
            listeners = list(self._listeners)
            self._cond.notify_all()
        for listener in listeners:
            try:
                listener(data)
            except Exception as e:
                logger.error("Output listener failed: %s", e)

    def add_output_listener(self, listener: OutputListener) -> None:
        with self._cond:
            self._listeners.append(listener)

    def remove_output_listener(self, listener: OutputListener) -> None:
        with self._cond:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def wait_for(self, needle: str, timeout: float = 10.0) -> bool:
        """Block until ``needle`` appears in the buffer, or timeout.

        Returns:
            True if found, False on timeout.
        """
        deadline = time.monotonic() + timeout
        with self._cond:
            while needle not in "\n".join(self._lines):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._cond.wait(timeout=remaining)
            return True

    # -- input ----------------------------------------------------------

    def input(self, data: str) -> None:
        """Send keystrokes towards the process."""
        with self._input_lock:
            if self._input_writer is None:
                self._pending_input.append(data)
                return
            self._input_writer(data)

    def connect_input(self, writer: InputWriter | None) -> None:
        """Attach (or detach with None) the process input writer.

        Queued keystrokes are flushed to the new writer.
        """
        with self._input_lock:
            self._input_writer = writer
            if writer is None:
                return
            pending, self._pending_input = self._pending_input, []
            for data in pending:
                writer(data)

    # -- resize ---------------------------------------------------------

    def resize(self, cols: int, rows: int) -> None:
        """Record a new geometry and forward it to the process."""
        with self._cond:
            self._cols = cols
            self._rows = rows
            handler = self._resize_handler
        if handler is not None:
            handler(cols, rows)

    def connect_resize(self, handler: ResizeHandler | None) -> None:
        """Attach the resize handler and apply the current geometry."""
        with self._cond:
            self._resize_handler = handler
            cols, rows = self._cols, self._rows
        if handler is not None:
            handler(cols, rows)
