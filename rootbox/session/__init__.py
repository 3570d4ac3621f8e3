# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Terminal session orchestration.

The engine owns the session collection; sessions own their terminal
buffer and process handle. Front ends subscribe to the engine's change
notification and re-read its state.
"""

from rootbox.session._pty import ProcessFactory, ProcessHandle, PtyProcess
from rootbox.session.engine import (
    SPAWN_FAILED_EXIT_CODE,
    ChangeListener,
    SessionEngine,
)
from rootbox.session.session import Session, SessionState
from rootbox.session.terminal import TerminalBuffer


__all__ = [
    # engine
    "SessionEngine",
    "ChangeListener",
    "SPAWN_FAILED_EXIT_CODE",
    # session
    "Session",
    "SessionState",
    # terminal
    "TerminalBuffer",
    # processes
    "ProcessFactory",
    "ProcessHandle",
    "PtyProcess",
]
