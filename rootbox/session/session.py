# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Terminal session model.

Lifecycle::

    STARTING --spawn ok--> RUNNING --exit--> EXITED --close--> (removed)
        \\--spawn failed----------------------^

An exited session keeps its terminal text and stays in the collection
until closed; it is never resumed.
"""

from __future__ import annotations

import enum
import threading
from dataclasses import dataclass, field
from pathlib import Path

from rootbox.session._pty import ProcessHandle
from rootbox.session.terminal import TerminalBuffer


EXITED_TITLE_PREFIX = "[Exited] "


class SessionState(enum.Enum):
    """Lifecycle states of a session."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"


@dataclass(eq=False)
class Session:
    """One sandboxed (or plain shell) interactive process.

    Owned by the SessionEngine; front ends read it but never mutate the
    collection it belongs to.

    Attributes:
        id: Unique, monotonically increasing identifier.
        title: Display title (prefixed once the process exits).
        command: Argument vector the process was started with.
        terminal: Terminal state owned exclusively by this session.
        working_directory: Directory the process was started in.
        env: Environment the process was started with.
        fallback_of: Id of the sandbox session this shell-wrapped retry
            replaces, or None for an ordinary session.
        state: Current lifecycle state.
        exit_code: Process exit status once EXITED.
        process: Handle of the running process (None until RUNNING).
        closed: Set once the session has been removed from the engine.
    """

    id: int
    title: str
    command: tuple[str, ...]
    terminal: TerminalBuffer
    working_directory: Path
    env: dict[str, str] = field(default_factory=dict, repr=False)
    fallback_of: int | None = None
    state: SessionState = SessionState.STARTING
    exit_code: int | None = None
    process: ProcessHandle | None = None
    closed: bool = False
    _started: threading.Event = field(
        default_factory=threading.Event, repr=False
    )
    _exited: threading.Event = field(
        default_factory=threading.Event, repr=False
    )

    @property
    def is_fallback(self) -> bool:
        return self.fallback_of is not None

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    @property
    def has_exited(self) -> bool:
        return self.state is SessionState.EXITED

    def wait_started(self, timeout: float | None = None) -> bool:
        """Block until the spawn attempt has resolved either way."""
        return self._started.wait(timeout)

    def wait_exited(self, timeout: float | None = None) -> bool:
        """Block until the process has exited."""
        return self._exited.wait(timeout)

    def send(self, data: str) -> None:
        """Type ``data`` into the session, as the front end would."""
        self.terminal.input(data)
