# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Session orchestration engine.

Owns the ordered collection of sessions and the active index. Every
mutation (create, close, activate, exit) happens under one re-entrant
lock and is followed by a "changed" notification, so observers always
see a consistent collection and may call back into the engine from
their callback.

Each session has a pump thread that spawns the process, copies its
output into the terminal buffer, waits for the exit and then re-enters
the engine to record it. Pumps of different sessions never share state
outside that lock.
"""

from __future__ import annotations

import codecs
import logging
import shlex
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from rootbox import __version__
from rootbox.config import DEFAULT_SANDBOX_BINARY, SessionConfig
from rootbox.environment.command import is_sandbox_command
from rootbox.environment.paths import Environment
from rootbox.session._pty import ProcessFactory, ProcessHandle, PtyProcess
from rootbox.session.session import (
    EXITED_TITLE_PREFIX,
    Session,
    SessionState,
)
from rootbox.session.terminal import TerminalBuffer


logger = logging.getLogger(__name__)

ChangeListener = Callable[[], None]

#: Exit status recorded when a process could not be started at all.
SPAWN_FAILED_EXIT_CODE = 127

FALLBACK_TITLE = "Shell Session"


def exit_banner(code: int) -> str:
    return f"\r\n\r\n[Process completed with exit code: {code}]"


class SessionEngine:
    """Spawns, multiplexes and supervises terminal sessions.

    One engine exists per process lifetime; it is constructed explicitly
    and passed to whoever needs it.

    Thread Safety: all public methods are thread-safe and linearizable.
    Change listeners run while the engine lock is held, on whichever
    thread made the change.
    """

    def __init__(
        self,
        environment: Environment,
        config: SessionConfig | None = None,
        *,
        sandbox_binary: str = DEFAULT_SANDBOX_BINARY,
        process_factory: ProcessFactory = PtyProcess.spawn,
    ) -> None:
        """Initialize the engine.

        Args:
            environment: Prepared environment (provides default cwd and
                the base environment variables).
            config: Session settings (fallback policy, scrollback).
            sandbox_binary: File name identifying sandbox commands.
            process_factory: Starts processes; replaced in tests.
        """
        self._env = environment
        self._config = config or SessionConfig()
        self._sandbox_binary = sandbox_binary
        self._process_factory = process_factory

        self._lock = threading.RLock()
        self._sessions: list[Session] = []
        self._active_index: int | None = None
        self._next_id = 1
        self._listeners: list[ChangeListener] = []

        self._shutdown_event = threading.Event()
        self._threads: list[threading.Thread] = []

    # -- accessors ------------------------------------------------------

    @property
    def sessions(self) -> tuple[Session, ...]:
        """Snapshot of the sessions in creation order."""
        with self._lock:
            return tuple(self._sessions)

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def active_index(self) -> int | None:
        with self._lock:
            return self._active_index

    @property
    def active_session(self) -> Session | None:
        with self._lock:
            if self._active_index is None:
                return None
            return self._sessions[self._active_index]

    @property
    def has_sessions(self) -> bool:
        with self._lock:
            return bool(self._sessions)

    def get_session(self, session_id: int) -> Session | None:
        with self._lock:
            index = self._index_of(session_id)
            return None if index is None else self._sessions[index]

    def base_environment(self) -> dict[str, str]:
        """Variables every spawned process starts with."""
        rootfs = self._env.rootfs_path
        return {
            "TERM": "xterm-256color",
            "HOME": str(self._env.home_path),
            "PREFIX": str(rootfs),
            "PATH": f"/usr/local/bin:/usr/bin:/bin:/system/bin:{rootfs}/bin",
            "LANG": "en_US.UTF-8",
            "ROOTBOX_VERSION": __version__,
        }

    def triggers_fallback(self, session: Session) -> bool:
        """Whether ``session`` exiting now starts a shell-wrapped retry.

        Only a direct sandbox launch that ended with the configured
        sentinel qualifies, and a fallback never falls back again.
        """
        return (
            not session.is_fallback
            and session.exit_code == self._config.fallback_exit_code
            and is_sandbox_command(list(session.command), self._sandbox_binary)
        )

    def fallback_for(self, session_id: int) -> Session | None:
        """The fallback session started for ``session_id``, if any."""
        with self._lock:
            for session in self._sessions:
                if session.fallback_of == session_id:
                    return session
            return None

    # -- observers ------------------------------------------------------

    def add_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # -- operations -----------------------------------------------------

    def create_session(
        self,
        command: Sequence[str],
        working_directory: Path | None = None,
        title: str | None = None,
        *,
        env: dict[str, str] | None = None,
    ) -> int:
        """Add a session running ``command`` and make it active.

        The process starts asynchronously; a failed start shows up later
        as an exit, never as an exception here.

        Args:
            command: Argument vector, program first.
            working_directory: Defaults to the environment's home.
            title: Display title; defaults to ``Session <id>``.
            env: Extra variables layered over base_environment().

        Returns:
            The new session's id.

        Raises:
            ValueError: If command is empty.
        """
        return self._create(command, working_directory, title, env=env)

    def close_session(self, session_id: int) -> None:
        """Kill the session's process and remove it. Unknown ids no-op."""
        with self._lock:
            index = self._index_of(session_id)
            if index is None:
                return

            session = self._sessions.pop(index)
            session.closed = True
            if session.process is not None:
                session.process.kill()

            if not self._sessions:
                self._active_index = None
            elif self._active_index is not None and self._active_index >= index:
                self._active_index = min(
                    max(self._active_index - 1, 0), len(self._sessions) - 1
                )

            logger.info("Closed session (ID: %d)", session_id)
            self._notify()

    def set_active_session(self, session_id: int) -> None:
        """Activate ``session_id``; notifies only on an actual change."""
        with self._lock:
            index = self._index_of(session_id)
            if index is None or index == self._active_index:
                return
            self._active_index = index
            self._notify()

    def shutdown(self, timeout: float = 5.0) -> None:
        """Close every session and wait briefly for the pumps to end."""
        self._shutdown_event.set()
        with self._lock:
            ids = [s.id for s in self._sessions]
        for session_id in ids:
            self.close_session(session_id)
        for thread in list(self._threads):
            thread.join(timeout)

    # -- internals ------------------------------------------------------

    def _create(
        self,
        command: Sequence[str],
        working_directory: Path | None,
        title: str | None,
        *,
        env: dict[str, str] | None,
        fallback_of: int | None = None,
    ) -> int:
        if not command:
            raise ValueError("command must not be empty")

        launch_env = self.base_environment()
        if env:
            launch_env.update(env)

        with self._lock:
            session_id = self._next_id
            self._next_id += 1
            session = Session(
                id=session_id,
                title=title or f"Session {session_id}",
                command=tuple(command),
                terminal=TerminalBuffer(max_lines=self._config.max_lines),
                working_directory=working_directory or self._env.home_path,
                env=launch_env,
                fallback_of=fallback_of,
            )
            self._sessions.append(session)
            self._active_index = len(self._sessions) - 1

            thread = threading.Thread(
                target=self._pump,
                args=(session,),
                name=f"session-{session_id}",
                daemon=True,
            )
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)

            logger.info(
                "Created session (ID: %d) with command: %s",
                session_id,
                shlex.join(command),
            )
            self._notify()
            # Observers attach to the terminal before any output exists.
            thread.start()
        return session_id

    def _pump(self, session: Session) -> None:
        """Spawn, stream output, wait for exit. Runs on its own thread."""
        cols, rows = session.terminal.size
        try:
            process = self._process_factory(
                session.command,
                cwd=session.working_directory,
                env=session.env,
                cols=cols,
                rows=rows,
            )
        except OSError as e:
            if isinstance(e, PermissionError):
                code = self._config.fallback_exit_code
            else:
                code = SPAWN_FAILED_EXIT_CODE
            logger.error(
                "Session %d failed to start %s: %s",
                session.id,
                session.command[0],
                e,
            )
            session.terminal.write(
                f"Failed to start {session.command[0]}: {e.strerror or e}"
            )
            self._on_exit(session, code)
            return

        if not self._on_running(session, process):
            # Closed while the spawn was in flight.
            process.kill()

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = process.read()
                if not data:
                    break
                logger.debug(
                    "Session %d output: %r",
                    session.id,
                    data,
                    extra={"session_output": True},
                )
                session.terminal.write(decoder.decode(data))
        except OSError as e:
            logger.error("Session %d output error: %s", session.id, e)
        session.terminal.write(decoder.decode(b"", final=True))

        code = process.wait()
        session.terminal.connect_input(None)
        session.terminal.connect_resize(None)
        process.close()
        self._on_exit(session, code)

    def _on_running(self, session: Session, process: ProcessHandle) -> bool:
        """Wire I/O for a spawned process; False if the session is gone."""
        with self._lock:
            session.process = process
            session._started.set()
            if session.closed:
                return False
            session.state = SessionState.RUNNING

            def write_input(data: str) -> None:
                try:
                    process.write(data.encode("utf-8"))
                except OSError as e:
                    logger.warning(
                        "Session %d input dropped: %s", session.id, e
                    )

            session.terminal.connect_input(write_input)
            session.terminal.connect_resize(process.resize)
            logger.debug("Session %d running (pid %d)", session.id, process.pid)
            return True

    def _on_exit(self, session: Session, code: int) -> None:
        """Record the exit, append the banner, maybe start the fallback."""
        fallback = False
        with self._lock:
            session.state = SessionState.EXITED
            session.exit_code = code
            logger.info("Session %d exited with code: %d", session.id, code)

            if not session.closed:
                session.terminal.write(exit_banner(code))
                session.title = EXITED_TITLE_PREFIX + session.title
                self._notify()
                fallback = self.triggers_fallback(session)

            # Waiters see the banner and title once released.
            session._started.set()
            session._exited.set()

        if fallback:
            self._start_fallback(session)

    def _start_fallback(self, session: Session) -> None:
        """Re-run a refused sandbox command through the host shell, once."""
        logger.info(
            "Sandbox refused to start in session %d, retrying via %s",
            session.id,
            self._config.fallback_shell,
        )
        if self._shutdown_event.wait(self._config.fallback_delay_seconds):
            return
        self._create(
            [self._config.fallback_shell, "-c", shlex.join(session.command)],
            session.working_directory,
            FALLBACK_TITLE,
            env=session.env,
            fallback_of=session.id,
        )

    def _index_of(self, session_id: int) -> int | None:
        for index, session in enumerate(self._sessions):
            if session.id == session_id:
                return index
        return None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error("Session listener failed: %s", e)
