# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Application controller.

Sits where an interactive front end would: decides whether the one-time
bootstrap has to run, turns its failures into a retry/reset choice, and
reacts to the engine's change notifications by starting a fresh shell
whenever the last session goes away.
"""

from __future__ import annotations

import enum
import logging
import threading

from rootbox.config import RootboxConfig
from rootbox.environment import (
    Bootstrapper,
    BootstrapError,
    Environment,
    SandboxInvocation,
    build_sandbox_invocation,
    get_asset_source,
    resolve_base_directory,
)
from rootbox.session import SessionEngine


logger = logging.getLogger(__name__)

INITIAL_SESSION_TITLE = "Shell"


class SetupState(enum.Enum):
    """Where the controller is in the bootstrap lifecycle."""

    PENDING = "pending"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"


def build_initial_command(
    environment: Environment, config: RootboxConfig
) -> SandboxInvocation:
    """Sandbox invocation of the configured login shell."""
    return build_sandbox_invocation(
        environment,
        sandbox_binary=config.assets.sandbox_binary,
        shell=config.sessions.shell,
        shell_args=config.sessions.shell_args,
    )


class Controller:
    """Owns setup state and keeps an interactive session available.

    Thread Safety: setup methods are serialized by an internal lock; a
    second perform_setup() while one is running returns immediately.
    """

    def __init__(
        self,
        config: RootboxConfig,
        environment: Environment,
        bootstrapper: Bootstrapper,
        engine: SessionEngine,
    ) -> None:
        self._config = config
        self._env = environment
        self._bootstrapper = bootstrapper
        self._engine = engine
        self._setup_lock = threading.Lock()
        self._state = SetupState.PENDING
        if environment.setup_complete:
            self._state = SetupState.READY
        self._setup_error: str | None = None
        self._started = False

    @classmethod
    def from_config(cls, config: RootboxConfig) -> Controller:
        """Build the environment, pipeline and engine from config.

        Raises:
            OSError: If the base directory cannot be created.
        """
        environment = Environment.from_base(
            resolve_base_directory(config.base_dir)
        )
        bootstrapper = Bootstrapper(
            environment,
            get_asset_source(config.assets.directory),
            asset_names=config.assets,
            probe_timeout_seconds=config.setup.probe_timeout_seconds,
        )
        engine = SessionEngine(
            environment,
            config.sessions,
            sandbox_binary=config.assets.sandbox_binary,
        )
        return cls(config, environment, bootstrapper, engine)

    @property
    def environment(self) -> Environment:
        return self._env

    @property
    def bootstrapper(self) -> Bootstrapper:
        return self._bootstrapper

    @property
    def engine(self) -> SessionEngine:
        return self._engine

    @property
    def state(self) -> SetupState:
        return self._state

    @property
    def setup_error(self) -> str | None:
        """Message of the last setup failure, if any."""
        return self._setup_error

    def start(self) -> None:
        """Run setup if needed, then open the first session."""
        if not self._started:
            self._engine.add_listener(self._on_sessions_changed)
            self._started = True

        if self._env.setup_complete:
            self._state = SetupState.READY
            self.create_initial_session()
        else:
            self.perform_setup()

    def perform_setup(self) -> bool:
        """Run the bootstrap pipeline with the configured timeout.

        On success an initial session is created. On failure the error
        is recorded and the state becomes FAILED.

        Returns:
            True on success, False on failure or if setup is already
            running.
        """
        with self._setup_lock:
            if self._state is SetupState.RUNNING:
                return False
            self._state = SetupState.RUNNING
            self._setup_error = None

        logger.info("Starting setup process...")
        try:
            self._bootstrapper.prepare(
                timeout_seconds=self._config.setup.timeout_seconds
            )
        except BootstrapError as e:
            logger.error("Setup failed with error: %s", e)
            with self._setup_lock:
                self._state = SetupState.FAILED
                self._setup_error = str(e)
            return False

        with self._setup_lock:
            self._state = SetupState.READY
        logger.info("Setup completed, creating initial session")
        self.create_initial_session()
        return True

    def retry_setup(self) -> bool:
        """Run setup again after a failure."""
        return self.perform_setup()

    def reset_and_retry(self) -> bool:
        """Wipe the extracted environment and run setup from scratch.

        Open sessions are closed first; nothing may run from the rootfs
        while it is deleted.
        """
        with self._setup_lock:
            if self._state is SetupState.RUNNING:
                return False
            self._state = SetupState.PENDING
        for session in self._engine.sessions:
            self._engine.close_session(session.id)

        try:
            self._bootstrapper.reset()
        except OSError as e:
            logger.error("Reset failed: %s", e)
            with self._setup_lock:
                self._state = SetupState.FAILED
                self._setup_error = f"Reset failed: {e}"
            return False
        return self.perform_setup()

    def create_initial_session(self) -> int:
        """Open an interactive sandbox shell."""
        invocation = build_initial_command(self._env, self._config)
        return self._engine.create_session(
            invocation.argv,
            title=INITIAL_SESSION_TITLE,
            env=invocation.env,
        )

    def shutdown(self) -> None:
        self._engine.remove_listener(self._on_sessions_changed)
        self._engine.shutdown()

    def _on_sessions_changed(self) -> None:
        """Respawn a shell once the collection becomes empty."""
        if self._engine.has_sessions:
            return
        if not self._config.sessions.auto_respawn:
            return
        if self._state is not SetupState.READY:
            return
        logger.info("No sessions left, creating a new one")
        self.create_initial_session()
