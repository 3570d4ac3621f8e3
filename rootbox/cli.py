# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Rootbox CLI — multi-command entry point.

Provides ``rootbox <command>`` with subcommands for preparing the sandbox
environment and running processes inside it. Running ``rootbox`` with no
arguments prints version and usage information.

Subcommands:

* ``init``    — create a stub config file
* ``setup``   — extract the sandbox binary and the Debian rootfs
* ``reset``   — delete the extracted environment
* ``status``  — show where the environment lives and whether it is ready
* ``run``     — run one command inside the sandbox and exit with its code
* ``shell``   — open an interactive sandbox shell on this terminal
"""

from __future__ import annotations

import argparse
import codecs
import json
import logging
import os
import select
import shutil
import signal
import sys
import termios
import threading
import time
import tty
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from rootbox import __version__
from rootbox.config import ConfigError, RootboxConfig, get_config_path
from rootbox.controller import Controller, SetupState
from rootbox.environment import (
    Bootstrapper,
    BootstrapError,
    BootstrapStage,
    Environment,
    build_sandbox_invocation,
    get_asset_source,
    resolve_base_directory,
)
from rootbox.logging import configure_logging
from rootbox.session import Session, SessionEngine
from rootbox.session.engine import exit_banner


logger = logging.getLogger(__name__)

# Known subcommand names.
_SUBCOMMANDS = frozenset({"init", "setup", "reset", "status", "run", "shell"})

_USAGE = """\
usage: rootbox <command> [args]

commands:
  init      Create a stub config file
  setup     Extract the sandbox binary and the Debian rootfs
  reset     Delete the extracted environment
  status    Show where the environment lives and whether it is ready
  run       Run one command inside the sandbox
  shell     Open an interactive sandbox shell

Run 'rootbox <command> --help' for command-specific help.\
"""

#: Extra time allowed for a fallback session to appear after its delay.
_FALLBACK_GRACE_SECONDS = 5.0


# ── Terminal colors ─────────────────────────────────────────────────


def _use_color() -> bool:
    """Determine whether to use ANSI color codes in output.

    Returns True when stdout is a TTY and the ``NO_COLOR`` environment
    variable is not set.  ``TERM=dumb`` also disables color.
    """
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("TERM") == "dumb":
        return False
    return sys.stdout.isatty()


class _Style:
    """ANSI escape helpers.  All methods return plain text when color is off."""

    def __init__(self, color: bool) -> None:
        self._on = color

    def _wrap(self, code: str, text: str) -> str:
        if not self._on:
            return text
        return f"\033[{code}m{text}\033[0m"

    def bold(self, text: str) -> str:
        return self._wrap("1", text)

    def green(self, text: str) -> str:
        return self._wrap("32", text)

    def red(self, text: str) -> str:
        return self._wrap("31", text)

    def yellow(self, text: str) -> str:
        return self._wrap("33", text)

    def dim(self, text: str) -> str:
        return self._wrap("2", text)

    def cyan(self, text: str) -> str:
        return self._wrap("36", text)


# ── Shared helpers ──────────────────────────────────────────────────


def _parser(command: str, description: str) -> argparse.ArgumentParser:
    """Argument parser with the options every subcommand accepts."""
    parser = argparse.ArgumentParser(
        prog=f"rootbox {command}", description=description
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to the config file (default: $ROOTBOX_CONFIG or "
        "~/.config/rootbox/rootbox.yaml)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser


def _setup_logging(args: argparse.Namespace) -> None:
    configure_logging(
        level=logging.DEBUG if args.debug else logging.WARNING,
        trace_session_output=args.debug,
    )


def _load_config(args: argparse.Namespace) -> RootboxConfig | None:
    """Load config, printing a one-line error on failure."""
    try:
        return RootboxConfig.from_yaml(args.config)
    except ConfigError as e:
        print(f"rootbox: configuration error: {e}", file=sys.stderr)
        return None


def _environment(config: RootboxConfig) -> Environment:
    return Environment.from_base(resolve_base_directory(config.base_dir))


def _bootstrapper(
    config: RootboxConfig, environment: Environment, s: _Style
) -> Bootstrapper:
    """Bootstrapper that echoes stage progress to stdout."""

    def report(stage: BootstrapStage, message: str) -> None:
        print(f"  {s.dim(stage.value + ':')} {message}")

    return Bootstrapper(
        environment,
        get_asset_source(config.assets.directory),
        asset_names=config.assets,
        probe_timeout_seconds=config.setup.probe_timeout_seconds,
        diagnostics=report,
    )


def _exit_status(code: int | None) -> int:
    """Map a session exit code onto a shell exit status."""
    if code is None:
        return 1
    if 0 <= code <= 255:
        return code
    if code < 0:
        return min(128 - code, 255)
    return code & 0xFF


def _follow(engine: SessionEngine, session: Session) -> Session:
    """Wait for ``session`` and any fallback it triggers to finish.

    Returns:
        The last session of the chain (the fallback if one ran).
    """
    while True:
        session.wait_exited()
        if not engine.triggers_fallback(session):
            return session

        deadline = (
            time.monotonic()
            + engine.config.fallback_delay_seconds
            + _FALLBACK_GRACE_SECONDS
        )
        fallback = engine.fallback_for(session.id)
        while fallback is None and time.monotonic() < deadline:
            time.sleep(0.05)
            fallback = engine.fallback_for(session.id)
        if fallback is None:
            return session
        session = fallback


def _attach_output(engine: SessionEngine, *, show_banner: bool) -> None:
    """Copy the output of every new session to stdout.

    Output listeners are attached from the engine's change notification,
    which runs before a new session's process starts, so no output is
    missed.
    """
    seen: set[int] = set()

    def on_change() -> None:
        for session in engine.sessions:
            if session.id in seen:
                continue
            seen.add(session.id)
            session.terminal.add_output_listener(_writer(session, show_banner))

    engine.add_listener(on_change)


def _writer(session: Session, show_banner: bool) -> Callable[[str], None]:
    def write(text: str) -> None:
        if (
            not show_banner
            and session.has_exited
            and text == exit_banner(session.exit_code)
        ):
            return
        try:
            sys.stdout.write(text)
            sys.stdout.flush()
        except BrokenPipeError:
            # Reader is gone (e.g. piped into head); the process runs on.
            session.terminal.remove_output_listener(write)

    return write


# ── init subcommand ─────────────────────────────────────────────────


def cmd_init(argv: list[str]) -> int:
    """Create a stub configuration file.

    Creates ``~/.config/rootbox/rootbox.yaml`` with a commented template
    if the file does not already exist.

    Args:
        argv: Extra arguments (currently unused).

    Returns:
        Exit code (always 0).
    """
    config_path = get_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


# ── setup subcommand ────────────────────────────────────────────────


def cmd_setup(argv: list[str]) -> int:
    """Run the one-time bootstrap.

    Args:
        argv: ``[--config PATH] [--debug] [--force]``.

    Returns:
        0 on success (or when already set up), 1 on failure.
    """
    parser = _parser("setup", "Extract the sandbox binary and rootfs.")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Delete any existing environment and set up from scratch",
    )
    args = parser.parse_args(argv)
    _setup_logging(args)

    config = _load_config(args)
    if config is None:
        return 1

    s = _Style(_use_color())
    environment = _environment(config)
    bootstrapper = _bootstrapper(config, environment, s)

    if environment.setup_complete and not args.force:
        print(f"Already set up: {environment.base_path}")
        return 0

    print(s.bold(f"Setting up rootbox in {environment.base_path}"))
    try:
        if args.force:
            bootstrapper.reset()
        job = bootstrapper.prepare(
            timeout_seconds=config.setup.timeout_seconds
        )
    except (BootstrapError, OSError) as e:
        print(f"{s.red('Setup failed:')} {e}", file=sys.stderr)
        return 1

    print(f"{s.green('Setup complete.')} Extracted {job.file_count} files.")
    if not job.permissions_ok:
        print(
            f"{s.yellow('Warning:')} the sandbox binary did not pass its "
            "smoke test; sessions may fall back to the host shell."
        )
    return 0


# ── reset subcommand ────────────────────────────────────────────────


def cmd_reset(argv: list[str]) -> int:
    """Delete the extracted environment.

    Args:
        argv: ``[--config PATH] [--debug]``.

    Returns:
        0 on success, 1 on failure.
    """
    parser = _parser("reset", "Delete the extracted environment.")
    args = parser.parse_args(argv)
    _setup_logging(args)

    config = _load_config(args)
    if config is None:
        return 1

    s = _Style(_use_color())
    environment = _environment(config)
    try:
        _bootstrapper(config, environment, s).reset()
    except OSError as e:
        print(f"{s.red('Reset failed:')} {e}", file=sys.stderr)
        return 1
    print(f"Reset {environment.base_path}")
    return 0


# ── status subcommand ───────────────────────────────────────────────


def cmd_status(argv: list[str]) -> int:
    """Print the environment status.

    Args:
        argv: ``[--config PATH] [--debug] [--json]``.

    Returns:
        0 if setup is complete, 1 otherwise.
    """
    parser = _parser("status", "Show the environment status.")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the status as a JSON object",
    )
    args = parser.parse_args(argv)
    _setup_logging(args)

    config = _load_config(args)
    if config is None:
        return 1

    s = _Style(_use_color())
    environment = _environment(config)
    status = _bootstrapper(config, environment, s).status()

    if args.json:
        print(json.dumps(status, indent=2))
        return 0 if status["setup_complete"] else 1

    print(s.bold(f"Rootbox {__version__}"))
    if status["setup_complete"]:
        print(f"  {s.green('Ready')}")
    else:
        print(f"  {s.yellow('Not set up.')} Run {s.cyan('rootbox setup')}.")
    print()
    for key in (
        "base_path",
        "rootfs_path",
        "home_path",
        "sandbox_bin_path",
        "lib_path",
        "tmp_path",
    ):
        print(f"  {key + ':':<18}{status[key]}")
    for key in ("sandbox_binary_exists", "rootfs_exists"):
        mark = s.green("yes") if status[key] else s.red("no")
        print(f"  {key + ':':<24}{mark}")
    return 0 if status["setup_complete"] else 1


# ── run subcommand ──────────────────────────────────────────────────


def cmd_run(argv: list[str]) -> int:
    """Run one command and exit with its status.

    Output (stdout and stderr combined, as the PTY delivers them) is
    streamed to stdout. A sandbox launch refused by the host is retried
    once through the fallback shell, as in an interactive session.

    Args:
        argv: ``[--config PATH] [--debug] [--host] [--] COMMAND...``.

    Returns:
        The command's exit status, 1 when the environment is not ready,
        130 when interrupted.
    """
    parser = _parser("run", "Run one command inside the sandbox.")
    parser.add_argument(
        "--host",
        action="store_true",
        help="Run on the host with the session environment, not in the "
        "sandbox",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER)
    args = parser.parse_args(argv)
    _setup_logging(args)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command is required")

    config = _load_config(args)
    if config is None:
        return 1

    environment = _environment(config)
    if not args.host and not environment.setup_complete:
        print(
            "rootbox: environment is not set up; run 'rootbox setup' first",
            file=sys.stderr,
        )
        return 1

    engine = SessionEngine(
        environment,
        config.sessions,
        sandbox_binary=config.assets.sandbox_binary,
    )
    _attach_output(engine, show_banner=False)

    if args.host:
        session_id = engine.create_session(command, title=command[0])
    else:
        invocation = build_sandbox_invocation(
            environment,
            sandbox_binary=config.assets.sandbox_binary,
            shell=command[0],
            shell_args=tuple(command[1:]),
        )
        session_id = engine.create_session(
            invocation.argv, title=command[0], env=invocation.env
        )

    session = engine.get_session(session_id)
    try:
        final = _follow(engine, session)
    except KeyboardInterrupt:
        return 130
    finally:
        engine.shutdown()
    return _exit_status(final.exit_code)


# ── shell subcommand ────────────────────────────────────────────────


@contextmanager
def _raw_mode(fd: int) -> Iterator[None]:
    """Put the terminal on ``fd`` in raw mode for the duration."""
    saved = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, saved)


def _forward_stdin(
    engine: SessionEngine, fd: int, done: threading.Event
) -> None:
    """Send keystrokes to the active session until ``done`` is set."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while not done.is_set():
        ready, _, _ = select.select([fd], [], [], 0.1)
        if not ready:
            continue
        data = os.read(fd, 1024)
        if not data:
            break
        session = engine.active_session
        if session is not None:
            session.send(decoder.decode(data))


def cmd_shell(argv: list[str]) -> int:
    """Open an interactive sandbox shell on this terminal.

    Runs setup first if the environment has never been prepared. The
    command returns once the shell (or its fallback) exits.

    Args:
        argv: ``[--config PATH] [--debug]``.

    Returns:
        The shell's exit status, or 1 if setup fails.
    """
    parser = _parser("shell", "Open an interactive sandbox shell.")
    args = parser.parse_args(argv)
    _setup_logging(args)

    if not sys.stdin.isatty():
        print(
            "rootbox shell: requires an interactive terminal",
            file=sys.stderr,
        )
        return 1

    config = _load_config(args)
    if config is None:
        return 1

    s = _Style(_use_color())
    controller = Controller.from_config(config)
    engine = controller.engine
    _attach_output(engine, show_banner=True)

    if not controller.environment.setup_complete:
        print(s.bold("Setting up rootbox, this happens only once..."))
    controller.start()
    if controller.state is SetupState.FAILED:
        print(
            f"{s.red('Setup failed:')} {controller.setup_error}",
            file=sys.stderr,
        )
        print(f"Run {s.cyan('rootbox setup --force')} to start over.")
        return 1

    session = engine.active_session
    if session is None:
        return 1

    def resize(signum: int = 0, frame: object = None) -> None:
        active = engine.active_session
        if active is not None:
            cols, rows = shutil.get_terminal_size()
            active.terminal.resize(cols, rows)

    done = threading.Event()
    result: list[Session] = []

    def wait() -> None:
        result.append(_follow(engine, session))
        done.set()

    waiter = threading.Thread(target=wait, name="shell-wait", daemon=True)
    waiter.start()

    stdin_fd = sys.stdin.fileno()
    old_sigwinch = signal.signal(signal.SIGWINCH, resize)
    try:
        resize()
        with _raw_mode(stdin_fd):
            _forward_stdin(engine, stdin_fd, done)
    finally:
        signal.signal(signal.SIGWINCH, old_sigwinch)
        controller.shutdown()
        print()

    return _exit_status(result[0].exit_code if result else None)


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "init": "cmd_init",
    "setup": "cmd_setup",
    "reset": "cmd_reset",
    "status": "cmd_status",
    "run": "cmd_run",
    "shell": "cmd_shell",
}


def _print_info() -> None:
    """Print version information and available commands."""
    s = _Style(_use_color())
    print(s.bold(f"Rootbox {__version__}"))
    print()
    print(_USAGE)


def cli() -> None:
    """Entry point for ``rootbox``.

    When no arguments are given, prints version and usage information.
    Requires an explicit subcommand for all operations.
    """
    argv = sys.argv[1:]

    if not argv or argv[0] == "--help":
        _print_info()
        sys.exit(0)

    if argv[0] not in _SUBCOMMANDS:
        print(f"rootbox: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        sys.exit(2)

    command = argv[0]
    rest = argv[1:]

    # Look up handler by name so tests can mock individual commands.
    import rootbox.cli as _self

    handler = getattr(_self, _DISPATCH[command])
    sys.exit(handler(rest))


#: Stub configuration template written by ``rootbox init``.
_STUB_CONFIG = """\
# Rootbox Configuration
#
# Every key is optional; the values below are the defaults.
# Values tagged with !env are read from the environment (or a .env file
# next to this one).

# Writable root of the environment (default: ~/.local/share/rootbox).
# base_dir: !env ROOTBOX_HOME

assets:
  # Directory holding the sandbox binary, its libraries and the rootfs
  # archive. Defaults to the assets bundled with the package.
  # directory: /opt/rootbox/assets
  sandbox_binary: proot-v5.3.0-aarch64-static
  rootfs_archive: debian-bookworm-aarch64.tar.xz

setup:
  timeout_seconds: 300
  probe_timeout_seconds: 10

sessions:
  shell: /bin/bash
  shell_args: [--login]
  # Exit status the sandbox binary reports when the host refuses it; such
  # sessions are retried once through fallback_shell.
  fallback_shell: /bin/sh
  fallback_exit_code: -117
  fallback_delay_seconds: 1.0
  max_lines: 10000
  auto_respawn: true
"""
