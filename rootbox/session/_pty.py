# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Processes attached to a pseudo-terminal.

Each process gets its own PTY pair: the child's stdin, stdout and stderr
are the slave end, so stdout and stderr arrive as one combined stream on
the master end. The child runs in a new session, which lets close() kill
the whole process group rather than only the direct child.
"""

from __future__ import annotations

import errno
import fcntl
import logging
import os
import signal
import struct
import subprocess
import termios
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol


logger = logging.getLogger(__name__)

_READ_SIZE = 4096


class ProcessHandle(Protocol):
    """What the session engine needs from a spawned process."""

    @property
    def pid(self) -> int: ...

    def read(self) -> bytes:
        """Block for output; b"" means the stream has ended."""
        ...

    def write(self, data: bytes) -> None: ...

    def resize(self, cols: int, rows: int) -> None: ...

    def kill(self) -> None: ...

    def wait(self) -> int: ...

    def close(self) -> None: ...


class ProcessFactory(Protocol):
    """Spawns a ProcessHandle; raises OSError if the start fails."""

    def __call__(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        cols: int,
        rows: int,
    ) -> ProcessHandle: ...


def _set_winsize(fd: int, cols: int, rows: int) -> None:
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


class PtyProcess:
    """A subprocess bound to the slave end of a fresh PTY."""

    def __init__(self, process: subprocess.Popen[bytes], master_fd: int):
        self._process = process
        self._master_fd = master_fd
        self._closed = False
        self._close_lock = threading.Lock()

    @classmethod
    def spawn(
        cls,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str],
        cols: int = 80,
        rows: int = 24,
    ) -> PtyProcess:
        """Start ``argv`` on a new PTY.

        Raises:
            OSError: If the program cannot be started (missing,
                not executable, bad working directory).
        """
        master_fd, slave_fd = os.openpty()
        try:
            _set_winsize(slave_fd, cols, rows)
            process = subprocess.Popen(
                list(argv),
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=dict(env),
                start_new_session=True,
                close_fds=True,
            )
        except BaseException:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)
        logger.debug("Spawned pid %d: %s", process.pid, " ".join(argv))
        return cls(process, master_fd)

    @property
    def pid(self) -> int:
        return self._process.pid

    def read(self) -> bytes:
        """Read the next chunk of output.

        Linux reports EIO on the master once every slave descriptor is
        closed; that is the normal end of stream.
        """
        try:
            return os.read(self._master_fd, _READ_SIZE)
        except OSError as e:
            if e.errno in (errno.EIO, errno.EBADF):
                return b""
            raise

    def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view:
            written = os.write(self._master_fd, view)
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        try:
            _set_winsize(self._master_fd, cols, rows)
        except OSError as e:
            logger.debug("Resize of pid %d failed: %s", self.pid, e)

    def kill(self) -> None:
        """Forcibly terminate the process group."""
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            self._process.kill()

    def wait(self) -> int:
        return self._process.wait()

    def close(self) -> None:
        """Release the master descriptor (idempotent)."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        os.close(self._master_fd)
