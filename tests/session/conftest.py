# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures for session tests."""

import queue
import threading
import time
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace

import pytest

from rootbox.config import SessionConfig
from rootbox.environment import Environment
from rootbox.session import SessionEngine


class FakeProcess:
    """In-memory stand-in for a PTY process.

    Output chunks are queued up front; with ``hold=True`` the stream
    stays open until finish() or kill() is called.
    """

    def __init__(
        self,
        output: list[bytes] | None = None,
        exit_code: int = 0,
        hold: bool = False,
    ) -> None:
        self.pid = 4242
        self.exit_code = exit_code
        self.written: list[bytes] = []
        self.sizes: list[tuple[int, int]] = []
        self.killed = threading.Event()
        self.closed = False
        self._chunks: queue.Queue[bytes | None] = queue.Queue()
        for chunk in output or []:
            self._chunks.put(chunk)
        if not hold:
            self._chunks.put(None)

    def read(self) -> bytes:
        chunk = self._chunks.get()
        return b"" if chunk is None else chunk

    def write(self, data: bytes) -> None:
        self.written.append(data)

    def resize(self, cols: int, rows: int) -> None:
        self.sizes.append((cols, rows))

    def kill(self) -> None:
        self.exit_code = -9
        self.killed.set()
        self._chunks.put(None)

    def wait(self) -> int:
        return self.exit_code

    def close(self) -> None:
        self.closed = True

    def finish(self, output: bytes = b"", exit_code: int = 0) -> None:
        """End a held stream."""
        self.exit_code = exit_code
        if output:
            self._chunks.put(output)
        self._chunks.put(None)


class FakeFactory:
    """Process factory returning queued results in call order.

    A queued exception is raised instead of returning a process. When
    the queue is empty a held FakeProcess is returned.
    """

    def __init__(self) -> None:
        self.results: list[FakeProcess | BaseException] = []
        self.calls: list[SimpleNamespace] = []
        self.processes: list[FakeProcess] = []

    def __call__(self, argv, *, cwd: Path, env, cols: int, rows: int):
        self.calls.append(
            SimpleNamespace(
                argv=list(argv), cwd=cwd, env=dict(env), cols=cols, rows=rows
            )
        )
        result = self.results.pop(0) if self.results else FakeProcess(hold=True)
        if isinstance(result, BaseException):
            raise result
        self.processes.append(result)
        return result


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def factory() -> FakeFactory:
    return FakeFactory()


@pytest.fixture
def make_process() -> type[FakeProcess]:
    return FakeProcess


@pytest.fixture
def waiter() -> Callable[..., bool]:
    return wait_until


@pytest.fixture
def session_config() -> SessionConfig:
    """Session settings with an immediate fallback."""
    return SessionConfig(fallback_delay_seconds=0)


@pytest.fixture
def engine(environment: Environment, session_config: SessionConfig, factory):
    """Engine backed by the fake process factory."""
    engine = SessionEngine(
        environment, session_config, process_factory=factory
    )
    yield engine
    engine.shutdown(timeout=1.0)
