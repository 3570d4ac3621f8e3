# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""One-time environment bootstrap.

The pipeline runs four stages in order:

1. **Extract binaries**: copy the sandbox executable, loaders and shared
   libraries out of the bundled assets and mark the executable runnable.
2. **Extract rootfs**: decompress and unpack the rootfs tarball on a
   worker thread so the caller stays responsive.
3. **Fix permissions**: best-effort chmod plus a ``--help`` smoke test of
   the sandbox executable. Failures are warnings only.
4. **Write marker**: record the completion time. Only the marker is
   trusted as "bootstrap done", so it is written last and never after a
   timeout or cancellation.
"""

from __future__ import annotations

import concurrent.futures
import enum
import logging
import shlex
import shutil
import stat
import subprocess
import threading
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from rootbox.config import AssetConfig
from rootbox.environment._archive import extract_rootfs
from rootbox.environment.assets import AssetSource
from rootbox.environment.errors import (
    BootstrapError,
    SetupCancelledError,
    SetupTimeoutError,
)
from rootbox.environment.paths import Environment


logger = logging.getLogger(__name__)

# Exit codes that prove the binary ran: success, or a usage error.
_PROBE_OK_EXIT_CODES = frozenset({0, 1})

_EXEC_ALL = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


class BootstrapStage(enum.Enum):
    """Ordered bootstrap stages."""

    EXTRACT_BINARIES = "extract-binaries"
    EXTRACT_ROOTFS = "extract-rootfs"
    FIX_PERMISSIONS = "fix-permissions"
    WRITE_MARKER = "write-marker"


_STAGE_ORDER = tuple(BootstrapStage)


class DiagnosticsSink(Protocol):
    """Receives notable bootstrap transitions (progress UI, telemetry)."""

    def __call__(self, stage: BootstrapStage, message: str) -> None: ...


@dataclass
class BootstrapJob:
    """Progress of a single prepare() run. Not persisted.

    Attributes:
        completed: Stages finished so far, in order.
        file_count: Regular files written into the rootfs.
        permissions_ok: Whether the sandbox binary passed the probe.
        started_at: Monotonic start time.
    """

    completed: list[BootstrapStage] = field(default_factory=list)
    file_count: int = 0
    permissions_ok: bool = False
    started_at: float = field(default_factory=time.monotonic)

    def complete(self, stage: BootstrapStage) -> None:
        """Record a finished stage; stages must finish in order."""
        expected = _STAGE_ORDER[len(self.completed)]
        if stage is not expected:
            raise ValueError(
                f"Stage {stage.value} completed before {expected.value}"
            )
        self.completed.append(stage)

    @property
    def done(self) -> bool:
        return BootstrapStage.WRITE_MARKER in self.completed


class Bootstrapper:
    """Prepares an Environment from bundled assets.

    Thread Safety: prepare() and reset() must not run concurrently for
    the same environment. Only the rootfs stage uses a worker thread.
    """

    def __init__(
        self,
        environment: Environment,
        assets: AssetSource,
        *,
        asset_names: AssetConfig | None = None,
        probe_timeout_seconds: int = 10,
        diagnostics: DiagnosticsSink | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            environment: Target layout (directories must exist).
            assets: Source of the named assets.
            asset_names: Names of the binary, libraries and archive.
            probe_timeout_seconds: Bound for the ``--help`` smoke test.
            diagnostics: Optional sink for stage transitions. Its
                failures are logged and never affect the outcome.
        """
        self._env = environment
        self._assets = assets
        self._names = asset_names or AssetConfig()
        self._probe_timeout = probe_timeout_seconds
        self._diagnostics = diagnostics

    @property
    def environment(self) -> Environment:
        return self._env

    @property
    def sandbox_binary_path(self) -> Path:
        """Extracted location of the sandbox executable."""
        return self._env.sandbox_bin_path / self._names.sandbox_binary

    def prepare(
        self,
        timeout_seconds: float | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> BootstrapJob:
        """Run the full bootstrap.

        Args:
            timeout_seconds: Wall-clock bound for the whole run. None
                waits indefinitely.
            cancel_event: Optional external cancellation flag.

        Returns:
            The completed BootstrapJob.

        Raises:
            AssetMissingError: If an asset cannot be loaded.
            ArchiveCorruptError: If the rootfs archive is unreadable.
            SetupTimeoutError: If the deadline passed first.
            SetupCancelledError: If cancel_event was set.
            BootstrapError: For filesystem failures while writing.
        """
        deadline = (
            time.monotonic() + timeout_seconds
            if timeout_seconds is not None
            else None
        )
        cancel = cancel_event or threading.Event()
        job = BootstrapJob()

        self._report(
            BootstrapStage.EXTRACT_BINARIES, "Starting environment setup"
        )
        self._env.ensure_directories()

        self._extract_binaries()
        job.complete(BootstrapStage.EXTRACT_BINARIES)
        self._check_deadline(deadline, cancel)

        job.file_count = self._extract_rootfs(deadline, cancel)
        job.complete(BootstrapStage.EXTRACT_ROOTFS)
        self._check_deadline(deadline, cancel)

        job.permissions_ok = self._setup_permissions()
        job.complete(BootstrapStage.FIX_PERMISSIONS)
        self._check_deadline(deadline, cancel)

        self._write_marker()
        job.complete(BootstrapStage.WRITE_MARKER)

        elapsed = time.monotonic() - job.started_at
        self._report(
            BootstrapStage.WRITE_MARKER,
            f"Environment setup completed in {elapsed:.2f}s "
            f"({job.file_count} files)",
        )
        return job

    def reset(self) -> None:
        """Return the environment to its pre-bootstrap state.

        Deletes the marker and the rootfs, sandbox-bin and lib trees, then
        recreates the empty directory skeleton. The home directory is
        kept.

        Raises:
            OSError: If anything cannot be removed or recreated.
        """
        logger.info("Resetting environment at %s", self._env.base_path)
        self._env.marker_path.unlink(missing_ok=True)
        for directory in (
            self._env.rootfs_path,
            self._env.sandbox_bin_path,
            self._env.lib_path,
        ):
            if directory.exists():
                shutil.rmtree(directory)
        self._env.ensure_directories()
        logger.info("Environment reset completed")

    def status(self) -> dict[str, Any]:
        """Summarize the on-disk state for diagnostics."""
        return {
            "setup_complete": self._env.setup_complete,
            "base_path": str(self._env.base_path),
            "rootfs_path": str(self._env.rootfs_path),
            "home_path": str(self._env.home_path),
            "sandbox_bin_path": str(self._env.sandbox_bin_path),
            "lib_path": str(self._env.lib_path),
            "tmp_path": str(self._env.tmp_path),
            "sandbox_binary_exists": self.sandbox_binary_path.is_file(),
            "rootfs_exists": (self._env.rootfs_path / "bin").exists(),
        }

    def fix_permissions(self) -> bool:
        """Try to make the sandbox binary runnable again.

        Returns:
            True if chmod succeeded or the binary already runs.
        """
        binary = self.sandbox_binary_path
        if not binary.is_file():
            logger.warning("Sandbox binary not found: %s", binary)
            return False
        if _make_executable(binary):
            logger.info("Set sandbox binary permissions")
            return True
        return self._probe(binary)

    def probe_via_shell(self) -> bool:
        """Check whether the sandbox binary runs through ``sh -c``.

        Some hosts refuse direct execution from app storage but allow it
        via the system shell.
        """
        binary = self.sandbox_binary_path
        if not binary.is_file():
            logger.warning("Sandbox binary not found: %s", binary)
            return False
        try:
            result = subprocess.run(
                ["sh", "-c", f"{shlex.quote(str(binary))} --help"],
                capture_output=True,
                timeout=self._probe_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Shell probe of sandbox binary failed: %s", e)
            return False
        logger.info("Shell probe exit code: %d", result.returncode)
        return result.returncode in _PROBE_OK_EXIT_CODES

    # -- stages ---------------------------------------------------------

    def _extract_binaries(self) -> None:
        """Copy the sandbox binary and libraries into sandbox-bin."""
        stage = BootstrapStage.EXTRACT_BINARIES
        names = (self._names.sandbox_binary, *self._names.libraries)
        for name in names:
            data = self._assets.load(name)
            target = self._env.sandbox_bin_path / name
            try:
                target.write_bytes(data)
                if name == self._names.sandbox_binary:
                    target.chmod(target.stat().st_mode | _EXEC_ALL)
            except OSError as e:
                logger.error("Failed to extract %s: %s", name, e)
                raise BootstrapError(f"Failed to extract {name}: {e}") from e
            self._report(stage, f"Extracted {name}", logging.DEBUG)
        self._report(stage, f"Extracted {len(names)} binaries")

    def _extract_rootfs(
        self, deadline: float | None, cancel: threading.Event
    ) -> int:
        """Unpack the rootfs archive on a worker thread."""
        stage = BootstrapStage.EXTRACT_ROOTFS
        archive = self._assets.load(self._names.rootfs_archive)
        self._report(
            stage,
            f"Extracting {self._names.rootfs_archive} "
            f"({len(archive)} bytes) in background",
        )

        def on_progress(count: int) -> None:
            self._report(stage, f"Extracted {count} files...", logging.DEBUG)

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="rootfs-extract"
        )
        try:
            future = executor.submit(
                extract_rootfs,
                archive,
                self._env.rootfs_path,
                cancel_event=cancel,
                on_progress=on_progress,
            )
            remaining = None
            if deadline is not None:
                remaining = max(0.0, deadline - time.monotonic())
            try:
                file_count = future.result(timeout=remaining)
            except TimeoutError as e:
                cancel.set()
                raise SetupTimeoutError(
                    "Rootfs extraction did not finish in time"
                ) from e
            except OSError as e:
                raise BootstrapError(f"Rootfs extraction failed: {e}") from e
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        self._report(
            stage, f"Rootfs extraction completed ({file_count} files)"
        )
        return file_count

    def _setup_permissions(self) -> bool:
        """Best-effort check that the sandbox binary can run."""
        stage = BootstrapStage.FIX_PERMISSIONS
        binary = self.sandbox_binary_path
        if not binary.is_file():
            self._report(
                stage,
                f"Sandbox binary missing at {binary}",
                logging.WARNING,
            )
            return False

        chmod_ok = _make_executable(binary)
        probe_ok = self._probe(binary)
        if not (chmod_ok and probe_ok):
            self._report(
                stage,
                "Sandbox binary permissions may not be set correctly "
                f"(chmod={'ok' if chmod_ok else 'failed'}, "
                f"probe={'ok' if probe_ok else 'failed'})",
                logging.WARNING,
            )
            return False

        self._report(stage, "Sandbox binary is working correctly")
        return True

    def _write_marker(self) -> None:
        timestamp = datetime.now(UTC).isoformat()
        try:
            self._env.marker_path.write_text(
                f"Setup completed at {timestamp}\n"
            )
        except OSError as e:
            raise BootstrapError(f"Failed to write setup marker: {e}") from e

    # -- helpers --------------------------------------------------------

    def _probe(self, binary: Path) -> bool:
        """Run ``<binary> --help``; a usage exit also proves it runs."""
        try:
            result = subprocess.run(
                [str(binary), "--help"],
                capture_output=True,
                timeout=self._probe_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning("Sandbox binary test failed: %s", e)
            return False
        if result.returncode not in _PROBE_OK_EXIT_CODES:
            logger.warning(
                "Sandbox binary test failed with exit code: %d",
                result.returncode,
            )
            return False
        return True

    def _check_deadline(
        self, deadline: float | None, cancel: threading.Event
    ) -> None:
        if cancel.is_set():
            raise SetupCancelledError("Environment setup was cancelled")
        if deadline is not None and time.monotonic() > deadline:
            cancel.set()
            raise SetupTimeoutError("Environment setup timed out")

    def _report(
        self, stage: BootstrapStage, message: str, level: int = logging.INFO
    ) -> None:
        """Log a transition and forward it to the diagnostics sink."""
        logger.log(level, message)
        if self._diagnostics is None:
            return
        try:
            self._diagnostics(stage, message)
        except Exception as e:
            logger.warning("Diagnostics sink failed: %s", e)


def _make_executable(path: Path) -> bool:
    """Add execute bits; return False if the filesystem refuses."""
    try:
        path.chmod(path.stat().st_mode | _EXEC_ALL)
    except OSError as e:
        logger.warning("chmod failed for %s: %s", path, e)
        return False
    return True
