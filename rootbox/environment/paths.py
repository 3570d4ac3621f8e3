# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""On-disk layout of the sandbox environment.

Everything lives under one writable base directory::

    <base>/
        usr/     unpacked rootfs
        home/    user home, bound at /home in the sandbox
        proot/   sandbox binary and loader files
        lib/     shared libraries, bound at /lib
        tmp/     private tmp, bound at /tmp
        .rootbox_setup_complete

The marker file is the only record of a successful bootstrap.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from platformdirs import user_data_path


logger = logging.getLogger(__name__)

SETUP_MARKER_NAME = ".rootbox_setup_complete"
BASE_DIR_ENV_VAR = "ROOTBOX_HOME"
_APP_NAME = "rootbox"

ROOTFS_DIR = "usr"
HOME_DIR = "home"
SANDBOX_BIN_DIR = "proot"
LIB_DIR = "lib"
TMP_DIR = "tmp"


def resolve_base_directory(override: Path | None = None) -> Path:
    """Resolve and create the writable root of the environment.

    Order of precedence: explicit override, ``ROOTBOX_HOME``, then
    the XDG data directory (typically ``~/.local/share/rootbox``). The
    result is canonicalized so bind-mount sources never go through a
    symlink.

    Args:
        override: Explicit base directory (e.g. from config).

    Returns:
        Canonical, existing base directory.

    Raises:
        OSError: If the directory cannot be created.
    """
    if override is not None:
        base = override
    elif os.environ.get(BASE_DIR_ENV_VAR):
        base = Path(os.environ[BASE_DIR_ENV_VAR])
    else:
        base = user_data_path(_APP_NAME)

    base = base.expanduser()
    base.mkdir(parents=True, exist_ok=True)
    return base.resolve()


@dataclass(frozen=True)
class Environment:
    """Derived filesystem layout rooted at one base path.

    Attributes:
        base_path: Writable root supplied by the host.
        rootfs_path: Unpacked rootfs (the sandbox's ``/``).
        home_path: Home directory exposed at ``/home``.
        sandbox_bin_path: Sandbox executable and loader files.
        lib_path: Shared libraries exposed at ``/lib``.
        tmp_path: Private tmp exposed at ``/tmp``.
    """

    base_path: Path
    rootfs_path: Path
    home_path: Path
    sandbox_bin_path: Path
    lib_path: Path
    tmp_path: Path

    @classmethod
    def from_base(cls, base_path: Path) -> Environment:
        """Derive the layout under ``base_path`` and create it.

        Args:
            base_path: Existing writable directory.

        Returns:
            Environment whose subdirectories all exist.
        """
        env = cls(
            base_path=base_path,
            rootfs_path=base_path / ROOTFS_DIR,
            home_path=base_path / HOME_DIR,
            sandbox_bin_path=base_path / SANDBOX_BIN_DIR,
            lib_path=base_path / LIB_DIR,
            tmp_path=base_path / TMP_DIR,
        )
        env.ensure_directories()
        return env

    @property
    def directories(self) -> tuple[Path, ...]:
        """The five managed subdirectories."""
        return (
            self.rootfs_path,
            self.home_path,
            self.sandbox_bin_path,
            self.lib_path,
            self.tmp_path,
        )

    @property
    def marker_path(self) -> Path:
        """Location of the setup completion marker."""
        return self.base_path / SETUP_MARKER_NAME

    @property
    def setup_complete(self) -> bool:
        """Whether bootstrap has ever succeeded for this base path."""
        return self.marker_path.exists()

    def ensure_directories(self) -> None:
        """Create any missing managed subdirectory."""
        for directory in self.directories:
            if not directory.is_dir():
                directory.mkdir(parents=True, exist_ok=True)
                logger.debug("Created %s", directory)
