# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures used across multiple test packages."""

import io
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest

from rootbox.config import (
    DEFAULT_LIBRARIES,
    DEFAULT_ROOTFS_ARCHIVE,
    DEFAULT_SANDBOX_BINARY,
)
from rootbox.dotenv_loader import reset_dotenv_state
from rootbox.environment import Environment, resolve_base_directory


#: Regular files in the archive built by the ``rootfs_archive`` fixture.
ROOTFS_FILES = {
    "bin/sh": b"#!/bin/sh\necho guest\n",
    "etc/os-release": b'PRETTY_NAME="Debian GNU/Linux 12 (bookworm)"\n',
    "etc/hostname": b"rootbox\n",
    "usr/lib/os-release": b"ID=debian\n",
}

#: Stand-in sandbox binary: accepts ``--help`` and exits 0.
SANDBOX_SCRIPT = b"#!/bin/sh\nexit 0\n"

#: Stand-in sandbox binary that drops the proot options and runs the
#: guest command directly on the host.
PASSTHROUGH_SANDBOX_SCRIPT = b"""\
#!/bin/sh
while [ $# -gt 0 ]; do
    case "$1" in
        -S|-r|-w|-b) shift 2 ;;
        -*) shift ;;
        *) break ;;
    esac
done
[ $# -eq 0 ] && exit 0
exec "$@"
"""

ArchiveBuilder = Callable[..., bytes]


@pytest.fixture(autouse=True)
def _isolate_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """Keep tests away from the user's real config and data directories."""
    monkeypatch.delenv("ROOTBOX_HOME", raising=False)
    monkeypatch.setenv("ROOTBOX_CONFIG", str(tmp_path / "no-config.yaml"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    reset_dotenv_state()


@pytest.fixture
def make_archive() -> ArchiveBuilder:
    """Return a builder for compressed tar archives.

    The builder takes ``files`` (name -> bytes), and optionally
    ``dirs``, ``symlinks`` (name -> target), ``hardlinks`` (name ->
    target), ``modes`` (name -> mode) and ``compression`` ("xz", "gz",
    "bz2").
    """

    def build(
        files: dict[str, bytes],
        *,
        dirs: tuple[str, ...] = (),
        symlinks: dict[str, str] | None = None,
        hardlinks: dict[str, str] | None = None,
        modes: dict[str, int] | None = None,
        compression: str = "xz",
    ) -> bytes:
        buffer = io.BytesIO()
        modes = modes or {}
        with tarfile.open(fileobj=buffer, mode=f"w:{compression}") as tar:
            for name in dirs:
                info = tarfile.TarInfo(name)
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            for name, data in files.items():
                info = tarfile.TarInfo(name)
                info.size = len(data)
                info.mode = modes.get(name, 0o644)
                tar.addfile(info, io.BytesIO(data))
            for name, target in (symlinks or {}).items():
                info = tarfile.TarInfo(name)
                info.type = tarfile.SYMTYPE
                info.linkname = target
                tar.addfile(info)
            for name, target in (hardlinks or {}).items():
                info = tarfile.TarInfo(name)
                info.type = tarfile.LNKTYPE
                info.linkname = target
                tar.addfile(info)
        return buffer.getvalue()

    return build


@pytest.fixture
def rootfs_archive(make_archive: ArchiveBuilder) -> bytes:
    """A small xz-compressed rootfs with a ``bin`` directory."""
    return make_archive(
        ROOTFS_FILES,
        dirs=("bin", "etc", "usr", "usr/lib", "tmp"),
        symlinks={"usr/bin": "../bin"},
        modes={"bin/sh": 0o755},
    )


@pytest.fixture
def asset_dir(tmp_path: Path, rootfs_archive: bytes) -> Path:
    """Directory holding every asset the bootstrap expects."""
    directory = tmp_path / "assets"
    directory.mkdir()
    binary = directory / DEFAULT_SANDBOX_BINARY
    binary.write_bytes(SANDBOX_SCRIPT)
    binary.chmod(0o755)
    for name in DEFAULT_LIBRARIES:
        (directory / name).write_bytes(f"library {name}\n".encode())
    (directory / DEFAULT_ROOTFS_ARCHIVE).write_bytes(rootfs_archive)
    return directory


@pytest.fixture
def passthrough_asset_dir(asset_dir: Path) -> Path:
    """Assets whose sandbox binary runs the requested shell on the host."""
    (asset_dir / DEFAULT_SANDBOX_BINARY).write_bytes(
        PASSTHROUGH_SANDBOX_SCRIPT
    )
    return asset_dir


@pytest.fixture
def environment(tmp_path: Path) -> Environment:
    """Empty environment layout under a temporary base directory."""
    return Environment.from_base(resolve_base_directory(tmp_path / "base"))
