# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Sequential rootfs unpacking.

The rootfs tarball is read as a stream (``r|*``) so the decompressed
image never sits in memory as a whole. Entries are written one at a time
into a single destination tree; there is exactly one writer.
"""

from __future__ import annotations

import io
import logging
import os
import shutil
import stat
import tarfile
import threading
from collections.abc import Callable
from pathlib import Path, PurePosixPath

from rootbox.environment.errors import (
    ArchiveCorruptError,
    SetupCancelledError,
)


logger = logging.getLogger(__name__)

_EXEC_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH
_CHUNK_SIZE = 1024 * 1024

#: Progress is reported every this many regular files.
PROGRESS_INTERVAL = 100

ProgressCallback = Callable[[int], None]


def _member_path(name: str) -> PurePosixPath | None:
    """Normalize an archive member name relative to the rootfs.

    Leading ``/`` and ``./`` are stripped. Returns None for the archive
    root itself and for names whose ``..`` components climb out of it.
    """
    parts: list[str] = []
    for part in PurePosixPath(name).parts:
        if part in ("/", "", "."):
            continue
        if part == "..":
            if not parts:
                return None
            parts.pop()
            continue
        parts.append(part)
    if not parts:
        return None
    return PurePosixPath(*parts)


def _clear(path: Path) -> None:
    """Remove whatever currently occupies ``path`` (file or symlink)."""
    if path.is_symlink() or path.is_file():
        path.unlink()


def _restore_exec_bit(path: Path, mode: int) -> None:
    """Best-effort re-apply of the execute bit recorded in the archive."""
    if not mode & _EXEC_BITS:
        return
    try:
        current = path.stat().st_mode
        path.chmod(current | stat.S_IXUSR | (mode & _EXEC_BITS))
    except OSError as e:
        logger.debug("Could not mark %s executable: %s", path, e)


def extract_rootfs(
    archive: bytes,
    destination: Path,
    *,
    cancel_event: threading.Event | None = None,
    on_progress: ProgressCallback | None = None,
) -> int:
    """Decompress and unpack a rootfs tarball into ``destination``.

    Regular files, directories, symlinks and hard links are materialized.
    Hard links become copies of their (already extracted) target. Device
    nodes and FIFOs are skipped: they cannot be created without root and
    the sandbox binds the host's ``/dev`` anyway.

    Args:
        archive: Compressed tar bytes (xz, gzip or bzip2).
        destination: Rootfs directory; parents are created lazily.
        cancel_event: Checked between entries; when set, extraction stops
            with SetupCancelledError.
        on_progress: Called with the running file count every
            PROGRESS_INTERVAL regular files.

    Returns:
        Number of regular files written.

    Raises:
        ArchiveCorruptError: If the archive cannot be decoded.
        SetupCancelledError: If cancel_event was set.
    """
    file_count = 0
    root = destination.resolve()
    try:
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r|*") as tar:
            for member in tar:
                if cancel_event is not None and cancel_event.is_set():
                    raise SetupCancelledError(
                        f"Rootfs extraction cancelled after {file_count} files"
                    )

                relative = _member_path(member.name)
                if relative is None:
                    if member.name.strip("./"):
                        logger.warning(
                            "Skipping member outside rootfs: %s", member.name
                        )
                    continue
                target = destination / relative

                # An absolute symlink earlier in the archive must not
                # redirect later entries onto the host.
                if not target.parent.resolve().is_relative_to(root):
                    logger.warning(
                        "Skipping member behind escaping symlink: %s",
                        member.name,
                    )
                    continue

                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue

                target.parent.mkdir(parents=True, exist_ok=True)

                if member.isreg():
                    source = tar.extractfile(member)
                    if source is None:
                        continue
                    _clear(target)
                    with source, open(target, "wb") as out:
                        shutil.copyfileobj(source, out, _CHUNK_SIZE)
                    _restore_exec_bit(target, member.mode)
                    file_count += 1
                    if on_progress and file_count % PROGRESS_INTERVAL == 0:
                        on_progress(file_count)
                elif member.issym():
                    _clear(target)
                    os.symlink(member.linkname, target)
                elif member.islnk():
                    link_source = _member_path(member.linkname)
                    if link_source is None or not (
                        (destination / link_source)
                        .parent.resolve()
                        .is_relative_to(root)
                    ):
                        logger.warning(
                            "Skipping hard link outside rootfs: %s -> %s",
                            member.name,
                            member.linkname,
                        )
                        continue
                    _clear(target)
                    shutil.copy2(
                        destination / link_source,
                        target,
                        follow_symlinks=False,
                    )
                else:
                    logger.debug("Skipping special member: %s", member.name)
    except (tarfile.TarError, EOFError, ValueError) as e:
        raise ArchiveCorruptError(f"Rootfs archive is corrupt: {e}") from e

    logger.info("Extracted %d files total", file_count)
    return file_count
