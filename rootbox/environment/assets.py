# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Read-only access to the bundled bootstrap assets.

Assets are resolved by name. The default source is the
``rootbox._bundled.assets`` package; a plain directory can be used
instead (``assets.directory`` in config) for builds that ship the proot
binary and rootfs outside the wheel.
"""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path
from typing import Protocol

from rootbox.environment.errors import AssetMissingError


logger = logging.getLogger(__name__)

BUNDLED_ASSETS_PACKAGE = "rootbox._bundled.assets"


class AssetSource(Protocol):
    """Protocol for named asset loading."""

    def load(self, name: str) -> bytes:
        """Return the asset's bytes, raising AssetMissingError if absent."""
        ...


class DirectoryAssetSource:
    """Assets stored as plain files in one directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def load(self, name: str) -> bytes:
        path = self.root / name
        try:
            return path.read_bytes()
        except OSError as e:
            raise AssetMissingError(name, e.strerror or str(e)) from e

    def __repr__(self) -> str:
        return f"DirectoryAssetSource({self.root})"


class BundledAssetSource:
    """Assets shipped as package data."""

    def __init__(self, package: str = BUNDLED_ASSETS_PACKAGE) -> None:
        self.package = package

    def load(self, name: str) -> bytes:
        try:
            return resources.files(self.package).joinpath(name).read_bytes()
        except (OSError, ModuleNotFoundError) as e:
            raise AssetMissingError(name, str(e)) from e

    def __repr__(self) -> str:
        return f"BundledAssetSource({self.package})"


def get_asset_source(directory: Path | None = None) -> AssetSource:
    """Return a directory source if given, else the bundled one."""
    if directory is not None:
        logger.debug("Loading assets from %s", directory)
        return DirectoryAssetSource(directory)
    return BundledAssetSource()
