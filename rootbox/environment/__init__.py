# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Sandbox environment: layout, one-time bootstrap, and invocation.

The bootstrap extracts the proot binary and the Debian rootfs under a
single writable base directory. Once the completion marker exists, each
session launches through build_sandbox_invocation().
"""

from rootbox.environment.assets import (
    AssetSource,
    BundledAssetSource,
    DirectoryAssetSource,
    get_asset_source,
)
from rootbox.environment.bootstrap import (
    Bootstrapper,
    BootstrapJob,
    BootstrapStage,
    DiagnosticsSink,
)
from rootbox.environment.command import (
    SandboxInvocation,
    build_sandbox_invocation,
    is_sandbox_command,
)
from rootbox.environment.errors import (
    ArchiveCorruptError,
    AssetMissingError,
    BootstrapError,
    SetupCancelledError,
    SetupTimeoutError,
)
from rootbox.environment.paths import Environment, resolve_base_directory


__all__ = [
    # paths
    "Environment",
    "resolve_base_directory",
    # assets
    "AssetSource",
    "BundledAssetSource",
    "DirectoryAssetSource",
    "get_asset_source",
    # bootstrap
    "Bootstrapper",
    "BootstrapJob",
    "BootstrapStage",
    "DiagnosticsSink",
    # command
    "SandboxInvocation",
    "build_sandbox_invocation",
    "is_sandbox_command",
    # errors
    "ArchiveCorruptError",
    "AssetMissingError",
    "BootstrapError",
    "SetupCancelledError",
    "SetupTimeoutError",
]
