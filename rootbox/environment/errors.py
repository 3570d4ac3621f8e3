# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Bootstrap failure taxonomy.

Every fatal bootstrap failure derives from BootstrapError so callers can
offer retry/reset with a single except clause. Permission probe problems
are not exceptions: they are logged and setup carries on.
"""


class BootstrapError(Exception):
    """Base exception for fatal bootstrap failures."""


class AssetMissingError(BootstrapError):
    """A bundled asset is absent or unreadable."""

    def __init__(self, name: str, reason: str = "") -> None:
        self.name = name
        message = f"Asset missing: {name}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class ArchiveCorruptError(BootstrapError):
    """The rootfs archive could not be decompressed or unpacked."""


class SetupTimeoutError(BootstrapError):
    """Bootstrap did not finish within the caller's wall-clock bound."""


class SetupCancelledError(BootstrapError):
    """Bootstrap was cancelled before the marker was written."""
