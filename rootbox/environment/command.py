# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Sandbox invocation builder.

Produces the proot argument vector and environment for an Environment.
The bind set and variables below are what the bundled proot build and the
Debian rootfs expect; changing the order or dropping a bind (``/proc`` in
particular) breaks the guest userspace without any useful error.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rootbox.config import DEFAULT_SANDBOX_BINARY
from rootbox.environment.paths import Environment


GUEST_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

# Host paths exposed unchanged inside the sandbox.
_PSEUDO_FS_BINDS = ("/dev", "/proc", "/sys")
_HOST_STORAGE_BINDS = ("/data", "/storage", "/sdcard", "/mnt")


@dataclass(frozen=True)
class SandboxInvocation:
    """Executable, arguments and environment for one sandbox launch.

    Attributes:
        executable: Host path of the sandbox binary.
        args: Arguments after the executable.
        env: Environment variables for the sandboxed process.
    """

    executable: str
    args: tuple[str, ...]
    env: dict[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        """Full argument vector, executable first."""
        return [self.executable, *self.args]


def build_sandbox_args(
    environment: Environment,
    shell: str,
    shell_args: tuple[str, ...] = (),
) -> tuple[str, ...]:
    """Build the proot arguments (without the executable)."""
    args: list[str] = [
        "-S",
        str(environment.rootfs_path),
        # Fake root; proot translates the UID, it grants nothing.
        "-0",
        "-w",
        "/",
    ]
    for path in _PSEUDO_FS_BINDS:
        args.extend(["-b", path])
    args.extend(["-b", f"{environment.tmp_path}:/tmp"])
    for path in _HOST_STORAGE_BINDS:
        args.extend(["-b", path])
    args.extend(
        [
            "-b",
            f"{environment.home_path}:/home",
            "-b",
            f"{environment.lib_path}:/lib",
            "-b",
            f"{environment.sandbox_bin_path}:/proot",
        ]
    )
    args.append(shell)
    args.extend(shell_args)
    return tuple(args)


def build_sandbox_env(environment: Environment) -> dict[str, str]:
    """Environment for the sandbox binary and the processes inside it.

    Every path is a guest path: the ``PROOT_*`` variables point into the
    ``/proot`` and ``/tmp`` binds set up by build_sandbox_args().

    ``LD_PRELOAD`` is set empty rather than omitted so a preload library
    from the host never leaks into the guest.
    """
    return {
        "HOME": "/home",
        "PATH": GUEST_PATH,
        "TERM": "xterm-256color",
        "LANG": "en_US.UTF-8",
        "LC_ALL": "en_US.UTF-8",
        "LD_LIBRARY_PATH": "/lib:/usr/lib",
        "PROOT_NO_SECCOMP": "1",
        "PROOT_LOADER": "/proot/loader",
        "PROOT_LOADER32": "/proot/loader32",
        "PROOT_TMP_DIR": "/tmp",
        "LD_PRELOAD": "",
    }


def build_sandbox_invocation(
    environment: Environment,
    *,
    sandbox_binary: str = DEFAULT_SANDBOX_BINARY,
    shell: str = "/bin/bash",
    shell_args: tuple[str, ...] = ("--login",),
) -> SandboxInvocation:
    """Describe how to launch ``shell`` inside the sandbox.

    Pure function of its arguments: no filesystem access.

    Args:
        environment: Prepared environment layout.
        sandbox_binary: File name of the sandbox executable.
        shell: Program to run as the sandbox's first process.
        shell_args: Arguments for that program.

    Returns:
        SandboxInvocation ready to hand to the session engine.
    """
    return SandboxInvocation(
        executable=str(environment.sandbox_bin_path / sandbox_binary),
        args=build_sandbox_args(environment, shell, shell_args),
        env=build_sandbox_env(environment),
    )


def is_sandbox_command(command: list[str], sandbox_binary: str) -> bool:
    """Whether ``command`` launches the sandbox binary directly."""
    if not command:
        return False
    program = command[0].rsplit("/", 1)[-1]
    return program == sandbox_binary or "proot" in program
