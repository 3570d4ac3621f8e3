# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for rootbox/environment/command.py -- sandbox invocations."""

from pathlib import Path

import pytest

from rootbox.config import DEFAULT_SANDBOX_BINARY
from rootbox.environment.command import (
    GUEST_PATH,
    build_sandbox_args,
    build_sandbox_env,
    build_sandbox_invocation,
    is_sandbox_command,
)
from rootbox.environment.paths import Environment


@pytest.fixture
def env() -> Environment:
    """Layout under a fixed, never-created base path."""
    base = Path("/data/rootbox")
    return Environment(
        base_path=base,
        rootfs_path=base / "usr",
        home_path=base / "home",
        sandbox_bin_path=base / "proot",
        lib_path=base / "lib",
        tmp_path=base / "tmp",
    )


class TestBuildSandboxArgs:
    """Tests for build_sandbox_args function."""

    def test_exact_argument_order(self, env: Environment) -> None:
        """Binds and options appear in the fixed order."""
        args = build_sandbox_args(env, "/bin/bash", ("--login",))

        assert args == (
            "-S",
            "/data/rootbox/usr",
            "-0",
            "-w",
            "/",
            "-b",
            "/dev",
            "-b",
            "/proc",
            "-b",
            "/sys",
            "-b",
            "/data/rootbox/tmp:/tmp",
            "-b",
            "/data",
            "-b",
            "/storage",
            "-b",
            "/sdcard",
            "-b",
            "/mnt",
            "-b",
            "/data/rootbox/home:/home",
            "-b",
            "/data/rootbox/lib:/lib",
            "-b",
            "/data/rootbox/proot:/proot",
            "/bin/bash",
            "--login",
        )

    def test_shell_without_args(self, env: Environment) -> None:
        """The shell is the last argument when it takes none."""
        args = build_sandbox_args(env, "/usr/bin/env")

        assert args[-1] == "/usr/bin/env"

    def test_proc_is_bound(self, env: Environment) -> None:
        """/proc is always bound."""
        args = build_sandbox_args(env, "/bin/sh")

        index = args.index("/proc")
        assert args[index - 1] == "-b"


class TestBuildSandboxEnv:
    """Tests for build_sandbox_env function."""

    def test_variables(self, env: Environment) -> None:
        """Every variable carries a guest path."""
        assert build_sandbox_env(env) == {
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

    def test_ld_preload_present_and_empty(self, env: Environment) -> None:
        """LD_PRELOAD is present so a host value is overridden."""
        result = build_sandbox_env(env)

        assert "LD_PRELOAD" in result
        assert result["LD_PRELOAD"] == ""


class TestBuildSandboxInvocation:
    """Tests for build_sandbox_invocation function."""

    def test_defaults(self, env: Environment) -> None:
        """Default invocation runs a bash login shell."""
        invocation = build_sandbox_invocation(env)

        assert invocation.executable == (
            f"/data/rootbox/proot/{DEFAULT_SANDBOX_BINARY}"
        )
        assert invocation.args[-2:] == ("/bin/bash", "--login")
        assert invocation.argv[0] == invocation.executable
        assert invocation.argv[1:] == list(invocation.args)
        assert invocation.env == build_sandbox_env(env)

    def test_custom_binary_and_shell(self, env: Environment) -> None:
        """Binary name and shell are configurable."""
        invocation = build_sandbox_invocation(
            env,
            sandbox_binary="proot",
            shell="/bin/sh",
            shell_args=("-c", "id"),
        )

        assert invocation.executable == "/data/rootbox/proot/proot"
        assert invocation.args[-3:] == ("/bin/sh", "-c", "id")

    def test_is_pure(self, env: Environment) -> None:
        """Building an invocation touches no files."""
        build_sandbox_invocation(env)

        assert not Path("/data/rootbox").exists()

    def test_deterministic(self, env: Environment) -> None:
        """Equal inputs give equal invocations."""
        assert build_sandbox_invocation(env) == build_sandbox_invocation(env)


class TestIsSandboxCommand:
    """Tests for is_sandbox_command function."""

    def test_full_path(self) -> None:
        assert is_sandbox_command(
            ["/base/proot/" + DEFAULT_SANDBOX_BINARY, "-S", "x"],
            DEFAULT_SANDBOX_BINARY,
        )

    def test_any_proot_name(self) -> None:
        """Any program named like proot counts."""
        assert is_sandbox_command(["/usr/bin/proot"], "custom-sandbox")

    def test_other_programs(self) -> None:
        assert not is_sandbox_command(["/bin/sh", "-c", "proot"], "proot")

    def test_empty(self) -> None:
        assert not is_sandbox_command([], DEFAULT_SANDBOX_BINARY)
