# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for rootbox/environment/paths.py -- environment layout."""

import dataclasses
from pathlib import Path
from unittest.mock import patch

import pytest

from rootbox.environment.paths import (
    SETUP_MARKER_NAME,
    Environment,
    resolve_base_directory,
)


class TestResolveBaseDirectory:
    """Tests for resolve_base_directory function."""

    def test_override_is_created(self, tmp_path: Path) -> None:
        """Explicit override is created and returned canonicalized."""
        base = resolve_base_directory(tmp_path / "a" / "b")

        assert base.is_dir()
        assert base == (tmp_path / "a" / "b").resolve()

    def test_env_var(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """ROOTBOX_HOME is used when no override is given."""
        monkeypatch.setenv("ROOTBOX_HOME", str(tmp_path / "from-env"))

        assert resolve_base_directory() == (tmp_path / "from-env").resolve()

    def test_override_wins_over_env_var(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Explicit override takes precedence over ROOTBOX_HOME."""
        monkeypatch.setenv("ROOTBOX_HOME", str(tmp_path / "from-env"))

        base = resolve_base_directory(tmp_path / "explicit")

        assert base == (tmp_path / "explicit").resolve()
        assert not (tmp_path / "from-env").exists()

    def test_defaults_to_user_data_dir(self, tmp_path: Path) -> None:
        """Falls back to the XDG data directory."""
        with patch(
            "rootbox.environment.paths.user_data_path",
            return_value=tmp_path / "data" / "rootbox",
        ) as mock_path:
            base = resolve_base_directory()

        mock_path.assert_called_once_with("rootbox")
        assert base == (tmp_path / "data" / "rootbox").resolve()
        assert base.is_dir()

    def test_symlink_is_resolved(self, tmp_path: Path) -> None:
        """A symlinked base resolves to its real location."""
        real = tmp_path / "real"
        real.mkdir()
        link = tmp_path / "link"
        link.symlink_to(real)

        assert resolve_base_directory(link) == real.resolve()

    def test_tilde_is_expanded(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A leading ~ expands to the user's home."""
        monkeypatch.setenv("HOME", str(tmp_path))

        base = resolve_base_directory(Path("~/rootbox"))

        assert base == (tmp_path / "rootbox").resolve()


class TestEnvironment:
    """Tests for the Environment layout."""

    def test_from_base_derives_paths(self, tmp_path: Path) -> None:
        """All paths are fixed children of the base."""
        env = Environment.from_base(tmp_path)

        assert env.base_path == tmp_path
        assert env.rootfs_path == tmp_path / "usr"
        assert env.home_path == tmp_path / "home"
        assert env.sandbox_bin_path == tmp_path / "proot"
        assert env.lib_path == tmp_path / "lib"
        assert env.tmp_path == tmp_path / "tmp"

    def test_from_base_creates_directories(self, tmp_path: Path) -> None:
        """Every managed directory exists after construction."""
        env = Environment.from_base(tmp_path)

        assert len(env.directories) == 5
        for directory in env.directories:
            assert directory.is_dir()

    def test_from_base_is_repeatable(self, tmp_path: Path) -> None:
        """Constructing twice for the same base yields equal layouts."""
        first = Environment.from_base(tmp_path)
        (first.home_path / "notes.txt").write_text("keep me")

        second = Environment.from_base(tmp_path)

        assert first == second
        assert (second.home_path / "notes.txt").read_text() == "keep me"

    def test_marker(self, tmp_path: Path) -> None:
        """setup_complete reflects the marker file."""
        env = Environment.from_base(tmp_path)

        assert env.marker_path == tmp_path / SETUP_MARKER_NAME
        assert env.setup_complete is False

        env.marker_path.write_text("Setup completed at now\n")
        assert env.setup_complete is True

    def test_ensure_directories_recreates(self, tmp_path: Path) -> None:
        """Missing directories are recreated."""
        env = Environment.from_base(tmp_path)
        env.tmp_path.rmdir()

        env.ensure_directories()

        assert env.tmp_path.is_dir()

    def test_frozen(self, tmp_path: Path) -> None:
        """The layout cannot be mutated."""
        env = Environment.from_base(tmp_path)

        with pytest.raises(dataclasses.FrozenInstanceError):
            env.home_path = tmp_path  # type: ignore[misc]
