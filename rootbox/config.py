# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Configuration for rootbox.

Configuration is loaded from a YAML file (``~/.config/rootbox/rootbox.yaml``
by default) with support for ``!env`` tags that resolve values from
environment variables. Every key is optional; a missing file yields the
defaults.

Example::

    base_dir: !env ROOTBOX_HOME
    assets:
      directory: /opt/rootbox/assets
    setup:
      timeout_seconds: 300
    sessions:
      fallback_exit_code: -117
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from platformdirs import user_config_path

from rootbox.dotenv_loader import load_dotenv_once


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
APP_NAME = "rootbox"
CONFIG_ENV_VAR = "ROOTBOX_CONFIG"

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})

DEFAULT_SANDBOX_BINARY = "proot-v5.3.0-aarch64-static"
DEFAULT_LIBRARIES = (
    "ld-linux-aarch64.so.1",
    "libanl.so.1",
    "libBrokenLocale.so.1",
    "libc.so.6",
    "libtalloc.so.2",
    "libtalloc.so.2.4.2",
    "loader",
    "loader32",
)
DEFAULT_ROOTFS_ARCHIVE = "debian-bookworm-aarch64.tar.xz"

#: Exit status the bundled proot build reports when the kernel refuses to
#: execute it. Tied to that binary; override in config for other builds.
DEFAULT_FALLBACK_EXIT_CODE = -117


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)  # type: ignore[arg-type]
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is unset/empty.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name) or None
    if value is None:
        return None
    return str(value)


def _resolve(value: object, coerce: type[Any], default: Any = None) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``, ``bool``,
            ``Path``).
        default: Value returned when the raw value is absent.

    Returns:
        The resolved, coerced value.

    Raises:
        ConfigError: If the value cannot be coerced.
    """
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)
    if resolved is None:
        return default

    if coerce is bool:
        return _coerce_bool(resolved)
    if coerce is Path:
        return Path(resolved).expanduser()
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _resolve_string_list(
    value: object, name: str, default: tuple[str, ...]
) -> tuple[str, ...]:
    """Resolve a list of strings, handling ``!env`` for each element."""
    if value is None:
        return default
    if not isinstance(value, list):
        raise ConfigError(
            f"Config '{name}' must be a list, got {type(value).__name__}"
        )
    result = []
    for item in value:
        resolved = _raw_resolve(item)
        if resolved:
            result.append(resolved)
    return tuple(result)


def _section(raw: dict, name: str) -> dict:
    """Return a nested mapping, treating a missing section as empty."""
    section = raw.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be a YAML mapping")
    return section


# ---------------------------------------------------------------------------
# Configuration dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssetConfig:
    """Names and location of the bundled assets.

    Attributes:
        directory: Directory holding the assets. None means the assets
            bundled with the package.
        sandbox_binary: File name of the sandbox executable.
        libraries: File names of the shared libraries and loaders
            extracted next to the sandbox executable.
        rootfs_archive: File name of the compressed rootfs tarball.
    """

    directory: Path | None = None
    sandbox_binary: str = DEFAULT_SANDBOX_BINARY
    libraries: tuple[str, ...] = DEFAULT_LIBRARIES
    rootfs_archive: str = DEFAULT_ROOTFS_ARCHIVE

    def __post_init__(self) -> None:
        if not self.sandbox_binary:
            raise ConfigError("assets.sandbox_binary must not be empty")
        if not self.rootfs_archive:
            raise ConfigError("assets.rootfs_archive must not be empty")


@dataclass(frozen=True)
class SetupConfig:
    """Bootstrap settings.

    Attributes:
        timeout_seconds: Wall-clock bound for the whole bootstrap.
        probe_timeout_seconds: Bound for the sandbox smoke-test run.
    """

    timeout_seconds: int = 300
    probe_timeout_seconds: int = 10

    def __post_init__(self) -> None:
        if self.timeout_seconds < 1:
            raise ConfigError(
                f"Setup timeout must be >= 1s: {self.timeout_seconds}"
            )
        if self.probe_timeout_seconds < 1:
            raise ConfigError(
                f"Probe timeout must be >= 1s: {self.probe_timeout_seconds}"
            )


@dataclass(frozen=True)
class SessionConfig:
    """Session engine settings.

    Attributes:
        shell: Login shell started inside the sandbox.
        shell_args: Arguments passed to the login shell.
        fallback_shell: Host shell used to re-run a sandbox command the
            kernel refused to execute directly.
        fallback_exit_code: Exit status that triggers the shell fallback.
        fallback_delay_seconds: Pause before the fallback session starts.
        max_lines: Scrollback bound of each terminal buffer.
        auto_respawn: Start a fresh shell when the last session closes.
    """

    shell: str = "/bin/bash"
    shell_args: tuple[str, ...] = ("--login",)
    fallback_shell: str = "/bin/sh"
    fallback_exit_code: int = DEFAULT_FALLBACK_EXIT_CODE
    fallback_delay_seconds: float = 1.0
    max_lines: int = 10000
    auto_respawn: bool = True

    def __post_init__(self) -> None:
        if self.max_lines < 1:
            raise ConfigError(f"max_lines must be >= 1: {self.max_lines}")
        if self.fallback_delay_seconds < 0:
            raise ConfigError(
                f"Fallback delay must be >= 0: {self.fallback_delay_seconds}"
            )


@dataclass(frozen=True)
class RootboxConfig:
    """Complete rootbox configuration.

    Attributes:
        base_dir: Writable root of the environment. None means the
            platform default chosen by the host path supplier.
        assets: Asset names and location.
        setup: Bootstrap settings.
        sessions: Session engine settings.
    """

    base_dir: Path | None = None
    assets: AssetConfig = field(default_factory=AssetConfig)
    setup: SetupConfig = field(default_factory=SetupConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "RootboxConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time. ``.env`` files are loaded first
        (see load_dotenv_once()).

        Args:
            config_path: Path to YAML config file. Defaults to the
                ``ROOTBOX_CONFIG`` environment variable, then
                ``~/.config/rootbox/rootbox.yaml``.

        Returns:
            RootboxConfig instance (defaults if the file does not exist).

        Raises:
            ConfigError: If the file is malformed or a value is invalid.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            logger.debug("No config file at %s, using defaults", config_path)
            return cls()

        try:
            with open(config_path) as f:
                raw = yaml.load(f, Loader=_make_loader())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        config = cls._from_raw(raw)
        logger.debug("Loaded config from %s", config_path)
        return config

    @classmethod
    def _from_raw(cls, raw: dict) -> "RootboxConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        assets = _section(raw, "assets")
        setup = _section(raw, "setup")
        sessions = _section(raw, "sessions")

        return cls(
            base_dir=_resolve(raw.get("base_dir"), Path),
            assets=AssetConfig(
                directory=_resolve(assets.get("directory"), Path),
                sandbox_binary=_resolve(
                    assets.get("sandbox_binary"), str, DEFAULT_SANDBOX_BINARY
                ),
                libraries=_resolve_string_list(
                    assets.get("libraries"),
                    "assets.libraries",
                    DEFAULT_LIBRARIES,
                ),
                rootfs_archive=_resolve(
                    assets.get("rootfs_archive"), str, DEFAULT_ROOTFS_ARCHIVE
                ),
            ),
            setup=SetupConfig(
                timeout_seconds=_resolve(
                    setup.get("timeout_seconds"), int, 300
                ),
                probe_timeout_seconds=_resolve(
                    setup.get("probe_timeout_seconds"), int, 10
                ),
            ),
            sessions=SessionConfig(
                shell=_resolve(sessions.get("shell"), str, "/bin/bash"),
                shell_args=_resolve_string_list(
                    sessions.get("shell_args"),
                    "sessions.shell_args",
                    ("--login",),
                ),
                fallback_shell=_resolve(
                    sessions.get("fallback_shell"), str, "/bin/sh"
                ),
                fallback_exit_code=_resolve(
                    sessions.get("fallback_exit_code"),
                    int,
                    DEFAULT_FALLBACK_EXIT_CODE,
                ),
                fallback_delay_seconds=_resolve(
                    sessions.get("fallback_delay_seconds"), float, 1.0
                ),
                max_lines=_resolve(sessions.get("max_lines"), int, 10000),
                auto_respawn=_resolve(
                    sessions.get("auto_respawn"), bool, True
                ),
            ),
        )


def get_config_path() -> Path:
    """Return the config file path, honouring ``ROOTBOX_CONFIG``."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return user_config_path(APP_NAME) / "rootbox.yaml"


def get_dotenv_path() -> Path:
    """Return the ``.env`` path inside the XDG config directory."""
    return user_config_path(APP_NAME) / ".env"
