"""
Configuration file support for RAM Profile.

Loads settings from ``~/.config/ramprofile/config.yaml`` (or
``$XDG_CONFIG_HOME/ramprofile/config.yaml``) and exposes them as immutable
dataclasses that are built once and passed to every component.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ramprofile.platform import default_lock_path, default_ram_root

logger = logging.getLogger("ramprofile.config")

CONFIG_ENV_VAR = "RAMPROFILE_CONFIG"


def default_config_path() -> Path:
    """Return the default configuration file path.

    Uses ``$RAMPROFILE_CONFIG`` when set, then
    ``$XDG_CONFIG_HOME/ramprofile/config.yaml``, otherwise falls back to
    ``~/.config/ramprofile/config.yaml``.
    """
    explicit = os.environ.get(CONFIG_ENV_VAR)
    if explicit:
        return Path(explicit).expanduser()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "ramprofile" / "config.yaml"
    return Path.home() / ".config" / "ramprofile" / "config.yaml"


@dataclass(frozen=True)
class ProfileLocation:
    """Where the profile lives on disk, in RAM, and where its backups go."""

    persistent_path: Path
    ram_path: Path
    backup_dir: Path
    archive_prefix: str = "vivaldi-profile"

    @classmethod
    def default(cls) -> "ProfileLocation":
        home = Path.home()
        return cls(
            persistent_path=home / ".config" / "vivaldi",
            ram_path=default_ram_root() / "vivaldi-profile",
            backup_dir=home / "Backups" / "vivaldi-profile-ram",
        )


@dataclass(frozen=True)
class RetentionConfig:
    """Retention settings from the configuration file."""

    keep_last: int = 1


@dataclass(frozen=True)
class Settings:
    """Top-level configuration loaded from the YAML file."""

    location: ProfileLocation = field(default_factory=ProfileLocation.default)
    process_name: str = "vivaldi-bin"
    min_ram_gb: int = 16
    ram_factor: int = 2
    stale_backup_days: int = 7
    use_sudo: bool = True
    compression_level: int = 9
    lock_path: Path = field(default_factory=default_lock_path)
    retention: RetentionConfig = field(default_factory=RetentionConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """Construct ``Settings`` from a parsed YAML dictionary."""
        if not isinstance(data, dict):
            return cls()

        defaults = cls()
        base = defaults.location

        def _path(key: str, fallback: Path) -> Path:
            value = data.get(key)
            if value is None:
                return fallback
            return Path(str(value)).expanduser()

        location = ProfileLocation(
            persistent_path=_path("profile_path", base.persistent_path),
            ram_path=_path("ram_path", base.ram_path),
            backup_dir=_path("backup_dir", base.backup_dir),
            archive_prefix=str(data.get("archive_prefix", base.archive_prefix)),
        )

        retention_data = data.get("retention") or {}
        if not isinstance(retention_data, dict):
            logger.warning("Ignoring invalid retention section: %s", retention_data)
            retention_data = {}
        retention = RetentionConfig(
            keep_last=int(retention_data.get("keep_last", RetentionConfig.keep_last))
        )

        return cls(
            location=location,
            process_name=str(data.get("process_name", defaults.process_name)),
            min_ram_gb=int(data.get("min_ram_gb", defaults.min_ram_gb)),
            ram_factor=int(data.get("ram_factor", defaults.ram_factor)),
            stale_backup_days=int(
                data.get("stale_backup_days", defaults.stale_backup_days)
            ),
            use_sudo=bool(data.get("use_sudo", defaults.use_sudo)),
            compression_level=int(
                data.get("compression_level", defaults.compression_level)
            ),
            lock_path=_path("lock_path", defaults.lock_path),
            retention=retention,
        )

    @classmethod
    def from_file(cls, path: Path) -> "Settings":
        """Read a YAML file and return ``Settings``.

        Returns the default settings on any error.
        """
        try:
            with open(path, "r") as f:
                data = yaml.safe_load(f.read())
            if data is None:
                return cls()
            return cls.from_dict(data)
        except (IOError, yaml.YAMLError, ValueError, TypeError) as e:
            logger.error("Failed to load config from %s: %s", path, e)
            return cls()

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Settings":
        """Main entry point: load config from *config_path* or the default location.

        Returns the default settings if the file does not exist.
        """
        path = config_path or default_config_path()
        if not path.exists():
            return cls()
        return cls.from_file(path)
