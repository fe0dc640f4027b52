"""
Tests for the config module.
"""

import os
from pathlib import Path
from unittest.mock import patch

from ramprofile.config import (
    ProfileLocation,
    RetentionConfig,
    Settings,
    default_config_path,
)


def test_default_config_path() -> None:
    """default_config_path falls back to ~/.config/ramprofile/config.yaml."""
    env = {"HOME": str(Path.home())}
    with patch.dict(os.environ, env, clear=True):
        result = default_config_path()
        assert result == Path.home() / ".config" / "ramprofile" / "config.yaml"


def test_default_config_path_xdg() -> None:
    """default_config_path respects $XDG_CONFIG_HOME."""
    with patch.dict(os.environ, {"XDG_CONFIG_HOME": "/custom/config"}):
        os.environ.pop("RAMPROFILE_CONFIG", None)
        result = default_config_path()
        assert result == Path("/custom/config/ramprofile/config.yaml")


def test_default_config_path_env_override() -> None:
    """$RAMPROFILE_CONFIG wins over every other location."""
    with patch.dict(
        os.environ,
        {"RAMPROFILE_CONFIG": "/etc/rp.yaml", "XDG_CONFIG_HOME": "/custom"},
    ):
        assert default_config_path() == Path("/etc/rp.yaml")


def test_missing_file_returns_defaults(tmp_path: Path) -> None:
    """Loading a non-existent file returns the default settings."""
    cfg = Settings.load(tmp_path / "nonexistent.yaml")
    assert cfg.process_name == "vivaldi-bin"
    assert cfg.min_ram_gb == 16
    assert cfg.ram_factor == 2
    assert cfg.stale_backup_days == 7
    assert cfg.retention == RetentionConfig()
    assert cfg.location.archive_prefix == "vivaldi-profile"


def test_default_location() -> None:
    location = ProfileLocation.default()
    assert location.persistent_path == Path.home() / ".config" / "vivaldi"
    assert location.ram_path.name == "vivaldi-profile"
    assert location.backup_dir == Path.home() / "Backups" / "vivaldi-profile-ram"


def test_empty_file_returns_defaults(tmp_path: Path) -> None:
    """An empty YAML file returns the default settings."""
    p = tmp_path / "config.yaml"
    p.write_text("")
    cfg = Settings.from_file(p)
    assert cfg.process_name == "vivaldi-bin"


def test_full_config_parsing(tmp_path: Path) -> None:
    """A fully-populated config file is parsed correctly."""
    p = tmp_path / "config.yaml"
    p.write_text("""\
profile_path: "/data/profile"
ram_path: "/dev/shm/my-profile"
backup_dir: "~/Backups/profile"
archive_prefix: "my-profile"
process_name: "firefox"
min_ram_gb: 8
ram_factor: 3
stale_backup_days: 14
use_sudo: false
compression_level: 6
lock_path: "/run/user/1000/rp.lock"
retention:
  keep_last: 4
""")
    cfg = Settings.from_file(p)
    assert cfg.location.persistent_path == Path("/data/profile")
    assert cfg.location.ram_path == Path("/dev/shm/my-profile")
    assert cfg.location.backup_dir == Path.home() / "Backups" / "profile"
    assert cfg.location.archive_prefix == "my-profile"
    assert cfg.process_name == "firefox"
    assert cfg.min_ram_gb == 8
    assert cfg.ram_factor == 3
    assert cfg.stale_backup_days == 14
    assert cfg.use_sudo is False
    assert cfg.compression_level == 6
    assert cfg.lock_path == Path("/run/user/1000/rp.lock")
    assert cfg.retention.keep_last == 4


def test_partial_config_keeps_defaults(tmp_path: Path) -> None:
    """Unset keys keep their default values."""
    p = tmp_path / "config.yaml"
    p.write_text('process_name: "chrome"\n')
    cfg = Settings.from_file(p)
    assert cfg.process_name == "chrome"
    assert cfg.location == ProfileLocation.default()
    assert cfg.retention.keep_last == 1


def test_invalid_retention_section_ignored(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text('retention: "weekly"\n')
    cfg = Settings.from_file(p)
    assert cfg.retention == RetentionConfig()


def test_invalid_yaml_returns_defaults(tmp_path: Path) -> None:
    """Malformed YAML returns the default settings instead of raising."""
    p = tmp_path / "config.yaml"
    p.write_text(": : : [invalid yaml")
    cfg = Settings.from_file(p)
    assert cfg.process_name == "vivaldi-bin"


def test_invalid_number_returns_defaults(tmp_path: Path) -> None:
    p = tmp_path / "config.yaml"
    p.write_text("min_ram_gb: plenty\n")
    assert Settings.from_file(p).min_ram_gb == 16


def test_from_dict_non_dict() -> None:
    """from_dict with a non-dict value returns defaults."""
    cfg = Settings.from_dict("not a dict")  # type: ignore[arg-type]
    assert cfg.process_name == "vivaldi-bin"


def test_settings_are_immutable() -> None:
    cfg = Settings()
    try:
        cfg.process_name = "other"  # type: ignore[misc]
    except AttributeError:
        pass
    else:
        raise AssertionError("Settings should be frozen")


def test_load_uses_default_path(tmp_path: Path) -> None:
    """load() without arguments uses default_config_path()."""
    with patch(
        "ramprofile.config.default_config_path", return_value=tmp_path / "nope.yaml"
    ):
        cfg = Settings.load()
    assert cfg.process_name == "vivaldi-bin"
