"""
Tests for the service module.
"""

import subprocess
from pathlib import Path
from unittest.mock import patch

from ramprofile.config import ProfileLocation
from ramprofile.service import (
    SERVICE_NAME,
    ServiceManager,
    executable_path,
    render_unit,
    sudoers_line,
)


def _ok(*args, **kwargs) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout="", stderr="")


def test_render_unit() -> None:
    unit = render_unit("/usr/bin/ramprofile")
    assert "Type=oneshot" in unit
    assert "ExecStart=/usr/bin/ramprofile load --yes" in unit
    assert "ExecStop=/usr/bin/ramprofile save --yes" in unit
    assert "RemainAfterExit=yes" in unit
    assert "WantedBy=default.target" in unit


def test_render_unit_with_config() -> None:
    unit = render_unit("/usr/bin/ramprofile", Path("/home/u/my config.yaml"))
    expected = "ExecStart=/usr/bin/ramprofile --config '/home/u/my config.yaml' load"
    assert expected in unit


def test_executable_path_fallback() -> None:
    with patch("ramprofile.service.shutil.which", return_value=None):
        assert executable_path().endswith(" -m ramprofile")
    with patch("ramprofile.service.shutil.which", return_value="/usr/bin/ramprofile"):
        assert executable_path() == "/usr/bin/ramprofile"


def test_executable_path_quotes_interpreter() -> None:
    with patch("ramprofile.service.shutil.which", return_value=None), patch(
        "ramprofile.service.sys.executable", "/opt/my python/bin/python3"
    ):
        assert executable_path() == "'/opt/my python/bin/python3' -m ramprofile"


def test_sudoers_line() -> None:
    location = ProfileLocation(
        persistent_path=Path("/home/u/.config/vivaldi"),
        ram_path=Path("/dev/shm/vivaldi-profile"),
        backup_dir=Path("/home/u/Backups"),
    )
    line = sudoers_line("u", location)
    assert line.startswith("u ALL=(root) NOPASSWD: ")
    assert "/bin/mount --bind /dev/shm/vivaldi-profile /home/u/.config/vivaldi" in line
    assert line.endswith("/bin/umount /home/u/.config/vivaldi")


def test_install_writes_and_enables(tmp_path: Path) -> None:
    services = ServiceManager(unit_dir=tmp_path / "systemd" / "user")
    with patch("ramprofile.service.subprocess.run", side_effect=_ok) as mock_run:
        assert services.install(executable="/usr/bin/ramprofile") is True

    assert services.unit_path == tmp_path / "systemd" / "user" / SERVICE_NAME
    assert "ExecStart=/usr/bin/ramprofile load --yes" in services.unit_path.read_text()
    commands = [call.args[0] for call in mock_run.call_args_list]
    assert commands == [
        ["systemctl", "--user", "daemon-reload"],
        ["systemctl", "--user", "enable", SERVICE_NAME],
    ]


def test_install_without_systemctl(tmp_path: Path) -> None:
    services = ServiceManager(unit_dir=tmp_path)
    with patch("ramprofile.service.subprocess.run", side_effect=FileNotFoundError()):
        assert services.install(executable="/usr/bin/ramprofile") is False
    assert services.unit_path.exists()


def test_remove_deletes_unit(tmp_path: Path) -> None:
    services = ServiceManager(unit_dir=tmp_path)
    services.unit_path.write_text("[Unit]\n")
    with patch("ramprofile.service.subprocess.run", side_effect=_ok) as mock_run:
        assert services.remove() is True

    assert not services.unit_path.exists()
    commands = [call.args[0] for call in mock_run.call_args_list]
    assert ["systemctl", "--user", "disable", SERVICE_NAME] in commands


def test_disable_failure(tmp_path: Path) -> None:
    failed = subprocess.CompletedProcess(
        args=[], returncode=1, stdout="", stderr="Unit not found"
    )
    with patch("ramprofile.service.subprocess.run", return_value=failed):
        assert ServiceManager(unit_dir=tmp_path).disable() is False
