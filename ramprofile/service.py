"""
Background service integration for RAM Profile.

Installs a systemd user unit that loads the profile into RAM when the
session starts and saves it back when the session stops.
"""

import logging
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from typing import List, Optional, Tuple

from ramprofile.config import ProfileLocation

logger = logging.getLogger("ramprofile.service")

SERVICE_NAME = "ramprofile.service"


def default_unit_dir() -> Path:
    return Path.home() / ".config" / "systemd" / "user"


def executable_path() -> str:
    """Return the command used to run ramprofile from the unit file."""
    found = shutil.which("ramprofile")
    if found:
        return shlex.quote(found)
    return f"{shlex.quote(sys.executable)} -m ramprofile"


def render_unit(executable: str, config_path: Optional[Path] = None) -> str:
    """Return the text of the systemd unit file."""
    command = executable
    if config_path is not None:
        command += f" --config {shlex.quote(str(config_path))}"
    return (
        "[Unit]\n"
        "Description=RAM Profile Manager\n"
        "After=graphical-session.target\n"
        "\n"
        "[Service]\n"
        "Type=oneshot\n"
        f"ExecStart={command} load --yes\n"
        f"ExecStop={command} save --yes\n"
        "RemainAfterExit=yes\n"
        "\n"
        "[Install]\n"
        "WantedBy=default.target\n"
    )


def sudoers_line(user: str, location: ProfileLocation) -> str:
    """Return the optional sudoers rule for password-less mount and umount."""
    return (
        f"{user} ALL=(root) NOPASSWD: "
        f"/bin/mount --bind {location.ram_path} {location.persistent_path}, "
        f"/bin/umount {location.persistent_path}"
    )


def _systemctl(args: List[str]) -> Tuple[int, str, str]:
    cmd = ["systemctl", "--user"] + args
    cmd_str = " ".join(shlex.quote(arg) for arg in cmd)
    logger.debug(f"Running command: {cmd_str}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except FileNotFoundError:
        logger.error("`systemctl` command not found.")
        return 127, "", "systemctl not found"
    if result.returncode != 0:
        logger.error(f"Command failed: {cmd_str}: {result.stderr.strip()}")
    return result.returncode, result.stdout or "", result.stderr or ""


class ServiceManager:
    """Writes, enables and removes the systemd user unit."""

    def __init__(self, unit_dir: Optional[Path] = None):
        self.unit_dir = unit_dir or default_unit_dir()

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / SERVICE_NAME

    def install(
        self,
        executable: Optional[str] = None,
        config_path: Optional[Path] = None,
    ) -> bool:
        """
        Write the unit file and enable it.

        Returns:
            True if systemd accepted the unit, False otherwise
        """
        self.unit_dir.mkdir(parents=True, exist_ok=True)
        self.unit_path.write_text(
            render_unit(executable or executable_path(), config_path)
        )
        logger.info(f"Wrote service unit {self.unit_path}")

        returncode, _, _ = _systemctl(["daemon-reload"])
        if returncode != 0:
            return False
        returncode, _, _ = _systemctl(["enable", SERVICE_NAME])
        return returncode == 0

    def disable(self) -> bool:
        """Disable the unit, keeping its file."""
        returncode, _, _ = _systemctl(["disable", SERVICE_NAME])
        return returncode == 0

    def remove(self) -> bool:
        """Disable the unit and delete its file."""
        disabled = self.disable()
        if self.unit_path.exists():
            self.unit_path.unlink()
            logger.info(f"Removed service unit {self.unit_path}")
        _systemctl(["daemon-reload"])
        return disabled
