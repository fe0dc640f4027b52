"""
Bind-mount management for RAM Profile.

The RAM copy of the profile is bind-mounted over the persistent path. When
running as root the mount is created with ``mount(2)`` through ``ctypes``;
otherwise the privileged part is delegated to ``sudo -n mount``.
"""

import ctypes
import ctypes.util
import errno
import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import List, Optional, Tuple

from ramprofile.exceptions import (
    Busy,
    MountFailed,
    NotMounted,
    PermissionDenied,
)
from ramprofile.platform import is_root

logger = logging.getLogger("ramprofile.mount")

MS_BIND = 4096


class MountController:
    """Creates, removes and reports the bind mount over the profile path."""

    def __init__(self, use_sudo: bool = True, sudo_binary: str = "sudo"):
        """
        Initialize the controller.

        Args:
            use_sudo: Delegate to ``sudo -n`` when not running as root
            sudo_binary: Path to the sudo binary
        """
        self.use_sudo = use_sudo
        self.sudo_binary = sudo_binary
        self._libc: Optional[ctypes.CDLL] = None

    @staticmethod
    def is_mounted(path: Path) -> bool:
        """
        Return True when *path* is a mount point.

        Any mount at *path* counts, not only the bind mount created here.
        """
        return os.path.ismount(str(path))

    def mount(self, ram_path: Path, persistent_path: Path) -> None:
        """
        Bind *ram_path* over *persistent_path*.

        Raises:
            PermissionDenied: If the caller lacks the privilege to mount
            MountFailed: If the mount call fails for any other reason
        """
        logger.info(f"Bind-mounting {ram_path} over {persistent_path}")
        if is_root():
            rc = self._get_libc().mount(
                str(ram_path).encode(),
                str(persistent_path).encode(),
                None,
                MS_BIND,
                None,
            )
            if rc != 0:
                self._raise_for_errno(ctypes.get_errno(), "mount", persistent_path)
            return

        self._run_privileged(
            ["mount", "--bind", str(ram_path), str(persistent_path)],
            "mount",
            persistent_path,
        )

    def unmount(self, persistent_path: Path) -> None:
        """
        Remove the mount at *persistent_path*.

        Raises:
            NotMounted: If *persistent_path* is not a mount point
            Busy: If open files keep the mount point in use
            PermissionDenied: If the caller lacks the privilege to unmount
            MountFailed: If the unmount call fails for any other reason
        """
        if not self.is_mounted(persistent_path):
            raise NotMounted(
                f"{persistent_path} is not mounted", {"path": str(persistent_path)}
            )

        logger.info(f"Unmounting {persistent_path}")
        if is_root():
            rc = self._get_libc().umount2(str(persistent_path).encode(), 0)
            if rc != 0:
                self._raise_for_errno(ctypes.get_errno(), "umount", persistent_path)
            return

        self._run_privileged(
            ["umount", str(persistent_path)], "umount", persistent_path
        )

    def _get_libc(self) -> ctypes.CDLL:
        if self._libc is None:
            name = ctypes.util.find_library("c") or "libc.so.6"
            self._libc = ctypes.CDLL(name, use_errno=True)
        return self._libc

    @staticmethod
    def _raise_for_errno(err: int, operation: str, path: Path) -> None:
        message = f"{operation} {path} failed: {os.strerror(err)}"
        details = {"path": str(path), "errno": err}
        if err in (errno.EPERM, errno.EACCES):
            raise PermissionDenied(message, details)
        if err == errno.EBUSY:
            raise Busy(message, details)
        if err == errno.EINVAL and operation == "umount":
            raise NotMounted(message, details)
        raise MountFailed(message, details)

    def _run_privileged(self, args: List[str], operation: str, path: Path) -> None:
        if not self.use_sudo:
            raise PermissionDenied(
                f"{operation} {path} requires root and sudo is disabled",
                {"path": str(path)},
            )

        returncode, _, stderr = self._run_command([self.sudo_binary, "-n"] + args)
        if returncode == 0:
            return

        lowered = stderr.lower()
        message = f"{operation} {path} failed: {stderr.strip() or returncode}"
        details = {"path": str(path), "returncode": returncode}
        if "busy" in lowered:
            raise Busy(message, details)
        if "not mounted" in lowered:
            raise NotMounted(message, details)
        if (
            "password is required" in lowered
            or "permission denied" in lowered
            or "not permitted" in lowered
            or "must be superuser" in lowered
        ):
            raise PermissionDenied(message, details)
        raise MountFailed(message, details)

    @staticmethod
    def _run_command(cmd: List[str]) -> Tuple[int, str, str]:
        """
        Run a command and capture its output.

        Returns:
            Tuple of (return_code, stdout, stderr)
        """
        cmd_str = " ".join(shlex.quote(str(arg)) for arg in cmd)
        logger.debug(f"Running command: {cmd_str}")
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except FileNotFoundError:
            return 127, "", f"Command not found: {cmd[0]}"
        return result.returncode, result.stdout or "", result.stderr or ""
