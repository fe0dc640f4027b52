"""
Platform helpers for RAM Profile.

Centralizes the Linux specifics (memory and process probes, default staging
paths) so the rest of the codebase can call simple functions instead of
scattering ``sys.platform`` checks and ``psutil`` calls.
"""

import logging
import os
from pathlib import Path
from typing import Optional

import psutil

logger = logging.getLogger("ramprofile.platform")


def is_root() -> bool:
    """Return True when running with an effective uid of 0."""
    return os.geteuid() == 0


def default_ram_root() -> Path:
    """Return the volatile filesystem used for RAM staging."""
    shm = Path("/dev/shm")
    if shm.is_dir():
        return shm
    runtime = os.environ.get("XDG_RUNTIME_DIR")
    if runtime:
        return Path(runtime)
    return Path("/tmp")


def default_lock_path() -> Path:
    """Return the default advisory lock file location."""
    runtime = os.environ.get("XDG_RUNTIME_DIR")
    if runtime:
        return Path(runtime) / "ramprofile.lock"
    return Path("/tmp") / f"ramprofile-{os.getuid()}.lock"


def available_ram_bytes() -> Optional[int]:
    """Return the memory available to new processes, or None if unknown."""
    try:
        return int(psutil.virtual_memory().available)
    except (OSError, RuntimeError) as e:
        logger.debug(f"Could not read available memory: {e}")
        return None


def total_ram_bytes() -> Optional[int]:
    """Return the installed physical memory, or None if unknown."""
    try:
        return int(psutil.virtual_memory().total)
    except (OSError, RuntimeError) as e:
        logger.debug(f"Could not read total memory: {e}")
        return None


def is_process_running(name: str) -> bool:
    """
    Return True when a process whose name is exactly *name* exists.

    Matches like ``pgrep -x``. Linux truncates process names to 15
    characters, so *name* is compared the same way.
    """
    wanted = name[:15]
    for proc in psutil.process_iter(["name"]):
        proc_name = proc.info.get("name") or ""
        if proc_name == name or proc_name[:15] == wanted:
            return True
    return False


def format_bytes(size: int) -> str:
    """Format a byte count with a binary unit suffix."""
    value = float(size)
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(value) < 1024 or unit == "GiB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GiB"
