"""
Archive package for RAM Profile.

Shared types and helpers for the ZIP backup container: entry records, the
result of a write or read, timestamped archive naming and entry name
validation.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Callable, List, Optional

from ramprofile.exceptions import UnsafeArchiveEntry

ARCHIVE_EXTENSION = ".zip"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
CHUNK_SIZE = 1024 * 1024

ProgressCallback = Callable[[int, int], None]

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


@dataclass(frozen=True)
class ArchiveEntry:
    """A member of a backup archive, relative to the profile root."""

    rel_path: str
    size: int
    is_dir: bool

    @property
    def member_name(self) -> str:
        """Name used inside the container; directories end with a slash."""
        return self.rel_path + "/" if self.is_dir else self.rel_path


@dataclass
class ArchiveResult:
    """Outcome of writing or extracting an archive."""

    archive_path: str
    entries: int = 0
    files: int = 0
    directories: int = 0
    bytes_total: int = 0
    bytes_processed: int = 0
    errors: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)  # relative paths

    @property
    def partial(self) -> bool:
        """True when some entries were skipped or failed."""
        return bool(self.errors)


def archive_name(prefix: str, when: Optional[datetime] = None) -> str:
    """Return ``<prefix>-<YYYY-MM-DD_HH-MM-SS>.zip`` for *when* (default now)."""
    stamp = (when or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return f"{prefix}-{stamp}{ARCHIVE_EXTENSION}"


def parse_archive_timestamp(filename: str, prefix: str) -> Optional[datetime]:
    """Return the timestamp embedded in an archive filename, if any."""
    head = f"{prefix}-"
    if not filename.startswith(head) or not filename.endswith(ARCHIVE_EXTENSION):
        return None
    stamp = filename[len(head) : -len(ARCHIVE_EXTENSION)]
    try:
        return datetime.strptime(stamp, TIMESTAMP_FORMAT)
    except ValueError:
        return None


def validate_member_name(name: str) -> str:
    """
    Check an archive member name and return it as a relative POSIX path.

    The trailing slash of a directory member is stripped from the result.

    Raises:
        UnsafeArchiveEntry: If the name is empty, absolute, has a drive
            letter, uses backslashes or contains a ``..`` segment
    """
    if not name or "\x00" in name:
        raise UnsafeArchiveEntry(f"Invalid archive entry name: {name!r}")
    if "\\" in name:
        raise UnsafeArchiveEntry(f"Backslash in archive entry name: {name!r}")
    if name.startswith("/") or _DRIVE_RE.match(name):
        raise UnsafeArchiveEntry(f"Absolute archive entry name: {name!r}")

    parts = [p for p in name.rstrip("/").split("/") if p not in ("", ".")]
    if not parts:
        raise UnsafeArchiveEntry(f"Archive entry names the root: {name!r}")
    if ".." in parts:
        raise UnsafeArchiveEntry(f"Parent traversal in archive entry: {name!r}")
    return str(PurePosixPath(*parts))
