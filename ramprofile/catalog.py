"""
Backup catalog for RAM Profile.

Enumerates the timestamped archives in the backup directory and resolves
the latest one or a user's indexed choice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from ramprofile.archive import ARCHIVE_EXTENSION, parse_archive_timestamp
from ramprofile.exceptions import Cancelled, InvalidSelection

logger = logging.getLogger("ramprofile.catalog")

CANCEL_TOKENS = ("c", "cancel", "q", "quit")


@dataclass(frozen=True)
class BackupEntry:
    """Represents one backup archive."""

    path: Path
    mtime: float
    size: int

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def modified(self) -> datetime:
        return datetime.fromtimestamp(self.mtime)

    def age_days(self, now: Optional[float] = None) -> int:
        """Whole days since the archive was last modified."""
        reference = now if now is not None else datetime.now().timestamp()
        return int((reference - self.mtime) // 86400)


class BackupCatalog:
    """The set of backup archives in one directory, keyed by filename."""

    def __init__(self, backup_dir: Path, entries: Dict[str, BackupEntry]):
        self.backup_dir = backup_dir
        self.entries = entries

    @classmethod
    def enumerate(
        cls, backup_dir: Path, prefix: Optional[str] = None
    ) -> "BackupCatalog":
        """
        Scan *backup_dir* for archives.

        Files without the archive extension, temporary ``.part`` files and,
        when *prefix* is given, files whose names do not start with it are
        ignored. A missing directory gives an empty catalog.
        """
        backup_dir = Path(backup_dir)
        entries: Dict[str, BackupEntry] = {}
        if not backup_dir.is_dir():
            logger.debug(f"Backup directory {backup_dir} does not exist")
            return cls(backup_dir, entries)

        for path in backup_dir.iterdir():
            name = path.name
            if name.startswith(".") or not name.endswith(ARCHIVE_EXTENSION):
                continue
            if prefix is not None and not name.startswith(f"{prefix}-"):
                continue
            try:
                st = path.stat()
            except OSError as e:
                logger.warning(f"Cannot stat backup {path}: {e}")
                continue
            if not path.is_file():
                continue
            entries[name] = BackupEntry(path=path, mtime=st.st_mtime, size=st.st_size)

        logger.debug(f"Found {len(entries)} backups in {backup_dir}")
        return cls(backup_dir, entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.newest_first())

    @property
    def total_size(self) -> int:
        return sum(e.size for e in self.entries.values())

    def newest_first(self) -> List[BackupEntry]:
        """Entries ordered newest first; ties put the greater filename first."""
        return sorted(
            self.entries.values(), key=lambda e: (e.mtime, e.name), reverse=True
        )

    def latest(self) -> Optional[BackupEntry]:
        """Return the most recently modified entry, or None when empty."""
        if not self.entries:
            return None
        return max(self.entries.values(), key=lambda e: (e.mtime, e.name))

    def timestamp_of(self, entry: BackupEntry, prefix: str) -> datetime:
        """The timestamp embedded in the filename, else the file mtime."""
        return parse_archive_timestamp(entry.name, prefix) or entry.modified

    def select_interactive(self, choice: str) -> BackupEntry:
        """
        Resolve an interactive choice against the newest-first listing.

        Args:
            choice: A 1-based index, or one of the cancel tokens

        Raises:
            Cancelled: If *choice* is a cancel token or the cancel index
                (one past the last entry)
            InvalidSelection: If *choice* is not a valid index
        """
        token = choice.strip().lower()
        ordered = self.newest_first()
        if token in CANCEL_TOKENS:
            raise Cancelled("Selection cancelled")
        try:
            index = int(token)
        except ValueError:
            raise InvalidSelection(f"Not a number: {choice!r}") from None
        if index == len(ordered) + 1:
            raise Cancelled("Selection cancelled")
        if index < 1 or index > len(ordered):
            raise InvalidSelection(
                f"Choice {index} is out of range 1-{len(ordered)}",
                {"choice": index, "count": len(ordered)},
            )
        return ordered[index - 1]
