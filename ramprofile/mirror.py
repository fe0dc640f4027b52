"""
One-way directory mirroring for RAM Profile.

``MirrorEngine.mirror`` makes a destination tree an exact copy of a source
tree: new and changed entries are copied, entries missing from the source are
deleted, and unchanged entries are left alone so that a repeated mirror with
no changes performs no copies at all.

Change detection compares modification time and size. With ``checksum=True``
the engine compares SHA-256 digests instead, which also catches same-size
rewrites that kept their mtime (e.g. after clock skew).

Progress is best effort: the byte total is measured once before the transfer
and is not recalculated if the source changes while it runs.
"""

import errno
import hashlib
import logging
import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ramprofile.exceptions import DestinationUnwritable
from ramprofile.walker import WalkEntry, WalkResult, walk

logger = logging.getLogger("ramprofile.mirror")

ProgressCallback = Callable[[int, int], None]

CHUNK_SIZE = 1024 * 1024

# errno values that mean the destination as a whole is unusable
FATAL_ERRNOS = {errno.ENOSPC, errno.EDQUOT, errno.EROFS}


@dataclass
class MirrorStats:
    """Statistics from a mirror operation."""

    source: str = ""
    destination: str = ""

    files_copied: int = 0
    files_deleted: int = 0
    files_unchanged: int = 0
    files_failed: int = 0
    dirs_created: int = 0

    bytes_total: int = 0
    bytes_copied: int = 0

    started_at: float = 0.0
    duration_ms: float = 0.0

    errors: List[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """True when at least one entry could not be mirrored."""
        return bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "files_copied": self.files_copied,
            "files_deleted": self.files_deleted,
            "files_unchanged": self.files_unchanged,
            "files_failed": self.files_failed,
            "dirs_created": self.dirs_created,
            "bytes_total": self.bytes_total,
            "bytes_copied": self.bytes_copied,
            "duration_ms": self.duration_ms,
            "errors": self.errors,
        }


def file_digest(path: Path) -> str:
    """Return the SHA-256 hex digest of a file, read in chunks."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class _Progress:
    """Clamps reported progress so it never decreases or passes the total."""

    def __init__(self, total: int, callback: Optional[ProgressCallback]):
        self.total = total
        self.done = 0
        self.callback = callback

    def advance(self, nbytes: int) -> None:
        self.done += nbytes
        if self.callback:
            self.callback(min(self.done, self.total), self.total)

    def finish(self) -> None:
        if self.callback:
            self.callback(self.total, self.total)


class MirrorEngine:
    """Synchronizes a destination tree to match a source tree."""

    def __init__(self, checksum: bool = False, chunk_size: int = CHUNK_SIZE):
        """
        Initialize the engine.

        Args:
            checksum: Compare file contents by SHA-256 instead of mtime and size
            chunk_size: Bytes copied per read/write and per progress update
        """
        self.checksum = checksum
        self.chunk_size = chunk_size

    def mirror(
        self,
        source: Path,
        destination: Path,
        progress: Optional[ProgressCallback] = None,
        delete: bool = True,
    ) -> MirrorStats:
        """
        Make *destination* an exact copy of *source*.

        Args:
            source: Tree to copy from
            destination: Tree to update, created if missing
            progress: Called with ``(bytes_done, bytes_total)`` after each chunk
            delete: Remove destination entries that are absent from *source*;
                entries whose type differs are always replaced

        Returns:
            MirrorStats; ``partial`` is set when individual entries failed

        Raises:
            SourceNotFound: If *source* does not exist
            DestinationUnwritable: If *destination* cannot be created, or it
                runs out of space or turns read-only during the transfer
        """
        source = Path(source)
        destination = Path(destination)
        stats = MirrorStats(
            source=str(source), destination=str(destination), started_at=time.time()
        )

        walk_result = WalkResult()
        source_entries = {e.rel_path: e for e in walk(source, walk_result)}

        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DestinationUnwritable(
                f"Cannot create destination {destination}: {e}",
                {"path": str(destination)},
            ) from e

        dest_entries = {e.rel_path: e for e in walk(destination, walk_result)}

        to_copy = [
            entry
            for rel, entry in source_entries.items()
            if self._needs_copy(entry, dest_entries.get(rel), source, destination)
        ]
        stats.files_unchanged = sum(
            1 for e in source_entries.values() if not e.is_dir
        ) - sum(1 for e in to_copy if not e.is_dir)
        stats.bytes_total = sum(e.size for e in to_copy if not e.is_dir)
        tracker = _Progress(stats.bytes_total, progress)

        logger.debug(
            f"Mirroring {source} -> {destination}: {len(to_copy)} to copy, "
            f"{stats.bytes_total} bytes"
        )

        # Deletions first so a type change (file -> dir) does not collide
        self._delete_extraneous(
            source_entries, dest_entries, destination, stats, delete
        )

        for entry in to_copy:
            target = destination / entry.rel_path
            try:
                if entry.is_dir:
                    if not target.is_dir():
                        target.mkdir(parents=True, exist_ok=True)
                        stats.dirs_created += 1
                elif entry.is_symlink:
                    self._copy_symlink(entry, target)
                    stats.files_copied += 1
                else:
                    self._copy_file(source / entry.rel_path, target, tracker)
                    stats.files_copied += 1
                    stats.bytes_copied += entry.size
            except OSError as e:
                if e.errno in FATAL_ERRNOS:
                    stats.errors.append(f"{entry.rel_path}: {e}")
                    self._finalize(stats)
                    raise DestinationUnwritable(
                        f"Destination {destination} became unwritable: {e}",
                        stats.to_dict(),
                    ) from e
                stats.files_failed += 1
                stats.errors.append(f"Failed to copy {entry.rel_path}: {e}")
                logger.warning(f"Failed to copy {entry.rel_path}: {e}")

        self._sync_directory_times(source_entries, destination)
        stats.errors.extend(walk_result.warnings)
        tracker.finish()
        return self._finalize(stats)

    def _needs_copy(
        self,
        entry: WalkEntry,
        existing: Optional[WalkEntry],
        source: Path,
        destination: Path,
    ) -> bool:
        if existing is None:
            return True
        if entry.is_dir or existing.is_dir:
            return entry.is_dir != existing.is_dir
        if entry.is_symlink or existing.is_symlink:
            return entry.link_target != existing.link_target
        if entry.size != existing.size:
            return True
        if self.checksum:
            try:
                return file_digest(source / entry.rel_path) != file_digest(
                    destination / entry.rel_path
                )
            except OSError:
                return True
        return entry.mtime_ns != existing.mtime_ns

    def _delete_extraneous(
        self,
        source_entries: Dict[str, WalkEntry],
        dest_entries: Dict[str, WalkEntry],
        destination: Path,
        stats: MirrorStats,
        delete: bool,
    ) -> None:
        # Reverse order visits children before their parent directory
        for rel in sorted(dest_entries, reverse=True):
            existing = dest_entries[rel]
            wanted = source_entries.get(rel)
            if wanted is None and not delete:
                continue
            if wanted is not None and (
                wanted.is_dir == existing.is_dir
                and wanted.is_symlink == existing.is_symlink
            ):
                continue
            target = destination / rel
            try:
                if existing.is_dir:
                    shutil.rmtree(target)
                elif os.path.lexists(target):
                    target.unlink()
                stats.files_deleted += 1
            except FileNotFoundError:
                # Parent already removed
                continue
            except OSError as e:
                stats.files_failed += 1
                stats.errors.append(f"Failed to delete {rel}: {e}")
                logger.warning(f"Failed to delete {rel}: {e}")

    def _copy_file(self, src: Path, dst: Path, tracker: _Progress) -> None:
        dst.parent.mkdir(parents=True, exist_ok=True)
        if os.path.lexists(dst) and (dst.is_symlink() or dst.is_dir()):
            if dst.is_dir() and not dst.is_symlink():
                shutil.rmtree(dst)
            else:
                dst.unlink()
        with open(src, "rb") as fin, open(dst, "wb") as fout:
            for chunk in iter(lambda: fin.read(self.chunk_size), b""):
                fout.write(chunk)
                tracker.advance(len(chunk))
        shutil.copystat(src, dst, follow_symlinks=False)

    @staticmethod
    def _copy_symlink(entry: WalkEntry, dst: Path) -> None:
        dst.parent.mkdir(parents=True, exist_ok=True)
        if os.path.lexists(dst):
            dst.unlink()
        os.symlink(entry.link_target or "", dst)

    @staticmethod
    def _sync_directory_times(
        source_entries: Dict[str, WalkEntry], destination: Path
    ) -> None:
        # Copying into a directory bumps its mtime; restore the source value
        for rel in sorted(source_entries, reverse=True):
            entry = source_entries[rel]
            if not entry.is_dir:
                continue
            try:
                os.utime(destination / rel, ns=(entry.mtime_ns, entry.mtime_ns))
            except OSError as e:
                logger.debug(f"Cannot set times on {rel}: {e}")

    @staticmethod
    def _finalize(stats: MirrorStats) -> MirrorStats:
        stats.duration_ms = (time.time() - stats.started_at) * 1000
        logger.info(
            f"Mirror {stats.source} -> {stats.destination}: "
            f"{stats.files_copied} copied, "
            f"{stats.files_deleted} deleted, "
            f"{stats.files_unchanged} unchanged, "
            f"{stats.files_failed} failed "
            f"in {stats.duration_ms:.1f}ms"
        )
        return stats
