"""
Archive reader for RAM Profile.

Unpacks a ZIP container produced by ``ArchiveWriter`` into a directory tree,
streaming each member in bounded chunks. Member names are validated before
anything is written; a single hostile name rejects the whole archive.
"""

import errno
import logging
import os
import stat
import time
import zipfile
from pathlib import Path
from typing import List, Optional

from ramprofile.archive import (
    CHUNK_SIZE,
    ArchiveEntry,
    ArchiveResult,
    ProgressCallback,
    validate_member_name,
)
from ramprofile.exceptions import (
    ArchiveCorrupt,
    DestinationUnwritable,
    UnsafeArchiveEntry,
)

logger = logging.getLogger("ramprofile.archive.reader")

# errno values that mean the restore target as a whole is unusable
FATAL_ERRNOS = {errno.ENOSPC, errno.EDQUOT, errno.EROFS}


def _is_symlink(info: zipfile.ZipInfo) -> bool:
    return stat.S_ISLNK(info.external_attr >> 16)


def _mode(info: zipfile.ZipInfo) -> int:
    return stat.S_IMODE(info.external_attr >> 16)


def _mtime(info: zipfile.ZipInfo) -> float:
    return time.mktime(info.date_time + (0, 0, -1))


def _inside(root: str, path: str) -> bool:
    return path == root or path.startswith(root + os.sep)


class ArchiveReader:
    """Extracts a ZIP archive into a directory with progress reporting."""

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        self.chunk_size = chunk_size

    def list_entries(self, archive_path: Path) -> List[ArchiveEntry]:
        """
        Return the validated entries of *archive_path*.

        Raises:
            ArchiveCorrupt: If the archive cannot be opened
            UnsafeArchiveEntry: If any member name escapes the archive root
        """
        with self._open(archive_path) as zf:
            return [entry for _, entry in self._validated(zf)]

    def extract_archive(
        self,
        archive_path: Path,
        dest_root: Path,
        progress: Optional[ProgressCallback] = None,
    ) -> ArchiveResult:
        """
        Unpack *archive_path* into *dest_root*, overwriting existing files.

        Args:
            archive_path: ZIP archive to read
            dest_root: Directory to extract into, created if missing
            progress: Called with ``(bytes_done, bytes_total)`` after each chunk

        Returns:
            ArchiveResult; ``partial`` is set when some entries failed

        Raises:
            ArchiveCorrupt: If the archive cannot be opened
            UnsafeArchiveEntry: If any member name escapes *dest_root*;
                nothing is extracted in that case
            DestinationUnwritable: If *dest_root* cannot be created, or runs out
                of space or turns read-only during extraction
        """
        dest_root = Path(dest_root)
        result = ArchiveResult(archive_path=str(archive_path))

        with self._open(archive_path) as zf:
            members = self._validated(zf)
            result.bytes_total = sum(e.size for _, e in members if not e.is_dir)

            try:
                dest_root.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise DestinationUnwritable(
                    f"Cannot create restore target {dest_root}: {e}",
                    {"path": str(dest_root)},
                ) from e
            real_root = os.path.realpath(dest_root)

            logger.info(
                f"Extracting {len(members)} entries ({result.bytes_total} bytes) "
                f"from {archive_path} to {dest_root}"
            )
            directories = []
            for info, entry in members:
                target = dest_root / entry.rel_path
                try:
                    if entry.is_dir:
                        self._check_inside(real_root, target, entry)
                        target.mkdir(parents=True, exist_ok=True)
                        directories.append((info, target))
                        result.directories += 1
                    else:
                        self._check_inside(real_root, target.parent, entry)
                        if _is_symlink(info):
                            self._extract_symlink(zf, info, target)
                        else:
                            self._extract_file(zf, info, target, result, progress)
                        result.files += 1
                    result.entries += 1
                except OSError as e:
                    if e.errno in FATAL_ERRNOS:
                        raise DestinationUnwritable(
                            f"Restore target {dest_root} is not writable: {e}",
                            {"path": str(dest_root), "entry": entry.rel_path},
                        ) from e
                    result.failed.append(entry.rel_path)
                    result.errors.append(f"Failed to extract {entry.rel_path}: {e}")
                    logger.warning(f"Failed to extract {entry.rel_path}: {e}")
                except (zipfile.BadZipFile, UnsafeArchiveEntry) as e:
                    result.failed.append(entry.rel_path)
                    result.errors.append(f"Failed to extract {entry.rel_path}: {e}")
                    logger.warning(f"Failed to extract {entry.rel_path}: {e}")

            # Children are written first, so directory times are set last
            for info, target in reversed(directories):
                try:
                    os.utime(target, (_mtime(info), _mtime(info)))
                except (OSError, OverflowError, ValueError) as e:
                    logger.debug(f"Cannot set times on {target}: {e}")

        if progress:
            progress(result.bytes_total, result.bytes_total)
        if result.partial:
            logger.warning(
                f"Partial restore from {archive_path}: "
                f"{len(result.errors)} entries failed"
            )
        else:
            logger.info(f"Extracted {result.entries} entries to {dest_root}")
        return result

    @staticmethod
    def _open(archive_path: Path) -> zipfile.ZipFile:
        try:
            return zipfile.ZipFile(archive_path, "r")
        except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            raise ArchiveCorrupt(
                f"Cannot open archive {archive_path}: {e}",
                {"path": str(archive_path)},
            ) from e

    @staticmethod
    def _validated(zf: zipfile.ZipFile) -> List[tuple]:
        members = []
        for info in zf.infolist():
            rel = validate_member_name(info.filename)
            members.append(
                (
                    info,
                    ArchiveEntry(
                        rel_path=rel,
                        size=0 if info.is_dir() else info.file_size,
                        is_dir=info.is_dir(),
                    ),
                )
            )
        return members

    @staticmethod
    def _check_inside(real_root: str, path: Path, entry: ArchiveEntry) -> None:
        # realpath resolves every existing component, so a symlink restored
        # earlier anywhere along the path is caught
        resolved = os.path.realpath(path)
        if not _inside(real_root, resolved):
            raise UnsafeArchiveEntry(
                f"Entry {entry.rel_path} resolves outside the restore target",
                {"resolved": resolved},
            )

    def _extract_file(
        self,
        zf: zipfile.ZipFile,
        info: zipfile.ZipInfo,
        target: Path,
        result: ArchiveResult,
        progress: Optional[ProgressCallback],
    ) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink():
            target.unlink()
        try:
            with zf.open(info, "r") as fin, open(target, "wb") as fout:
                for chunk in iter(lambda: fin.read(self.chunk_size), b""):
                    fout.write(chunk)
                    result.bytes_processed += len(chunk)
                    if progress:
                        progress(
                            min(result.bytes_processed, result.bytes_total),
                            result.bytes_total,
                        )
        except (OSError, zipfile.BadZipFile):
            # Never leave a truncated file behind
            target.unlink(missing_ok=True)
            raise

        mode = _mode(info)
        if mode:
            os.chmod(target, mode)
        os.utime(target, (_mtime(info), _mtime(info)))

    @staticmethod
    def _extract_symlink(
        zf: zipfile.ZipFile, info: zipfile.ZipInfo, target: Path
    ) -> None:
        link_target = zf.read(info).decode("utf-8")
        target.parent.mkdir(parents=True, exist_ok=True)
        if os.path.lexists(target):
            if target.is_dir() and not target.is_symlink():
                raise IsADirectoryError(f"Directory in the way of symlink: {target}")
            target.unlink()
        os.symlink(link_target, target)
