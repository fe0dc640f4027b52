"""
Archive writer for RAM Profile.

Streams a directory tree into a compressed ZIP container. Files are copied
in bounded chunks, directories become explicit members so empty ones
survive a restore, and the container is written under a temporary name and
renamed into place only when complete.
"""

import logging
import os
import stat
import tempfile
import time
import zipfile
from pathlib import Path
from typing import Optional

from ramprofile.archive import (
    CHUNK_SIZE,
    ArchiveResult,
    ProgressCallback,
    validate_member_name,
)
from ramprofile.exceptions import SourceNotFound, UnsafeArchiveEntry, WriteFailed
from ramprofile.walker import WalkEntry, WalkResult, walk

logger = logging.getLogger("ramprofile.archive.writer")

# ZIP timestamps cannot represent dates before 1980
ZIP_EPOCH = time.mktime((1980, 1, 1, 0, 0, 0, 0, 0, -1))


def _zip_info(entry: WalkEntry, name: str) -> zipfile.ZipInfo:
    mtime = max(entry.mtime_ns / 1e9, ZIP_EPOCH)
    info = zipfile.ZipInfo(name, date_time=time.localtime(mtime)[:6])
    if entry.is_dir:
        info.external_attr = ((stat.S_IFDIR | (entry.mode or 0o755)) << 16) | 0x10
        info.compress_type = zipfile.ZIP_STORED
    elif entry.is_symlink:
        info.external_attr = (stat.S_IFLNK | 0o777) << 16
        info.compress_type = zipfile.ZIP_STORED
    else:
        info.external_attr = (stat.S_IFREG | (entry.mode or 0o644)) << 16
        info.compress_type = zipfile.ZIP_DEFLATED
    return info


class ArchiveWriter:
    """Writes a directory tree into a ZIP archive with progress reporting."""

    def __init__(self, compression_level: int = 9, chunk_size: int = CHUNK_SIZE):
        """
        Initialize the writer.

        Args:
            compression_level: Deflate level, 0-9
            chunk_size: Bytes read per chunk and per progress update
        """
        self.compression_level = compression_level
        self.chunk_size = chunk_size

    def create_archive(
        self,
        source_root: Path,
        dest_archive: Path,
        progress: Optional[ProgressCallback] = None,
    ) -> ArchiveResult:
        """
        Archive every file and directory below *source_root*.

        Args:
            source_root: Tree to archive
            dest_archive: Final path of the archive
            progress: Called with ``(bytes_done, bytes_total)`` after each chunk

        Returns:
            ArchiveResult; ``partial`` is set when entries were skipped

        Raises:
            SourceNotFound: If *source_root* does not exist
            WriteFailed: If the archive cannot be created or written. No file
                is left under *dest_archive* in that case.
        """
        source_root = Path(source_root)
        dest_archive = Path(dest_archive)
        if not source_root.is_dir():
            raise SourceNotFound(
                f"Source directory not found: {source_root}",
                {"path": str(source_root)},
            )

        walk_result = WalkResult()
        entries = list(walk(source_root, walk_result))
        result = ArchiveResult(archive_path=str(dest_archive))
        result.bytes_total = sum(e.size for e in entries if not e.is_dir)
        result.errors.extend(walk_result.warnings)

        try:
            dest_archive.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{dest_archive.name}.", suffix=".part", dir=dest_archive.parent
            )
            os.close(fd)
        except OSError as e:
            raise WriteFailed(
                f"Cannot create archive in {dest_archive.parent}: {e}",
                {"path": str(dest_archive)},
            ) from e

        tmp_path = Path(tmp_name)
        logger.info(
            f"Archiving {len(entries)} entries ({result.bytes_total} bytes) "
            f"from {source_root} to {dest_archive}"
        )
        try:
            with zipfile.ZipFile(
                tmp_path,
                "w",
                compression=zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
            ) as zf:
                for entry in entries:
                    self._add_entry(zf, source_root, entry, result, progress)
            os.replace(tmp_path, dest_archive)
        except (OSError, zipfile.BadZipFile) as e:
            tmp_path.unlink(missing_ok=True)
            raise WriteFailed(
                f"Failed to write archive {dest_archive}: {e}",
                {"path": str(dest_archive)},
            ) from e
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

        if progress:
            progress(result.bytes_total, result.bytes_total)
        if result.partial:
            logger.warning(
                f"Archive {dest_archive} is missing {len(result.errors)} entries"
            )
        logger.info(
            f"Archived {result.files} files and {result.directories} directories "
            f"to {dest_archive}"
        )
        return result

    def _add_entry(
        self,
        zf: zipfile.ZipFile,
        source_root: Path,
        entry: WalkEntry,
        result: ArchiveResult,
        progress: Optional[ProgressCallback],
    ) -> None:
        try:
            name = validate_member_name(entry.rel_path)
        except UnsafeArchiveEntry as e:
            result.errors.append(str(e))
            return

        if entry.is_dir:
            zf.writestr(_zip_info(entry, name + "/"), b"")
            result.directories += 1
            result.entries += 1
            return

        if entry.is_symlink:
            zf.writestr(_zip_info(entry, name), (entry.link_target or "").encode())
            result.files += 1
            result.entries += 1
            return

        path = source_root / entry.rel_path
        try:
            fin = open(path, "rb")
        except OSError as e:
            result.errors.append(f"Cannot read {entry.rel_path}: {e}")
            logger.warning(f"Skipping unreadable file {path}: {e}")
            return

        info = _zip_info(entry, name)
        info.file_size = entry.size
        # ZipFile.open ignores the archive-wide level for an explicit ZipInfo
        if hasattr(info, "compress_level"):
            info.compress_level = self.compression_level
        else:
            info._compresslevel = self.compression_level
        with fin, zf.open(info, "w") as fout:
            for chunk in iter(lambda: fin.read(self.chunk_size), b""):
                fout.write(chunk)
                result.bytes_processed += len(chunk)
                if progress:
                    progress(
                        min(result.bytes_processed, result.bytes_total),
                        result.bytes_total,
                    )
        result.files += 1
        result.entries += 1
