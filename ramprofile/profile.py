"""
Profile lifecycle for RAM Profile.

``ProfileManager`` moves the profile between its two resident states:

* Unloaded: the profile lives only at its persistent path.
* Loaded: a copy lives at the RAM path and is bind-mounted over the
  persistent path, so applications transparently use the RAM copy.

It also creates, restores and prunes the archive backups of a loaded
profile. Every mutating operation holds the profile lock.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ramprofile.archive import ArchiveResult, archive_name
from ramprofile.archive.reader import ArchiveReader
from ramprofile.archive.writer import ArchiveWriter
from ramprofile.catalog import BackupCatalog, BackupEntry
from ramprofile.config import Settings
from ramprofile.exceptions import (
    AlreadyInState,
    InsufficientResources,
    NotFound,
    NotMounted,
    ProfileIOError,
    WriteFailed,
)
from ramprofile.lock import ProfileLock
from ramprofile.mirror import MirrorEngine, MirrorStats, ProgressCallback
from ramprofile.mount import MountController
from ramprofile.platform import (
    available_ram_bytes,
    is_process_running,
    total_ram_bytes,
)
from ramprofile.retention import RetentionManager, RetentionPolicy
from ramprofile.walker import tree_size

logger = logging.getLogger("ramprofile.profile")


@dataclass
class RamCheck:
    """Profile size compared with the RAM available for it."""

    profile_bytes: int
    available_bytes: Optional[int]
    required_bytes: int

    @property
    def fits(self) -> bool:
        if self.available_bytes is None:
            return False
        return self.available_bytes >= self.required_bytes


@dataclass
class ProfileStatus:
    """Snapshot of the profile's state for ``status``."""

    mounted: bool
    process_running: bool
    persistent_path: str
    ram_path: str
    backup_dir: str
    backup_dir_exists: bool
    backup_count: int
    latest_backup: Optional[str]
    latest_size: Optional[int]
    latest_age_days: Optional[int]
    stale: bool
    total_ram_bytes: Optional[int]
    min_ram_ok: bool

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


class ProfileManager:
    """Runs the load, save, backup and restore operations for one profile."""

    def __init__(
        self,
        settings: Settings,
        mounts: Optional[MountController] = None,
        mirror: Optional[MirrorEngine] = None,
        writer: Optional[ArchiveWriter] = None,
        reader: Optional[ArchiveReader] = None,
    ):
        self.settings = settings
        self.location = settings.location
        self.mounts = mounts or MountController(use_sudo=settings.use_sudo)
        self.mirror = mirror or MirrorEngine()
        self.writer = writer or ArchiveWriter(
            compression_level=settings.compression_level
        )
        self.reader = reader or ArchiveReader()

    def _lock(self) -> ProfileLock:
        return ProfileLock(self.settings.lock_path)

    def is_loaded(self) -> bool:
        """True when the persistent path is currently a mount point."""
        return self.mounts.is_mounted(self.location.persistent_path)

    def is_process_running(self) -> bool:
        return is_process_running(self.settings.process_name)

    def catalog(self) -> BackupCatalog:
        return BackupCatalog.enumerate(
            self.location.backup_dir, self.location.archive_prefix
        )

    def check_ram(self) -> RamCheck:
        """Compare the profile size against available RAM."""
        profile_bytes = tree_size(self.location.persistent_path)
        return RamCheck(
            profile_bytes=profile_bytes,
            available_bytes=available_ram_bytes(),
            required_bytes=profile_bytes * self.settings.ram_factor,
        )

    def load(
        self, progress: Optional[ProgressCallback] = None, force: bool = False
    ) -> MirrorStats:
        """
        Copy the profile into RAM and bind-mount the copy over it.

        Args:
            progress: Byte progress callback for the copy
            force: Skip the available-RAM check

        Raises:
            NotFound: If the persistent profile does not exist
            AlreadyInState: If the profile is already loaded
            InsufficientResources: If the profile does not fit in RAM
            ProfileIOError: If the copy was incomplete; nothing is mounted
            MountFailed: If the bind mount fails; the RAM copy is removed
        """
        persistent = self.location.persistent_path
        ram = self.location.ram_path

        with self._lock():
            if not persistent.is_dir():
                raise NotFound(
                    f"Profile not found at {persistent}", {"path": str(persistent)}
                )
            if self.is_loaded():
                raise AlreadyInState(f"Profile {persistent} is already loaded in RAM")

            if not force:
                check = self.check_ram()
                if not check.fits:
                    raise InsufficientResources(
                        "Profile does not fit in available RAM",
                        {
                            "profile_bytes": check.profile_bytes,
                            "available_bytes": check.available_bytes,
                            "required_bytes": check.required_bytes,
                        },
                    )

            logger.info(f"Copying profile {persistent} to RAM at {ram}")
            stats = self.mirror.mirror(persistent, ram, progress)
            if stats.partial:
                self._discard_ram_copy()
                raise ProfileIOError(
                    f"Copy to RAM was incomplete, profile not loaded "
                    f"({len(stats.errors)} errors)",
                    {"errors": stats.errors},
                )

            try:
                self.mounts.mount(ram, persistent)
            except Exception:
                self._discard_ram_copy()
                raise

            logger.info(f"Profile {persistent} is now running from RAM")
            return stats

    def save(self, progress: Optional[ProgressCallback] = None) -> MirrorStats:
        """
        Unmount the RAM copy, write it back to disk and remove it.

        Raises:
            AlreadyInState: If the profile is not loaded
            Busy: If open files prevent the unmount
            ProfileIOError: If the write-back was incomplete; the RAM copy is
                kept so nothing is lost
        """
        persistent = self.location.persistent_path
        ram = self.location.ram_path

        with self._lock():
            if not self.is_loaded():
                raise AlreadyInState(f"Profile {persistent} is not loaded in RAM")

            self.mounts.unmount(persistent)
            logger.info(f"Writing RAM profile {ram} back to {persistent}")
            stats = self.mirror.mirror(ram, persistent, progress)
            if stats.partial:
                raise ProfileIOError(
                    f"Write-back was incomplete; RAM copy kept at {ram} "
                    f"({len(stats.errors)} errors)",
                    {"errors": stats.errors},
                )

            self._discard_ram_copy()
            logger.info(f"Profile saved to {persistent}")
            return stats

    def backup(
        self,
        progress: Optional[ProgressCallback] = None,
        when: Optional[datetime] = None,
    ) -> Tuple[BackupEntry, ArchiveResult]:
        """
        Archive the loaded profile into the backup directory.

        Raises:
            NotMounted: If the profile is not loaded
            WriteFailed: If the archive cannot be written, or an archive with
                the same timestamp already exists
        """
        persistent = self.location.persistent_path
        with self._lock():
            self._require_loaded("backup")

            dest = self.location.backup_dir / archive_name(
                self.location.archive_prefix, when
            )
            if dest.exists():
                raise WriteFailed(
                    f"Backup {dest.name} already exists", {"path": str(dest)}
                )

            logger.info(f"Backing up {persistent} to {dest}")
            result = self.writer.create_archive(persistent, dest, progress)
            st = dest.stat()
            entry = BackupEntry(path=dest, mtime=st.st_mtime, size=st.st_size)
            return entry, result

    def restore(
        self,
        entry: Optional[BackupEntry] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> Tuple[BackupEntry, ArchiveResult]:
        """
        Replace the live profile with the contents of a backup.

        The archive is unpacked into a staging directory first and then
        mirrored over the profile, so files absent from the backup are
        removed. After a partial extraction nothing is removed.

        Args:
            entry: Backup to restore; the latest when omitted
            progress: Byte progress callback for the extraction

        Raises:
            NotMounted: If the profile is not loaded
            NotFound: If there are no backups
            ArchiveCorrupt: If the archive cannot be read
            UnsafeArchiveEntry: If the archive contains escaping paths
        """
        persistent = self.location.persistent_path
        with self._lock():
            self._require_loaded("restore")

            if entry is None:
                entry = self.catalog().latest()
                if entry is None:
                    raise NotFound(
                        f"No backups found in {self.location.backup_dir}",
                        {"path": str(self.location.backup_dir)},
                    )
            elif not entry.path.is_file():
                raise NotFound(f"Backup {entry.path} does not exist")

            # Validate before touching anything
            self.reader.list_entries(entry.path)

            staging_parent = self.location.ram_path.parent
            staging_parent.mkdir(parents=True, exist_ok=True)
            staging = Path(
                tempfile.mkdtemp(prefix=".ramprofile-restore-", dir=staging_parent)
            )
            try:
                logger.info(f"Restoring {entry.name} into {persistent}")
                result = self.reader.extract_archive(entry.path, staging, progress)
                for rel_path in result.failed:
                    # Live copies of entries that failed to extract stay as they are
                    leftover = staging / rel_path
                    if leftover.is_symlink() or leftover.is_file():
                        leftover.unlink()
                stats = self.mirror.mirror(
                    staging, persistent, delete=not result.partial
                )
                result.errors.extend(stats.errors)
            finally:
                shutil.rmtree(staging, ignore_errors=True)

            return entry, result

    def clean_backups(self, keep_last: Optional[int] = None) -> int:
        """Delete all but the newest *keep_last* backups (default: config)."""
        count = keep_last
        if count is None:
            count = self.settings.retention.keep_last
        with self._lock():
            manager = self._retention()
            if count == 1:
                return manager.keep_latest()
            return manager.apply(RetentionPolicy(keep_last=count))

    def purge_backups(self) -> int:
        """Delete every backup. The caller must confirm first."""
        with self._lock():
            return self._retention().purge_all()

    def status(self, now: Optional[float] = None) -> ProfileStatus:
        catalog = self.catalog()
        latest = catalog.latest()
        age = latest.age_days(now) if latest else None
        total = total_ram_bytes()
        return ProfileStatus(
            mounted=self.is_loaded(),
            process_running=self.is_process_running(),
            persistent_path=str(self.location.persistent_path),
            ram_path=str(self.location.ram_path),
            backup_dir=str(self.location.backup_dir),
            backup_dir_exists=self.location.backup_dir.is_dir(),
            backup_count=len(catalog),
            latest_backup=latest.name if latest else None,
            latest_size=latest.size if latest else None,
            latest_age_days=age,
            stale=age is not None and age > self.settings.stale_backup_days,
            total_ram_bytes=total,
            min_ram_ok=total is not None
            and total >= self.settings.min_ram_gb * 1024**3,
        )

    def _retention(self) -> RetentionManager:
        return RetentionManager(self.location.backup_dir, self.location.archive_prefix)

    def _require_loaded(self, operation: str) -> None:
        if not self.is_loaded():
            raise NotMounted(
                f"Cannot {operation}: profile is not loaded in RAM",
                {"path": str(self.location.persistent_path)},
            )

    def _discard_ram_copy(self) -> None:
        ram = self.location.ram_path
        if ram.exists():
            shutil.rmtree(ram)
            logger.info(f"Removed RAM copy {ram}")
