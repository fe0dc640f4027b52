"""
Retention policy implementation for RAM Profile.

This module decides which backup archives are kept and deletes the rest,
either by a keep-last-N policy or by purging everything.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ramprofile.catalog import BackupCatalog, BackupEntry

logger = logging.getLogger("ramprofile.retention")


@dataclass
class RetentionPolicy:
    """Retention policy configuration."""

    keep_last: int = 1  # Keep the newest N archives

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RetentionPolicy":
        """
        Create a RetentionPolicy from a dictionary.

        Args:
            data: Dictionary with policy configuration

        Returns:
            RetentionPolicy instance
        """
        if not isinstance(data, dict):
            return cls()
        keep_last = int(data.get("keep_last", cls.keep_last))
        if keep_last < 0:
            raise ValueError(f"keep_last must not be negative: {keep_last}")
        return cls(keep_last=keep_last)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> "RetentionPolicy":
        """
        Create a RetentionPolicy from a YAML string.

        Args:
            yaml_str: YAML string with policy configuration

        Returns:
            RetentionPolicy instance
        """
        try:
            data = yaml.safe_load(yaml_str)
            return cls.from_dict(data)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            logger.error(f"Failed to parse retention policy: {e}")
            return cls()

    @classmethod
    def from_file(cls, file_path: str) -> "RetentionPolicy":
        """
        Create a RetentionPolicy from a YAML file.

        Returns the default policy when the file cannot be read.
        """
        try:
            with open(file_path, "r") as f:
                return cls.from_yaml(f.read())
        except IOError as e:
            logger.error(f"Failed to load policy from file {file_path}: {e}")
            return cls()


class RetentionEvaluator:
    """Evaluates a retention policy against a backup catalog."""

    def __init__(self, policy: RetentionPolicy):
        self.policy = policy

    def evaluate(
        self, catalog: BackupCatalog
    ) -> Tuple[List[BackupEntry], List[BackupEntry]]:
        """
        Split the catalog into entries to keep and entries to delete.

        Returns:
            Tuple of (entries_to_keep, entries_to_delete), newest first
        """
        ordered = catalog.newest_first()
        to_keep = ordered[: self.policy.keep_last]
        to_delete = ordered[self.policy.keep_last :]
        logger.info(
            f"Retention policy: keeping {len(to_keep)} backups, "
            f"deleting {len(to_delete)}"
        )
        return to_keep, to_delete


class RetentionManager:
    """Deletes backup archives according to a retention policy."""

    def __init__(self, backup_dir: Path, prefix: Optional[str] = None):
        """
        Args:
            backup_dir: Directory holding the archives
            prefix: Only archives named ``<prefix>-...`` are managed
        """
        self.backup_dir = Path(backup_dir)
        self.prefix = prefix

    def catalog(self) -> BackupCatalog:
        return BackupCatalog.enumerate(self.backup_dir, self.prefix)

    def apply(self, policy: RetentionPolicy) -> int:
        """Delete every archive the policy does not keep; return the count."""
        _, to_delete = RetentionEvaluator(policy).evaluate(self.catalog())
        return self._delete(to_delete)

    def keep_latest(self) -> int:
        """
        Delete every archive except the latest one.

        An empty or single-entry catalog is left alone and 0 is returned.
        """
        return self.apply(RetentionPolicy(keep_last=1))

    def purge_all(self) -> int:
        """
        Delete every archive and, when it is left empty, the directory.

        Callers must obtain the user's confirmation first.
        """
        deleted = self._delete(self.catalog().newest_first())
        try:
            self.backup_dir.rmdir()
            logger.info(f"Removed empty backup directory {self.backup_dir}")
        except OSError:
            # Missing, or still holds unrelated files
            pass
        return deleted

    def _delete(self, entries: List[BackupEntry]) -> int:
        deleted = 0
        for entry in entries:
            try:
                entry.path.unlink()
                deleted += 1
                logger.info(f"Deleted backup {entry.name}")
            except FileNotFoundError:
                logger.debug(f"Backup {entry.name} already gone")
            except OSError as e:
                logger.error(f"Failed to delete backup {entry.name}: {e}")
        return deleted
