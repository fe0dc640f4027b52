"""
Advisory locking for RAM Profile.

Load, save, backup and restore must not overlap for the same profile.
``ProfileLock`` holds an exclusive ``flock`` on a lock file for the duration
of an operation; a second process fails fast with ``LockHeld``.
"""

import fcntl
import logging
import os
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import IO, Optional, Type

from ramprofile.exceptions import LockHeld, ProfileIOError

logger = logging.getLogger("ramprofile.lock")


class ProfileLock:
    """Exclusive, non-blocking advisory lock on a file."""

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self._fd: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            LockHeld: If another process holds it
            ProfileIOError: If the lock file cannot be opened
        """
        if self._fd is not None:
            return
        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            fd = open(self.lock_path, "a+")
        except OSError as e:
            raise ProfileIOError(
                f"Cannot open lock file {self.lock_path}: {e}",
                {"path": str(self.lock_path)},
            ) from e

        try:
            fcntl.flock(fd.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            fd.seek(0)
            holder = fd.read().strip().splitlines()
            fd.close()
            raise LockHeld(
                f"Another ramprofile operation is running (lock {self.lock_path})",
                {"holder": holder[0] if holder else "unknown"},
            ) from None

        fd.seek(0)
        fd.truncate()
        fd.write(f"{os.getpid()}\n{datetime.now().isoformat(timespec='seconds')}\n")
        fd.flush()
        self._fd = fd
        logger.debug(f"Acquired lock {self.lock_path}")

    def release(self) -> None:
        """Release the lock if held."""
        if self._fd is None:
            return
        try:
            self._fd.seek(0)
            self._fd.truncate()
            fcntl.flock(self._fd.fileno(), fcntl.LOCK_UN)
        finally:
            self._fd.close()
            self._fd = None
        logger.debug(f"Released lock {self.lock_path}")

    def __enter__(self) -> "ProfileLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
