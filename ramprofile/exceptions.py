"""
Exceptions for RAM Profile.

Every failure the core can report is a subclass of ``RamProfileError`` so the
CLI can turn any of them into a message and a non-zero exit code.
"""

from typing import Any, Dict, Optional


class RamProfileError(Exception):
    """Base exception for all RAM Profile errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class NotFound(RamProfileError):
    """Raised when an expected path or backup is absent."""


class SourceNotFound(NotFound):
    """Raised when the root of a walk or archive does not exist."""


class AlreadyInState(RamProfileError):
    """Raised when load is requested while loaded, or save while unloaded.

    This is not a failure: callers report it and end successfully.
    """


class PermissionDenied(RamProfileError):
    """Raised when a mount operation lacks the required privilege."""


class MountFailed(RamProfileError):
    """Raised when the bind mount could not be created or removed."""


class NotMounted(MountFailed):
    """Raised when unmounting a path that is not a mount point."""


class Busy(MountFailed):
    """Raised when a mount point has open handles preventing unmount."""


class ProfileIOError(RamProfileError):
    """Raised on filesystem read, write or copy failures."""


class DestinationUnwritable(ProfileIOError):
    """Raised when a transfer destination cannot be used at all."""


class WriteFailed(ProfileIOError):
    """Raised when an archive cannot be created or written."""


class ArchiveCorrupt(RamProfileError):
    """Raised when an archive cannot be opened or read."""


OpenFailed = ArchiveCorrupt


class UnsafeArchiveEntry(RamProfileError):
    """Raised when an archive entry name would escape its root directory."""


class InsufficientResources(RamProfileError):
    """Raised when the profile does not fit in the available RAM."""


class Cancelled(RamProfileError):
    """Raised when the user cancels an interactive selection."""


class InvalidSelection(RamProfileError):
    """Raised when an interactive selection is out of range or malformed."""


class LockHeld(RamProfileError):
    """Raised when another process holds the profile lock."""
