"""
Directory traversal for RAM Profile.

``walk`` lazily enumerates a tree as ``WalkEntry`` values relative to its
root. Both the mirror engine and the archive engine use it, for sizing up
front and for the transfer itself.
"""

import logging
import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional

from ramprofile.exceptions import SourceNotFound

logger = logging.getLogger("ramprofile.walker")


@dataclass(frozen=True)
class WalkEntry:
    """One file or directory below a walked root."""

    rel_path: str  # forward-slash separated, never absolute, never ".."
    size: int
    is_dir: bool
    mtime_ns: int = 0
    mode: int = 0
    is_symlink: bool = False
    link_target: Optional[str] = None


@dataclass
class WalkResult:
    """Collects entries that could not be examined during a walk."""

    warnings: List[str] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.warnings)


def _entry_from_stat(rel: str, st: os.stat_result, path: str) -> WalkEntry:
    if stat.S_ISLNK(st.st_mode):
        return WalkEntry(
            rel_path=rel,
            size=0,
            is_dir=False,
            mtime_ns=st.st_mtime_ns,
            mode=stat.S_IMODE(st.st_mode),
            is_symlink=True,
            link_target=os.readlink(path),
        )
    is_dir = stat.S_ISDIR(st.st_mode)
    return WalkEntry(
        rel_path=rel,
        size=0 if is_dir else st.st_size,
        is_dir=is_dir,
        mtime_ns=st.st_mtime_ns,
        mode=stat.S_IMODE(st.st_mode),
    )


def walk(root: Path, result: Optional[WalkResult] = None) -> Iterator[WalkEntry]:
    """
    Yield every file and directory below *root*, depth first.

    Names are visited in lexicographic order at each level so two walks of an
    unchanged tree produce the same sequence. Empty directories are yielded.
    Symlinks are reported as links and never followed.

    Args:
        root: Directory to walk
        result: Optional collector for entries that could not be examined

    Raises:
        SourceNotFound: If *root* is not an existing directory
    """
    root = Path(root)
    if not root.is_dir():
        raise SourceNotFound(f"Directory not found: {root}", {"path": str(root)})
    collector = result if result is not None else WalkResult()
    yield from _walk_dir(str(root), "", collector)
    if collector.warnings and result is None:
        logger.warning(f"Skipped {collector.skipped} unreadable entries under {root}")


def _walk_dir(base: str, rel_dir: str, collector: WalkResult) -> Iterator[WalkEntry]:
    current = os.path.join(base, rel_dir) if rel_dir else base
    try:
        names = sorted(os.listdir(current))
    except OSError as e:
        collector.warnings.append(f"Cannot list {rel_dir or '.'}: {e}")
        logger.warning(f"Cannot list {current}: {e}")
        return

    for name in names:
        rel = f"{rel_dir}/{name}" if rel_dir else name
        path = os.path.join(current, name)
        try:
            st = os.lstat(path)
            entry = _entry_from_stat(rel, st, path)
        except OSError as e:
            collector.warnings.append(f"Cannot stat {rel}: {e}")
            logger.warning(f"Cannot stat {path}: {e}")
            continue

        yield entry
        if entry.is_dir:
            yield from _walk_dir(base, rel, collector)


def tree_size(root: Path) -> int:
    """Return the total size in bytes of all regular files below *root*."""
    return sum(entry.size for entry in walk(root) if not entry.is_dir)
