"""
Tests for the walker module.
"""

import os
from pathlib import Path

import pytest

from ramprofile.exceptions import NotFound, SourceNotFound
from ramprofile.walker import WalkResult, tree_size, walk


def _make_tree(root: Path) -> None:
    (root / "sub" / "deep").mkdir(parents=True)
    (root / "empty").mkdir()
    (root / "a.txt").write_bytes(b"x" * 10)
    (root / "sub" / "b.txt").write_bytes(b"y" * 5)
    (root / "sub" / "deep" / "c.bin").write_bytes(b"z" * 3)


def test_walk_covers_files_and_empty_dirs(tmp_path: Path) -> None:
    """Every file and directory is yielded, including empty directories."""
    _make_tree(tmp_path)
    entries = {e.rel_path: e for e in walk(tmp_path)}

    assert set(entries) == {
        "a.txt",
        "empty",
        "sub",
        "sub/b.txt",
        "sub/deep",
        "sub/deep/c.bin",
    }
    assert entries["a.txt"].size == 10
    assert not entries["a.txt"].is_dir
    assert entries["empty"].is_dir
    assert entries["sub"].size == 0


def test_walk_is_deterministic(tmp_path: Path) -> None:
    """Two walks of an unchanged tree produce the same sequence."""
    _make_tree(tmp_path)
    first = [e.rel_path for e in walk(tmp_path)]
    second = [e.rel_path for e in walk(tmp_path)]
    assert first == second
    # Parents come before their children
    assert first.index("sub") < first.index("sub/b.txt")


def test_walk_is_lazy(tmp_path: Path) -> None:
    """The walk is a generator that can be consumed partially."""
    _make_tree(tmp_path)
    walker = walk(tmp_path)
    first = next(walker)
    assert first.rel_path == "a.txt"


def test_walk_missing_root(tmp_path: Path) -> None:
    """A missing root raises SourceNotFound, which is a NotFound."""
    with pytest.raises(SourceNotFound):
        list(walk(tmp_path / "missing"))
    with pytest.raises(NotFound):
        list(walk(tmp_path / "missing"))


def test_walk_reports_symlinks_without_following(tmp_path: Path) -> None:
    """Symlinks are yielded as links and never followed."""
    target = tmp_path / "outside"
    target.mkdir()
    (target / "secret.txt").write_text("secret")
    root = tmp_path / "root"
    root.mkdir()
    os.symlink(str(target), root / "link")

    entries = {e.rel_path: e for e in walk(root)}
    assert set(entries) == {"link"}
    assert entries["link"].is_symlink
    assert entries["link"].link_target == str(target)
    assert not entries["link"].is_dir


@pytest.mark.skipif(os.geteuid() == 0, reason="root can read any directory")
def test_walk_skips_unreadable_directory(tmp_path: Path) -> None:
    """An unlistable directory is recorded as a warning and skipped."""
    _make_tree(tmp_path)
    locked = tmp_path / "locked"
    locked.mkdir()
    (locked / "hidden.txt").write_text("hidden")
    locked.chmod(0)
    try:
        result = WalkResult()
        rel_paths = [e.rel_path for e in walk(tmp_path, result)]
    finally:
        locked.chmod(0o755)

    assert "locked" in rel_paths
    assert "locked/hidden.txt" not in rel_paths
    assert "a.txt" in rel_paths
    assert result.skipped == 1


def test_tree_size(tmp_path: Path) -> None:
    """tree_size sums regular file sizes only."""
    _make_tree(tmp_path)
    assert tree_size(tmp_path) == 18
