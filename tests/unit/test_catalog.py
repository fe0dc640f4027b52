"""
Tests for the backup catalog.
"""

import os
from datetime import datetime
from pathlib import Path

import pytest
from hypothesis import given
from hypothesis import strategies as st

from ramprofile.catalog import BackupCatalog, BackupEntry
from ramprofile.exceptions import Cancelled, InvalidSelection

PREFIX = "vivaldi-profile"


def _backup(directory: Path, stamp: str, mtime: float, size: int = 10) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{PREFIX}-{stamp}.zip"
    path.write_bytes(b"x" * size)
    os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def catalog(tmp_path: Path) -> BackupCatalog:
    _backup(tmp_path, "2024-01-01_10-00-00", 1_000)
    _backup(tmp_path, "2024-01-02_10-00-00", 2_000)
    _backup(tmp_path, "2024-01-03_10-00-00", 3_000)
    return BackupCatalog.enumerate(tmp_path, PREFIX)


def test_enumerate_missing_directory(tmp_path: Path) -> None:
    """A missing backup directory is an empty catalog, not an error."""
    catalog = BackupCatalog.enumerate(tmp_path / "missing", PREFIX)
    assert len(catalog) == 0
    assert catalog.latest() is None


def test_enumerate_ignores_other_files(tmp_path: Path) -> None:
    """Non-archives, temp files and foreign prefixes are ignored."""
    _backup(tmp_path, "2024-01-01_10-00-00", 1_000)
    (tmp_path / "notes.txt").write_text("notes")
    (tmp_path / f".{PREFIX}-2024-01-02_10-00-00.zip.abc.part").write_text("tmp")
    (tmp_path / "other-2024-01-01_10-00-00.zip").write_text("other")
    (tmp_path / f"{PREFIX}-dir.zip").mkdir()

    catalog = BackupCatalog.enumerate(tmp_path, PREFIX)

    assert [e.name for e in catalog] == [f"{PREFIX}-2024-01-01_10-00-00.zip"]


def test_enumerate_without_prefix(tmp_path: Path) -> None:
    _backup(tmp_path, "2024-01-01_10-00-00", 1_000)
    (tmp_path / "other-2024-01-01_10-00-00.zip").write_text("other")
    assert len(BackupCatalog.enumerate(tmp_path)) == 2


def test_latest_and_order(catalog: BackupCatalog) -> None:
    latest = catalog.latest()
    assert latest is not None
    assert latest.name == f"{PREFIX}-2024-01-03_10-00-00.zip"
    assert [e.mtime for e in catalog.newest_first()] == [3_000, 2_000, 1_000]
    assert catalog.total_size == 30


def test_latest_tie_breaks_on_name(tmp_path: Path) -> None:
    """Equal modification times resolve to the greater filename."""
    _backup(tmp_path, "2024-01-01_10-00-00", 5_000)
    _backup(tmp_path, "2024-01-01_10-00-01", 5_000)
    catalog = BackupCatalog.enumerate(tmp_path, PREFIX)

    latest = catalog.latest()
    assert latest is not None
    assert latest.name == f"{PREFIX}-2024-01-01_10-00-01.zip"
    assert catalog.newest_first()[0] == latest


def test_select_interactive(catalog: BackupCatalog) -> None:
    """Index 1 is the newest backup."""
    assert catalog.select_interactive("1").mtime == 3_000
    assert catalog.select_interactive(" 3 ").mtime == 1_000


@pytest.mark.parametrize("choice", ["4", "c", "Cancel", "q", "QUIT"])
def test_select_interactive_cancel(catalog: BackupCatalog, choice: str) -> None:
    """The index past the last entry and the cancel words cancel."""
    with pytest.raises(Cancelled):
        catalog.select_interactive(choice)


@pytest.mark.parametrize("choice", ["0", "5", "-1", "abc", ""])
def test_select_interactive_invalid(catalog: BackupCatalog, choice: str) -> None:
    with pytest.raises(InvalidSelection):
        catalog.select_interactive(choice)


def test_timestamp_of(catalog: BackupCatalog) -> None:
    entry = catalog.latest()
    assert entry is not None
    assert catalog.timestamp_of(entry, PREFIX) == datetime(2024, 1, 3, 10, 0, 0)


def test_age_days() -> None:
    entry = BackupEntry(path=Path("/b/x.zip"), mtime=0.0, size=1)
    assert entry.age_days(now=86400 * 8 + 5) == 8
    assert entry.age_days(now=100) == 0


@given(
    st.dictionaries(
        st.integers(min_value=0, max_value=10_000),
        st.integers(min_value=0, max_value=5),
        min_size=1,
        max_size=15,
    )
)
def test_latest_is_newest_first_head(mtimes: dict) -> None:
    """latest() is the maximum by (mtime, name) and heads newest_first()."""
    entries = {}
    for i, mtime in mtimes.items():
        name = f"{PREFIX}-{i:05d}.zip"
        entries[name] = BackupEntry(path=Path("/b") / name, mtime=mtime, size=1)
    catalog = BackupCatalog(Path("/b"), entries)

    latest = catalog.latest()
    assert latest is not None
    assert latest == catalog.newest_first()[0]
    assert latest.mtime == max(mtimes.values())
    assert all(
        (latest.mtime, latest.name) >= (e.mtime, e.name) for e in entries.values()
    )
