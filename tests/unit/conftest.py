"""Shared fixtures for the unit tests."""

import os
from pathlib import Path
from typing import Callable

import pytest


class _FailingWriter:
    """Writes a few bytes of the first chunk, then fails."""

    def __init__(self, path: Path, err: int) -> None:
        self._file = open(path, "wb")
        self.err = err

    def __enter__(self) -> "_FailingWriter":
        return self

    def __exit__(self, *exc: object) -> bool:
        self._file.close()
        return False

    def write(self, data: bytes) -> int:
        self._file.write(data[:3])
        raise OSError(self.err, os.strerror(self.err))


@pytest.fixture
def failing_open() -> Callable[[str, int], Callable]:
    """Build an ``open`` replacement whose writes to one filename fail."""
    real_open = open

    def factory(filename: str, err: int) -> Callable:
        def fake_open(path, mode="r", *args, **kwargs):
            if Path(path).name == filename and "w" in mode:
                return _FailingWriter(Path(path), err)
            return real_open(path, mode, *args, **kwargs)

        return fake_open

    return factory
