import itertools

import pytest

from poetloop.storage.sqlite_store import SQLiteStore


@pytest.fixture
def store(tmp_path):
    """Create a fresh SQLite store for each test."""
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def clock():
    """Fake nanosecond clock: 1000, 2000, 3000, ..."""
    counter = itertools.count(1)
    return lambda: next(counter) * 1000
