from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from humantime.storage import DiskUsage, KeyValueStore, StoreOptions

T0 = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
GIB = 1024**3


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def plenty_of_space(_path: str) -> DiskUsage:
    return DiskUsage(total=100 * GIB, used=10 * GIB, free=90 * GIB)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store():
    kv = KeyValueStore.open(StoreOptions(in_memory=True))
    yield kv
    kv.close()


@pytest.fixture
def file_store_options(tmp_path):
    return StoreOptions(path=tmp_path / "data" / "humantime.db", disk_usage=plenty_of_space)


@pytest.fixture
def file_store(file_store_options):
    kv = KeyValueStore.open(file_store_options)
    yield kv
    kv.close()
