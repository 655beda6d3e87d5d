import io
from datetime import datetime, timedelta

import openpyxl
import pytest

from sheetstream.core.memory import MemoryMonitor
from sheetstream.db.duckdb_adapter import DuckDBAdapter
from sheetstream.schemas.user import UserRecord
from sheetstream.services.styles import StyleRegistry

BASE_TIME = datetime(2024, 1, 1, 9, 0, 0)


class FixedMemoryMonitor(MemoryMonitor):
    """Monitor with scripted readings so checkpoint policy is deterministic."""

    def __init__(self, readings_mb=None, max_mb: float = 1000.0):
        super().__init__(limit_mb=max_mb)
        self.readings_mb = list(readings_mb or [100.0])
        self.calls = 0

    def current_usage_mb(self) -> float:
        value = self.readings_mb[min(self.calls, len(self.readings_mb) - 1)]
        self.calls += 1
        return value


def make_user(i: int, **overrides) -> UserRecord:
    fields = dict(
        id=i,
        username=f"user{i}",
        email=f"user{i}@example.com",
        age=20 + i % 40,
        department="Engineering",
        created_at=BASE_TIME + timedelta(minutes=i),
        active=i % 2 == 0,
    )
    fields.update(overrides)
    return UserRecord(**fields)


def read_sheet(target):
    """All cell values of the first worksheet as a list of tuples."""
    if isinstance(target, (bytes, bytearray)):
        target = io.BytesIO(target)
    workbook = openpyxl.load_workbook(target)
    try:
        return [tuple(row) for row in workbook.active.iter_rows(values_only=True)]
    finally:
        workbook.close()


@pytest.fixture
def styles():
    return StyleRegistry()


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def sheet_reader():
    return read_sheet


@pytest.fixture
def fixed_monitor():
    return FixedMemoryMonitor()


@pytest.fixture
def duck_db():
    adapter = DuckDBAdapter(":memory:")
    yield adapter
    adapter.close()
