"""
HTTP layer tests.

Runs the FastAPI app in-process with the database adapter, settings and memory
monitor swapped through dependency overrides. The lifespan is not entered, so
no global adapter is created and logging stays under pytest's control.
"""

import contextlib
import os

import pytest
from fastapi.testclient import TestClient

from conftest import FixedMemoryMonitor
from sheetstream.api.endpoints import get_db, get_memory_monitor
from sheetstream.core.config import Settings, get_settings
from sheetstream.core.constants import HEADER_LABELS, XLSX_MEDIA_TYPE
from sheetstream.core.rate_limit import limiter
from sheetstream.main import app
from sheetstream.services.row_source import CursorRowSource, IterableRowSource


class BrokenSourceAdapter:
    """Adapter whose user stream dies part-way through."""

    def __init__(self, user_factory, fail_after: int):
        self._user_factory = user_factory
        self._fail_after = fail_after

    def user_source(self, fetch_size: int = 1000):
        def generate():
            for i in range(1, self._fail_after + 1):
                yield self._user_factory(i)
            raise ConnectionError("DPY-4011: the database or network closed the connection")

        return IterableRowSource(generate())

    def count_users(self):
        raise ConnectionError("DPY-4011: the database or network closed the connection")


POOL_EXHAUSTED_MESSAGE = (
    "DATABASE_POOL_EXHAUSTED: All available connections are in use. Please try again in a moment."
)


class PoolExhaustedAdapter:
    """Adapter whose pool never hands out a connection, like OracleAdapter under load."""

    @contextlib.contextmanager
    def cursor(self):
        raise ValueError(POOL_EXHAUSTED_MESSAGE)
        yield  # pragma: no cover

    def user_source(self, fetch_size: int = 1000):
        return CursorRowSource(self.cursor, "SELECT 1", fetch_size=fetch_size)

    def count_users(self):
        with self.cursor():
            return 0

    def create_large_dataset(self, row_count: int) -> int:
        with self.cursor():
            return row_count


@pytest.fixture
def export_dir(tmp_path):
    path = tmp_path / "exports"
    path.mkdir()
    return path


@pytest.fixture
def client(duck_db, export_dir):
    settings = Settings(
        EXPORT_TEMP_DIR=str(export_dir),
        EXPORT_WINDOW_SIZE=7,
        MEMORY_CHECK_INTERVAL=10,
        FETCH_SIZE=8,
        SEED_ROW_COUNT=40,
    )
    monitor = FixedMemoryMonitor(readings_mb=[250.0], max_mb=1000.0)

    app.dependency_overrides[get_db] = lambda: duck_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_memory_monitor] = lambda: monitor
    limiter.enabled = False

    yield TestClient(app)

    app.dependency_overrides.clear()
    limiter.enabled = True


class TestExcelEndpoints:
    def test_streaming_export(self, client, duck_db, sheet_reader, export_dir):
        duck_db.create_large_dataset(30)

        response = client.get("/api/v1/excel/streaming")

        assert response.status_code == 200
        assert response.headers["content-type"] == XLSX_MEDIA_TYPE
        assert "users_streaming.xlsx" in response.headers["content-disposition"]
        assert response.headers["x-export-rows"] == "30"
        assert len(response.headers["x-export-id"]) == 8

        rows = sheet_reader(response.content)
        assert rows[0] == HEADER_LABELS
        assert [r[0] for r in rows[1:]] == list(range(1, 31))
        # Row 10 has no age, row 7 no active flag
        assert rows[10][3] is None
        assert rows[7][6] is None
        # Temp workbook removed once the response has been sent
        assert os.listdir(export_dir) == []

    def test_traditional_export_matches_streaming(self, client, duck_db, sheet_reader):
        duck_db.create_large_dataset(25)

        streaming = client.get("/api/v1/excel/streaming")
        traditional = client.get("/api/v1/excel/traditional")

        assert traditional.status_code == 200
        assert traditional.headers["content-type"] == XLSX_MEDIA_TYPE
        assert "users_traditional.xlsx" in traditional.headers["content-disposition"]
        assert sheet_reader(traditional.content) == sheet_reader(streaming.content)

    def test_empty_table_exports_header_only(self, client, sheet_reader):
        response = client.get("/api/v1/excel/streaming")

        assert response.status_code == 200
        assert sheet_reader(response.content) == [HEADER_LABELS]

    def test_streaming_failure_is_500_with_stage(self, client, user_factory, export_dir):
        app.dependency_overrides[get_db] = lambda: BrokenSourceAdapter(user_factory, fail_after=12)

        response = client.get("/api/v1/excel/streaming")

        assert response.status_code == 500
        detail = response.json()["detail"]
        assert "Streaming Excel export failed" in detail
        assert "partial_state" in detail
        assert "12 rows processed" in detail
        assert os.listdir(export_dir) == []

    def test_traditional_failure_is_500(self, client, user_factory):
        app.dependency_overrides[get_db] = lambda: BrokenSourceAdapter(user_factory, fail_after=0)

        response = client.get("/api/v1/excel/traditional")

        assert response.status_code == 500
        assert "before_output" in response.json()["detail"]


class TestStatusEndpoints:
    def test_memory_status(self, client):
        response = client.get("/api/v1/memory/status")

        assert response.status_code == 200
        payload = response.json()
        assert payload["used_mb"] == 250.0
        assert payload["max_mb"] == 1000.0
        assert payload["usage_percent"] == pytest.approx(25.0)
        assert "timestamp" in payload

    def test_user_count(self, client, duck_db):
        duck_db.create_large_dataset(17)

        response = client.get("/api/v1/users/count")

        assert response.status_code == 200
        assert response.json() == {"total_rows": 17}

    def test_user_count_database_error(self, client, user_factory):
        app.dependency_overrides[get_db] = lambda: BrokenSourceAdapter(user_factory, fail_after=0)

        response = client.get("/api/v1/users/count")

        assert response.status_code == 500
        assert "Database Execution Error" in response.json()["detail"]

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_correlation_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestDataSetup:
    def test_explicit_row_count(self, client, duck_db):
        response = client.post("/api/v1/data/setup", params={"rows": 50})

        assert response.status_code == 200
        payload = response.json()
        assert payload["total_rows"] == 50
        assert payload["inserted_rows"] == 50
        assert payload["execution_time_ms"] >= 0
        assert duck_db.count_users() == 50

    def test_default_row_count_from_settings(self, client):
        response = client.post("/api/v1/data/setup")

        assert response.status_code == 200
        assert response.json()["total_rows"] == 40

    def test_setup_replaces_existing_rows(self, client, duck_db):
        duck_db.create_large_dataset(100)

        client.post("/api/v1/data/setup", params={"rows": 10})

        assert duck_db.count_users() == 10

    def test_negative_row_count_rejected(self, client):
        response = client.post("/api/v1/data/setup", params={"rows": -1})
        assert response.status_code == 422


class TestPoolExhaustion:
    @pytest.fixture(autouse=True)
    def exhausted_pool(self, client):
        app.dependency_overrides[get_db] = lambda: PoolExhaustedAdapter()

    def test_streaming_export_is_503_with_retry_after(self, client, export_dir):
        response = client.get("/api/v1/excel/streaming")

        assert response.status_code == 503
        assert response.headers["retry-after"] == "5"
        assert "DATABASE_POOL_EXHAUSTED" in response.json()["detail"]
        assert os.listdir(export_dir) == []

    def test_traditional_export_is_503(self, client):
        response = client.get("/api/v1/excel/traditional")

        assert response.status_code == 503
        assert response.headers["retry-after"] == "5"

    def test_user_count_is_503(self, client):
        response = client.get("/api/v1/users/count")

        assert response.status_code == 503
        assert response.headers["retry-after"] == "5"
        assert response.json()["detail"] == POOL_EXHAUSTED_MESSAGE

    def test_data_setup_is_503(self, client):
        response = client.post("/api/v1/data/setup", params={"rows": 5})

        assert response.status_code == 503
        assert response.headers["retry-after"] == "5"
