from fastapi import APIRouter, HTTPException, Depends, BackgroundTasks, Request, Query
from fastapi.responses import Response, StreamingResponse
import io
import logging
import os
import tempfile
import time
from typing import Optional

from sheetstream.core.config import get_settings
from sheetstream.core.constants import (
    POOL_RETRY_AFTER_SECONDS,
    STREAM_BUFFER_SIZE,
    STREAMING_FILENAME,
    TRADITIONAL_FILENAME,
    XLSX_MEDIA_TYPE,
)
from sheetstream.core.errors import ExportAbortedError, is_pool_exhausted
from sheetstream.core.memory import MemoryMonitor
from sheetstream.core.rate_limit import limiter
from sheetstream.db.base import BaseDatabaseAdapter
from sheetstream.db.factory import get_database_adapter
from sheetstream.schemas.export import (
    DataSetupResponse,
    MemoryStatusResponse,
    UserCountResponse,
)
from sheetstream.services.export_pipeline import ExportPipeline
from sheetstream.services.naive_exporter import NaiveExporter

logger = logging.getLogger(__name__)

router = APIRouter()


# Dependency
def get_db():
    db = get_database_adapter()
    yield db


def get_memory_monitor(settings=Depends(get_settings)) -> MemoryMonitor:
    return MemoryMonitor(limit_mb=settings.MEMORY_LIMIT_MB)


def _export_rate_limit() -> str:
    return get_settings().EXPORT_RATE_LIMIT


@router.get("/excel/streaming")
@limiter.limit(_export_rate_limit)  # Throttle heavy exports
def download_streaming_excel(
    request: Request,  # Required by slowapi
    background_tasks: BackgroundTasks,
    db: BaseDatabaseAdapter = Depends(get_db),
    monitor: MemoryMonitor = Depends(get_memory_monitor),
    settings=Depends(get_settings),
):
    """
    Bounded-memory export of every user: cursor -> windowed writer -> xlsx.
    The finished file is streamed from disk and deleted after the response.
    """
    os.makedirs(settings.EXPORT_TEMP_DIR, exist_ok=True)
    fd, path = tempfile.mkstemp(suffix=".xlsx", dir=settings.EXPORT_TEMP_DIR)
    os.close(fd)

    pipeline = ExportPipeline.from_settings(settings, monitor=monitor)
    try:
        result = pipeline.export_to_path(db.user_source(settings.FETCH_SIZE), path)
    except ExportAbortedError as e:
        _remove_file(path)
        _raise_if_pool_exhausted(e)
        raise HTTPException(
            status_code=500,
            detail=(
                f"Streaming Excel export failed ({e.stage.value}, "
                f"{e.rows_processed} rows processed): {e.__cause__ or e}"
            ),
        )

    def file_iterator():
        with open(path, "rb") as f:
            while chunk := f.read(STREAM_BUFFER_SIZE):
                yield chunk

    # Safely queue the file removal after the response is complete
    background_tasks.add_task(_remove_file, path)

    response = StreamingResponse(file_iterator(), media_type=XLSX_MEDIA_TYPE)
    response.headers["Content-Disposition"] = (
        f"attachment; filename={STREAMING_FILENAME}"
    )
    response.headers["Content-Length"] = str(result.bytes_written)
    response.headers["X-Export-Rows"] = str(result.rows_written)
    response.headers["X-Export-Id"] = result.export_id
    return response


@router.get("/excel/traditional")
@limiter.limit(_export_rate_limit)
def download_traditional_excel(
    request: Request,  # Required by slowapi
    db: BaseDatabaseAdapter = Depends(get_db),
    monitor: MemoryMonitor = Depends(get_memory_monitor),
    settings=Depends(get_settings),
):
    """
    Baseline export: loads every user into memory, then builds the workbook.
    Expected to fail on large datasets; kept for comparison with /excel/streaming.
    """
    exporter = NaiveExporter(max_records=settings.NAIVE_EXPORT_MAX_ROWS, monitor=monitor)
    output = io.BytesIO()
    try:
        rows = exporter.export(db.user_source(settings.FETCH_SIZE), output)
    except ExportAbortedError as e:
        _raise_if_pool_exhausted(e)
        raise HTTPException(
            status_code=500,
            detail=(
                f"Traditional Excel export failed ({e.stage.value}, "
                f"{e.rows_processed} rows loaded): {e.__cause__ or e}"
            ),
        )

    response = Response(content=output.getvalue(), media_type=XLSX_MEDIA_TYPE)
    response.headers["Content-Disposition"] = (
        f"attachment; filename={TRADITIONAL_FILENAME}"
    )
    response.headers["X-Export-Rows"] = str(rows)
    return response


@router.get("/memory/status", response_model=MemoryStatusResponse)
def get_memory_status(monitor: MemoryMonitor = Depends(get_memory_monitor)):
    """Fresh memory snapshot of this process. Never cached."""
    snap = monitor.log_memory_status("memory status query")
    return MemoryStatusResponse(**snap.to_dict())


@router.get("/users/count", response_model=UserCountResponse)
def count_users(db: BaseDatabaseAdapter = Depends(get_db)):
    try:
        total = db.count_users()
    except Exception as e:
        if is_pool_exhausted(e):
            raise  # 503 via the app-level ValueError handler
        raise HTTPException(status_code=500, detail=f"Database Execution Error: {str(e)}")
    logger.info(f"User count = {total}")
    return UserCountResponse(total_rows=total)


@router.post("/data/setup", response_model=DataSetupResponse)
def setup_test_data(
    rows: Optional[int] = Query(None, ge=0, le=10000000, description="Users to generate"),
    db: BaseDatabaseAdapter = Depends(get_db),
    monitor: MemoryMonitor = Depends(get_memory_monitor),
    settings=Depends(get_settings),
):
    """
    Regenerate the users dataset for export benchmarks.
    Defaults to SEED_ROW_COUNT rows.
    """
    row_count = settings.SEED_ROW_COUNT if rows is None else rows
    monitor.log_memory_status("test data generation start")
    start_time = time.time()

    try:
        inserted = db.create_large_dataset(row_count)
        total = db.count_users()
    except Exception as e:
        if is_pool_exhausted(e):
            raise
        logger.error(f"Test data generation failed: {e}")
        raise HTTPException(status_code=500, detail=f"Data setup failed: {str(e)}")

    execution_time = round((time.time() - start_time) * 1000, 2)
    logger.info(f"Test data generated: {total} rows in {execution_time}ms")
    monitor.log_memory_status("test data generation complete")

    return DataSetupResponse(
        total_rows=total,
        inserted_rows=inserted,
        execution_time_ms=execution_time,
        message=f"Generated {inserted} users in {execution_time}ms",
    )


def _raise_if_pool_exhausted(error: ExportAbortedError) -> None:
    """An export that could not get a pooled connection is retryable: 503, not 500."""
    if is_pool_exhausted(error):
        logger.warning(f"503 Pool Exhausted during export: {error}")
        raise HTTPException(
            status_code=503,
            detail=f"Export could not start, database busy: {error.__cause__ or error}",
            headers={"Retry-After": str(POOL_RETRY_AFTER_SECONDS)},
        )


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove export file {path}: {e}")
