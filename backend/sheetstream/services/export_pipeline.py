"""
Export Pipeline — one end-to-end bounded-memory xlsx export.

  - Opens a fresh StyleRegistry and WindowedSheetWriter per call
  - Writes the header row, then lets the RowSource push records
  - Every MEMORY_CHECK_INTERVAL rows takes a memory snapshot and logs progress
  - Finalizes the writer to a private temp file and copies it to the sink
  - Releases the writer, overflow store and temp file on every exit path

Memory checkpoints are diagnostics only. Crossing the threshold is logged as
a warning; it neither pauses the source nor aborts the export.
"""

import logging
import os
import tempfile
import time
import uuid
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional

from sheetstream.core.constants import STREAM_BUFFER_SIZE
from sheetstream.core.errors import (
    ExportAbortedError,
    ExportStage,
    FinalizationError,
)
from sheetstream.core.logger import ExportLogAdapter
from sheetstream.core.memory import MemoryMonitor
from sheetstream.schemas.user import UserRecord
from sheetstream.services.row_format import format_record, header_row
from sheetstream.services.row_source import RowSource
from sheetstream.services.sheet_writer import WindowedSheetWriter
from sheetstream.services.styles import StyleRegistry

logger = logging.getLogger(__name__)


@dataclass
class ExportResult:
    """Summary of a completed export."""

    export_id: str = ""
    rows_written: int = 0
    bytes_written: int = 0
    peak_window_size: int = 0
    evicted_rows: int = 0
    checkpoints: int = 0
    threshold_breaches: int = 0
    start_memory_mb: float = 0.0
    end_memory_mb: float = 0.0
    peak_memory_mb: float = 0.0
    duration_ms: float = 0.0
    cleanup_errors: List[str] = field(default_factory=list)


class _RecordHandler:
    """
    Callback handed to the RowSource. Formats, appends and checkpoints one
    record per call.
    """

    def __init__(
        self, pipeline: "ExportPipeline", writer, styles, start_mb: float, log
    ):
        self._log = log
        self._pipeline = pipeline
        self._writer = writer
        self._style = styles.data
        self.processed_count = 0
        self.checkpoints = 0
        self.threshold_breaches = 0
        self.peak_memory_mb = start_mb

    def __call__(self, record: UserRecord) -> None:
        position = self.processed_count + 1
        row = format_record(record, index=position, style=self._style, position=position)
        self._writer.append(row)
        self.processed_count = position

        if self.processed_count % self._pipeline.checkpoint_interval == 0:
            self._checkpoint()

    def _checkpoint(self) -> None:
        snap = self._pipeline.monitor.snapshot()
        self.checkpoints += 1
        self.peak_memory_mb = max(self.peak_memory_mb, snap.used_mb)

        self._log.info(
            f"Streaming progress: {self.processed_count} rows - "
            f"memory {snap.used_mb:.1f}MB (peak {self.peak_memory_mb:.1f}MB), "
            f"window {self._writer.in_memory_rows}, spilled {self._writer.evicted_count}",
            extra={
                "extra_fields": {
                    "rows": self.processed_count,
                    "usage_percent": round(snap.usage_percent, 2),
                }
            },
        )

        if snap.usage_percent > self._pipeline.memory_threshold_pct:
            self.threshold_breaches += 1
            self._log.warning(
                f"High memory usage: {snap.usage_percent:.2f}% after "
                f"{self.processed_count} rows (breach #{self.threshold_breaches}, "
                f"threshold {self._pipeline.memory_threshold_pct:.0f}%)"
            )


class ExportPipeline:
    """Streams a RowSource into an xlsx file while holding O(window_size) rows."""

    def __init__(
        self,
        window_size: int = 100,
        checkpoint_interval: int = 10000,
        memory_threshold_pct: float = 80.0,
        temp_dir: Optional[str] = None,
        monitor: Optional[MemoryMonitor] = None,
    ):
        if checkpoint_interval < 1:
            raise ValueError(
                f"checkpoint_interval must be >= 1, got {checkpoint_interval}"
            )
        self.window_size = window_size
        self.checkpoint_interval = checkpoint_interval
        self.memory_threshold_pct = memory_threshold_pct
        self.temp_dir = temp_dir
        self.monitor = monitor or MemoryMonitor()

    @classmethod
    def from_settings(cls, settings, monitor: Optional[MemoryMonitor] = None):
        return cls(
            window_size=settings.EXPORT_WINDOW_SIZE,
            checkpoint_interval=settings.MEMORY_CHECK_INTERVAL,
            memory_threshold_pct=settings.MEMORY_WARN_THRESHOLD_PCT,
            temp_dir=settings.EXPORT_TEMP_DIR,
            monitor=monitor or MemoryMonitor(limit_mb=settings.MEMORY_LIMIT_MB),
        )

    def export(self, source: RowSource, sink: BinaryIO) -> ExportResult:
        """
        Run one export and write the finished workbook bytes to ``sink``.
        Raises ExportAbortedError on any failure; nothing is written to the
        sink unless the workbook was completed.
        """
        started = time.time()
        log = ExportLogAdapter(logger, uuid.uuid4().hex[:8])
        start_snap = self.monitor.log_memory_status(
            f"streaming export {log.export_id} start"
        )
        if self.temp_dir:
            os.makedirs(self.temp_dir, exist_ok=True)

        styles = StyleRegistry()
        writer = WindowedSheetWriter(
            styles, window_size=self.window_size, temp_dir=self.temp_dir
        )
        handler = _RecordHandler(self, writer, styles, start_snap.used_mb, log)
        result = ExportResult(
            export_id=log.export_id, start_memory_mb=start_snap.used_mb
        )
        xlsx_path = None
        failed = False

        try:
            writer.append(header_row(styles))
            log.info(f"Streaming rows with window size {self.window_size}")
            source.stream(handler)

            fd, xlsx_path = tempfile.mkstemp(suffix=".xlsx", dir=self.temp_dir)
            os.close(fd)
            result.rows_written = writer.finalize(xlsx_path) - 1
            result.bytes_written = _copy_file(xlsx_path, sink)

        except Exception as e:
            failed = True
            stage = (
                ExportStage.PARTIAL_STATE
                if handler.processed_count > 0
                else ExportStage.BEFORE_OUTPUT
            )
            log.error(
                f"Streaming export failed after {handler.processed_count} rows "
                f"({stage.value}): {e}",
                exc_info=True,
            )
            raise ExportAbortedError(
                f"Streaming export failed: {e}",
                stage=stage,
                rows_processed=handler.processed_count,
            ) from e

        finally:
            for error in self._release(writer, xlsx_path):
                if failed:
                    log.error(f"Cleanup after failed export also failed: {error}")
                else:
                    log.error(f"Export succeeded but cleanup failed: {error}")
                    result.cleanup_errors.append(str(error))

        end_snap = self.monitor.log_memory_status(
            f"streaming export {log.export_id} complete"
        )
        result.peak_window_size = writer.peak_window_size
        result.evicted_rows = writer.evicted_count
        result.checkpoints = handler.checkpoints
        result.threshold_breaches = handler.threshold_breaches
        result.end_memory_mb = end_snap.used_mb
        result.peak_memory_mb = max(handler.peak_memory_mb, end_snap.used_mb)
        result.duration_ms = round((time.time() - started) * 1000, 2)

        log.info(
            f"Streaming export complete: {result.rows_written} rows, "
            f"{result.bytes_written} bytes in {result.duration_ms}ms - "
            f"memory start {result.start_memory_mb:.1f}MB, end {result.end_memory_mb:.1f}MB"
        )
        return result

    def export_to_path(self, source: RowSource, path: str) -> ExportResult:
        """
        Export into ``path``. The file appears only when the export succeeded;
        a failure leaves no partial destination behind.
        """
        directory = os.path.dirname(os.path.abspath(path))
        fd, partial_path = tempfile.mkstemp(suffix=".partial", dir=directory)
        try:
            with os.fdopen(fd, "wb") as sink:
                result = self.export(source, sink)
            os.replace(partial_path, path)
        except BaseException:
            if os.path.exists(partial_path):
                os.remove(partial_path)
            raise
        return result

    def _release(self, writer: WindowedSheetWriter, xlsx_path: Optional[str]):
        """Release everything the export acquired. Returns cleanup failures."""
        errors = []
        try:
            writer.dispose()
        except FinalizationError as e:
            errors.append(e)
        if xlsx_path and os.path.exists(xlsx_path):
            try:
                os.remove(xlsx_path)
            except OSError as e:
                errors.append(
                    FinalizationError(f"Failed to delete temp workbook: {e}", xlsx_path)
                )
        return errors


def _copy_file(path: str, sink: BinaryIO) -> int:
    written = 0
    with open(path, "rb") as f:
        while chunk := f.read(STREAM_BUFFER_SIZE):
            sink.write(chunk)
            written += len(chunk)
    if hasattr(sink, "flush"):
        sink.flush()
    return written
