"""
Naive Exporter — the "load everything, then build the workbook" baseline.

Kept as a comparison fixture for the streaming pipeline: it collects every
record into a list, renders all rows into a DataFrame, builds the whole
workbook in memory and writes it once. Memory grows with the row count, which
is exactly the failure mode the windowed writer avoids. Output is identical to
the streaming path for datasets small enough for both to finish.
"""

import io
import logging
import time
from typing import BinaryIO, List, Optional

import pandas as pd
import xlsxwriter

from sheetstream.core.constants import HEADER_LABELS, SHEET_NAME
from sheetstream.core.errors import (
    ExportAbortedError,
    ExportStage,
    ResourceExhaustedError,
)
from sheetstream.core.memory import MemoryMonitor
from sheetstream.schemas.row import Row
from sheetstream.schemas.user import UserRecord
from sheetstream.services.row_format import format_record, header_row
from sheetstream.services.row_source import RowSource
from sheetstream.services.sheet_writer import finish_sheet, write_row
from sheetstream.services.styles import StyleRegistry

logger = logging.getLogger(__name__)


class NaiveExporter:
    """
    Fully materializing exporter.

    ``max_records`` bounds how many records may be collected; exceeding it
    raises ResourceExhaustedError from inside the source callback, standing in
    for an out-of-memory failure in constrained test environments.
    """

    def __init__(
        self,
        max_records: Optional[int] = None,
        monitor: Optional[MemoryMonitor] = None,
    ):
        self.max_records = max_records
        self.monitor = monitor or MemoryMonitor()

    def export(self, source: RowSource, sink: BinaryIO) -> int:
        """Build the whole workbook in memory and write it to ``sink``. Returns data rows."""
        started = time.time()
        self.monitor.log_memory_status("traditional export start")
        records: List[UserRecord] = []

        try:
            source.stream(self._collector(records))
            logger.info(f"Loaded all {len(records)} records into memory")
            self.monitor.log_memory_status("after full load")

            payload = self._build_workbook(records)
            sink.write(payload)
        except MemoryError as e:
            logger.error(f"Out of memory after {len(records)} records", exc_info=True)
            raise ExportAbortedError(
                "Traditional export ran out of memory",
                stage=ExportStage.PARTIAL_STATE,
                rows_processed=len(records),
            ) from e
        except Exception as e:
            logger.error(f"Traditional export failed: {e}", exc_info=True)
            raise ExportAbortedError(
                f"Traditional export failed: {e}",
                stage=ExportStage.PARTIAL_STATE if records else ExportStage.BEFORE_OUTPUT,
                rows_processed=len(records),
            ) from e

        duration_ms = round((time.time() - started) * 1000, 2)
        logger.info(f"Traditional export complete: {len(records)} rows in {duration_ms}ms")
        self.monitor.log_memory_status("traditional export complete")
        return len(records)

    def _collector(self, records: List[UserRecord]):
        def collect(record: UserRecord) -> None:
            if self.max_records is not None and len(records) >= self.max_records:
                raise ResourceExhaustedError(
                    f"Refusing to hold more than {self.max_records} records in memory"
                )
            records.append(record)

        return collect

    def _build_workbook(self, records: List[UserRecord]) -> bytes:
        styles = StyleRegistry()
        rendered = [
            format_record(record, index=pos, style=styles.data, position=pos).cells
            for pos, record in enumerate(records, start=1)
        ]
        # object dtype keeps ints as ints and empty cells as None
        df = pd.DataFrame(rendered, columns=list(HEADER_LABELS), dtype=object)

        output = io.BytesIO()
        workbook = xlsxwriter.Workbook(output, {"in_memory": True})
        worksheet = workbook.add_worksheet(SHEET_NAME)
        formats = styles.bind(workbook)

        write_row(worksheet, header_row(styles), formats)
        for row_idx, values in enumerate(df.itertuples(index=False, name=None), start=1):
            write_row(worksheet, Row(row_idx, values, styles.data), formats)

        finish_sheet(worksheet)
        workbook.close()
        return output.getvalue()
