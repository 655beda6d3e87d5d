"""
Windowed Sheet Writer — bounded-memory row buffer for xlsx exports.

At most ``window_size`` rows are held in memory. Appending to a full window
first evicts the oldest row to the append-only OverflowStore. ``finalize``
replays overflow rows followed by the remaining window into an xlsxwriter
workbook opened in constant_memory mode, which requires rows in ascending
order, so the output is always "all rows in index order".
"""

import logging
import os
from collections import deque
from typing import Deque, Dict, Optional

import xlsxwriter

from sheetstream.core.constants import (
    EXCEL_STYLES,
    HEADER_LABELS,
    MAX_CELL_CHARS,
    MAX_SHEET_ROW_INDEX,
    SHEET_NAME,
)
from sheetstream.core.errors import (
    FinalizationError,
    SheetLimitError,
    WriterStateError,
)
from sheetstream.schemas.row import Row
from sheetstream.services.overflow import OverflowStore
from sheetstream.services.styles import CellStyle, StyleRegistry

logger = logging.getLogger(__name__)

# xlsxwriter write_*() status codes
_ROW_OUT_OF_RANGE = -1
_STRING_TRUNCATED = -2


def write_row(worksheet, row: Row, formats: Dict[CellStyle, object]) -> None:
    """
    Write one row's cells with its bound format. None becomes a styled blank.
    Raises SheetLimitError instead of letting xlsxwriter drop or truncate a cell.
    """
    cell_format = formats[row.style]
    for col_idx, value in enumerate(row.cells):
        if value is None:
            status = worksheet.write_blank(row.index, col_idx, None, cell_format)
        elif isinstance(value, bool):
            status = worksheet.write_string(
                row.index, col_idx, str(value).lower(), cell_format
            )
        elif isinstance(value, (int, float)):
            status = worksheet.write_number(row.index, col_idx, value, cell_format)
        else:
            status = worksheet.write_string(row.index, col_idx, str(value), cell_format)

        if status == _ROW_OUT_OF_RANGE:
            raise SheetLimitError(
                f"Cell at row {row.index}, column {col_idx} is outside the worksheet "
                f"(last row index is {MAX_SHEET_ROW_INDEX})"
            )
        if status == _STRING_TRUNCATED:
            # Also returned for rows behind the constant_memory write position
            raise SheetLimitError(
                f"Cell at row {row.index}, column {col_idx} was rejected: longer "
                f"than {MAX_CELL_CHARS} characters or behind an already flushed row"
            )
        if status < 0:
            raise SheetLimitError(
                f"Cell at row {row.index}, column {col_idx} was rejected (status {status})"
            )


def finish_sheet(worksheet) -> None:
    worksheet.set_column(0, len(HEADER_LABELS) - 1, EXCEL_STYLES["column_width"])


def _discard_row_data(workbook) -> None:
    """
    Close and delete the constant_memory row-data temp files xlsxwriter keeps
    per worksheet. close() removes them itself; this covers the paths where
    close() never ran or failed part-way.
    """
    for worksheet in workbook.worksheets():
        handle = getattr(worksheet, "row_data_fh", None)
        path = getattr(worksheet, "row_data_filename", None)
        try:
            if handle is not None and not handle.closed:
                handle.close()
            if path and os.path.exists(path):
                os.remove(path)
        except OSError as e:
            raise FinalizationError("Failed to delete worksheet row data", path) from e


class WindowedSheetWriter:
    """
    Holds at most ``window_size`` materialized rows; older rows spill to disk.

    Not thread-safe: a single export drives it from one thread.
    """

    def __init__(
        self,
        styles: StyleRegistry,
        window_size: int = 100,
        temp_dir: Optional[str] = None,
        sheet_name: str = SHEET_NAME,
    ):
        if window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {window_size}")
        self.window_size = window_size
        self.sheet_name = sheet_name
        self._styles = styles
        self._temp_dir = temp_dir
        self._window: Deque[Row] = deque()
        self._overflow = OverflowStore(styles.by_role, temp_dir=temp_dir)
        self._last_index: Optional[int] = None
        self._finalized = False
        self.row_count = 0
        self.peak_window_size = 0

    @property
    def in_memory_rows(self) -> int:
        return len(self._window)

    @property
    def evicted_count(self) -> int:
        return len(self._overflow)

    @property
    def overflow_path(self) -> Optional[str]:
        return self._overflow.path

    @property
    def finalized(self) -> bool:
        return self._finalized

    def append(self, row: Row) -> None:
        if self._finalized:
            raise WriterStateError("Cannot append to a finalized writer")
        if self._last_index is not None and row.index <= self._last_index:
            raise ValueError(
                f"Row index {row.index} is not greater than previous index {self._last_index}"
            )
        if row.index > MAX_SHEET_ROW_INDEX:
            raise SheetLimitError(
                f"Row index {row.index} exceeds the worksheet limit of "
                f"{MAX_SHEET_ROW_INDEX + 1} rows"
            )

        if len(self._window) >= self.window_size:
            # Spill first; the row leaves memory only once it is on disk
            self._overflow.append(self._window[0])
            self._window.popleft()

        self._window.append(row)
        self._last_index = row.index
        self.row_count += 1
        if len(self._window) > self.peak_window_size:
            self.peak_window_size = len(self._window)

    def finalize(self, target) -> int:
        """
        Write every row, overflow first then window, to ``target`` (a path or
        binary file object). Returns the number of rows written.
        """
        if self._finalized:
            raise WriterStateError("Writer has already been finalized")
        self._finalized = True

        options = {"constant_memory": True}
        if self._temp_dir:
            options["tmpdir"] = self._temp_dir

        drained = self._overflow.drain()
        workbook = xlsxwriter.Workbook(target, options)
        written = 0
        try:
            worksheet = workbook.add_worksheet(self.sheet_name)
            formats = self._styles.bind(workbook)

            for row in drained:
                write_row(worksheet, row, formats)
                written += 1
            while self._window:
                write_row(worksheet, self._window.popleft(), formats)
                written += 1

            finish_sheet(worksheet)
            workbook.close()
        except BaseException:
            drained.close()
            try:
                _discard_row_data(workbook)
            except FinalizationError as cleanup_error:
                logger.error(f"Cleanup after failed finalize also failed: {cleanup_error}")
            raise

        drained.close()
        _discard_row_data(workbook)
        self._overflow.delete()
        logger.debug(
            f"Writer finalized: {written} rows ({self.evicted_count} from overflow)"
        )
        return written

    def dispose(self) -> None:
        """Release the window and overflow store. Idempotent."""
        self._window.clear()
        self._overflow.delete()
