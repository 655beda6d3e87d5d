"""
Windowed Sheet Writer Tests.

Covers the window bound, FIFO eviction to the overflow store, finalize
ordering, worksheet limits and the writer's lifecycle errors.
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from sheetstream.core.constants import MAX_CELL_CHARS, MAX_SHEET_ROW_INDEX
from sheetstream.core.errors import SheetLimitError, WriterStateError
from sheetstream.schemas.row import Row
from sheetstream.services.sheet_writer import WindowedSheetWriter, write_row


def _row(styles, i):
    return Row(index=i, cells=(i, f"user{i}"), style=styles.data)


@pytest.fixture
def writer_factory(styles, tmp_path):
    created = []

    def factory(window_size):
        writer = WindowedSheetWriter(
            styles, window_size=window_size, temp_dir=str(tmp_path / "spill")
        )
        created.append(writer)
        return writer

    yield factory
    for writer in created:
        writer.dispose()


class TestWindowBound:
    @pytest.mark.parametrize("window_size", [1, 2, 7])
    @pytest.mark.parametrize("multiplier", [0, 1, 3, 10])
    def test_window_never_exceeds_capacity(self, styles, writer_factory, window_size, multiplier):
        """len(window) <= W is checked after every single append."""
        writer = writer_factory(window_size)
        total = window_size * multiplier + 1

        for i in range(1, total + 1):
            writer.append(_row(styles, i))
            assert writer.in_memory_rows <= window_size, (
                f"Window held {writer.in_memory_rows} rows after append #{i}"
            )

        assert writer.peak_window_size == min(window_size, total)
        assert writer.evicted_count == max(0, total - window_size)
        assert writer.row_count == total

    def test_no_overflow_file_until_first_eviction(self, styles, writer_factory):
        writer = writer_factory(3)
        for i in range(1, 4):
            writer.append(_row(styles, i))

        assert writer.overflow_path is None
        writer.append(_row(styles, 4))
        assert writer.overflow_path is not None
        assert os.path.exists(writer.overflow_path)


class TestEvictionOrder:
    def test_window_two_five_rows(self, styles, writer_factory, tmp_path, sheet_reader):
        """W=2, N=5: overflow holds 1-3, window holds 4-5, output is 1..5."""
        writer = writer_factory(2)
        for i in range(1, 6):
            writer.append(_row(styles, i))

        assert writer.evicted_count == 3
        assert [r.index for r in writer._window] == [4, 5]
        with open(writer.overflow_path, encoding="utf-8") as f:
            spilled = [line for line in f if line.strip()]
        assert len(spilled) == 3

        target = str(tmp_path / "out.xlsx")
        assert writer.finalize(target) == 5

        rows = sheet_reader(target)
        # Sheet row 0 was never written, so openpyxl starts at row 2
        ids = [r[0] for r in rows if r[0] is not None]
        assert ids == [1, 2, 3, 4, 5]

    def test_fifo_eviction_matches_creation_order(self, styles, writer_factory):
        """The k-th evicted row is the k-th created row."""
        writer = writer_factory(4)
        evicted = []
        original_append = writer._overflow.append

        def spy(row):
            evicted.append(row.index)
            original_append(row)

        writer._overflow.append = spy
        for i in range(1, 41):
            writer.append(_row(styles, i))

        assert evicted == list(range(1, 37))


class TestFinalize:
    def test_finalize_removes_overflow_store(self, styles, writer_factory, tmp_path):
        writer = writer_factory(2)
        for i in range(1, 10):
            writer.append(_row(styles, i))
        spill_path = writer.overflow_path

        writer.finalize(str(tmp_path / "out.xlsx"))

        assert not os.path.exists(spill_path)
        assert writer.in_memory_rows == 0
        assert writer.finalized

    def test_finalize_twice_fails(self, styles, writer_factory, tmp_path):
        writer = writer_factory(2)
        writer.append(_row(styles, 1))
        writer.finalize(str(tmp_path / "a.xlsx"))

        with pytest.raises(WriterStateError):
            writer.finalize(str(tmp_path / "b.xlsx"))

    def test_append_after_finalize_fails(self, styles, writer_factory, tmp_path):
        writer = writer_factory(2)
        writer.finalize(str(tmp_path / "a.xlsx"))

        with pytest.raises(WriterStateError):
            writer.append(_row(styles, 1))

    def test_finalize_to_file_object(self, styles, writer_factory, tmp_path, sheet_reader):
        writer = writer_factory(3)
        for i in range(0, 8):
            writer.append(_row(styles, i))

        path = tmp_path / "obj.xlsx"
        with open(path, "wb") as f:
            writer.finalize(f)

        assert [r[0] for r in sheet_reader(str(path))] == list(range(0, 8))


class TestAppendValidation:
    def test_rejects_non_increasing_index(self, styles, writer_factory):
        writer = writer_factory(2)
        writer.append(_row(styles, 5))
        with pytest.raises(ValueError):
            writer.append(_row(styles, 5))
        with pytest.raises(ValueError):
            writer.append(_row(styles, 3))

    def test_rejects_invalid_window_size(self, styles):
        with pytest.raises(ValueError):
            WindowedSheetWriter(styles, window_size=0)

    def test_dispose_is_idempotent(self, styles, writer_factory):
        writer = writer_factory(1)
        for i in range(1, 4):
            writer.append(_row(styles, i))
        spill_path = writer.overflow_path

        writer.dispose()
        writer.dispose()

        assert not os.path.exists(spill_path)
        assert writer.in_memory_rows == 0


class TestSheetLimits:
    def test_last_valid_row_index_is_accepted(self, styles, writer_factory, tmp_path):
        writer = writer_factory(2)
        writer.append(_row(styles, 1))
        writer.append(_row(styles, MAX_SHEET_ROW_INDEX))

        assert writer.finalize(str(tmp_path / "edge.xlsx")) == 2

    def test_row_beyond_sheet_is_rejected_on_append(self, styles, writer_factory):
        writer = writer_factory(2)
        writer.append(_row(styles, 1))

        with pytest.raises(SheetLimitError):
            writer.append(_row(styles, MAX_SHEET_ROW_INDEX + 1))

        assert writer.row_count == 1
        assert writer.in_memory_rows == 1

    def test_oversized_cell_fails_finalize_and_leaves_no_temp_files(self, styles, writer_factory, tmp_path):
        writer = writer_factory(2)
        for i in range(1, 5):
            writer.append(_row(styles, i))
        writer.append(Row(index=5, cells=(5, "x" * (MAX_CELL_CHARS + 1)), style=styles.data))
        target = tmp_path / "too_long.xlsx"

        with pytest.raises(SheetLimitError):
            writer.finalize(str(target))
        writer.dispose()

        assert not target.exists()
        assert os.listdir(tmp_path / "spill") == []

    def test_write_row_raises_on_rejected_cell(self, styles):
        worksheet = MagicMock()
        worksheet.write_number.return_value = 0
        worksheet.write_string.return_value = -1
        formats = {styles.data: object()}

        with pytest.raises(SheetLimitError, match="outside the worksheet"):
            write_row(worksheet, _row(styles, 3), formats)

    def test_write_row_accepts_clean_writes(self, styles):
        worksheet = MagicMock()
        for method in ("write_number", "write_string", "write_blank"):
            getattr(worksheet, method).return_value = 0

        write_row(worksheet, Row(index=1, cells=(1, "a", None), style=styles.data), {styles.data: object()})

        assert worksheet.write_blank.call_count == 1


class TestFinalizeFailureCleanup:
    def test_write_failure_releases_worksheet_row_data(self, styles, writer_factory, tmp_path):
        writer = writer_factory(2)
        for i in range(1, 8):
            writer.append(_row(styles, i))
        calls = {"n": 0}

        def failing_write_row(worksheet, row, formats):
            calls["n"] += 1
            if calls["n"] == 3:
                raise OSError("No space left on device")
            write_row(worksheet, row, formats)

        with patch("sheetstream.services.sheet_writer.write_row", side_effect=failing_write_row):
            with pytest.raises(OSError):
                writer.finalize(str(tmp_path / "out.xlsx"))
        writer.dispose()

        assert os.listdir(tmp_path / "spill") == []
