"""
Overflow Store — append-only disk spill for rows evicted from the window.

Rows are written as JSON lines in eviction order (== creation order) and read
back exactly once, front to back, when the writer finalizes. There is no
random access and no read path during the write phase.
"""

import json
import logging
import os
import tempfile
from typing import Callable, Iterator, Optional

from sheetstream.core.errors import (
    FinalizationError,
    OverflowWriteError,
    WriterStateError,
)
from sheetstream.schemas.row import Row
from sheetstream.services.styles import CellStyle

logger = logging.getLogger(__name__)


class OverflowStore:
    """
    Sequential-write, read-once spill file.

    The file is created lazily on the first append so exports that never
    exceed the window touch no disk at all.
    """

    def __init__(
        self,
        resolve_style: Callable[[str], CellStyle],
        temp_dir: Optional[str] = None,
    ):
        self._resolve_style = resolve_style
        self._temp_dir = temp_dir
        self._path: Optional[str] = None
        self._handle = None
        self._count = 0
        self._drained = False

    @property
    def path(self) -> Optional[str]:
        return self._path

    def __len__(self) -> int:
        return self._count

    def append(self, row: Row) -> None:
        if self._drained:
            raise WriterStateError("Overflow store is read-only after drain")

        line = json.dumps(
            {"i": row.index, "s": row.style.role, "c": list(row.cells)},
            ensure_ascii=False,
        )
        try:
            if self._handle is None:
                self._open()
            self._handle.write(line + "\n")
        except OSError as e:
            raise OverflowWriteError(
                f"Failed to spill row {row.index} to overflow store", self._path
            ) from e
        self._count += 1

    def drain(self) -> Iterator[Row]:
        """Yield every stored row in eviction order. Usable once."""
        if self._drained:
            raise WriterStateError("Overflow store has already been drained")
        self._drained = True

        if self._handle is not None:
            try:
                self._handle.close()
            except OSError as e:
                raise OverflowWriteError(
                    "Failed to flush overflow store", self._path
                ) from e
            self._handle = None
        return self._read()

    def _read(self) -> Iterator[Row]:
        if self._path is None:
            return

        with open(self._path, "r", encoding="utf-8") as f:
            for line in f:
                payload = json.loads(line)
                yield Row(
                    index=payload["i"],
                    cells=tuple(payload["c"]),
                    style=self._resolve_style(payload["s"]),
                )

    def delete(self) -> None:
        """Close and remove the spill file. Safe to call more than once."""
        path = self._path
        try:
            if self._handle is not None:
                self._handle.close()
            if path and os.path.exists(path):
                os.remove(path)
        except OSError as e:
            raise FinalizationError("Failed to delete overflow store", path) from e
        finally:
            self._handle = None
            self._path = None
        if path:
            logger.debug(f"Overflow store {path} removed ({self._count} rows)")

    def _open(self):
        if self._temp_dir:
            os.makedirs(self._temp_dir, exist_ok=True)
        fd, self._path = tempfile.mkstemp(
            prefix="overflow_", suffix=".jsonl", dir=self._temp_dir
        )
        self._handle = os.fdopen(fd, "w", encoding="utf-8")
        logger.debug(f"Overflow store opened at {self._path}")
