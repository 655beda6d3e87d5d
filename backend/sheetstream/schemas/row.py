from dataclasses import dataclass
from typing import Optional, Tuple, Union

from sheetstream.services.styles import CellStyle

CellValue = Optional[Union[int, float, str]]


@dataclass(frozen=True)
class Row:
    """
    Formatted cells for one output row, 1:1 with a record.
    ``index`` is the 0-based sheet row, assigned at creation and never reused.
    """

    index: int
    cells: Tuple[CellValue, ...]
    style: CellStyle
