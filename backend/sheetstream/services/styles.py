"""
Style Registry — the fixed set of cell styles shared by every row of one export.

Styles are plain immutable descriptors created once per export. They are
bound to xlsxwriter Formats once per workbook, so the number of formats in the
output is constant regardless of how many rows reference them.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from sheetstream.core.constants import EXCEL_STYLES

HEADER = "header"
DATA = "data"


@dataclass(frozen=True)
class CellStyle:
    """Immutable formatting descriptor applied to cells by reference."""

    role: str
    bold: bool = False
    font_size: Optional[int] = None
    bg_color: Optional[str] = None
    border: int = EXCEL_STYLES["border"]

    def to_format_properties(self) -> Dict[str, object]:
        """xlsxwriter add_format() properties for this style."""
        props: Dict[str, object] = {"border": self.border}
        if self.bold:
            props["bold"] = True
        if self.font_size:
            props["font_size"] = self.font_size
        if self.bg_color:
            props["bg_color"] = self.bg_color
            props["pattern"] = 1  # Solid fill
        return props


class StyleRegistry:
    """
    Holds the header and data styles for a single export.
    Construct one per export and pass it explicitly; never share it globally.
    """

    def __init__(self):
        self._styles: Dict[str, CellStyle] = {
            HEADER: CellStyle(
                role=HEADER,
                bold=True,
                font_size=EXCEL_STYLES["header_font_size"],
                bg_color=EXCEL_STYLES["header_bg"],
            ),
            DATA: CellStyle(role=DATA),
        }

    @property
    def header(self) -> CellStyle:
        return self._styles[HEADER]

    @property
    def data(self) -> CellStyle:
        return self._styles[DATA]

    def by_role(self, role: str) -> CellStyle:
        try:
            return self._styles[role]
        except KeyError:
            raise KeyError(f"Unknown style role: {role!r}") from None

    def __len__(self) -> int:
        return len(self._styles)

    def bind(self, workbook) -> Dict[CellStyle, object]:
        """Create exactly one xlsxwriter Format per style in ``workbook``."""
        return {
            style: workbook.add_format(style.to_format_properties())
            for style in self._styles.values()
        }
