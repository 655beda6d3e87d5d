from sheetstream.core.constants import HEADER_LABELS
from sheetstream.core.errors import RowFormatError
from sheetstream.schemas.user import UserRecord
from sheetstream.schemas.row import Row
from sheetstream.services.styles import CellStyle, StyleRegistry

REQUIRED_FIELDS = ("id", "username", "email", "department")


def header_row(styles: StyleRegistry) -> Row:
    """Row 0: fixed column labels in header style."""
    return Row(index=0, cells=HEADER_LABELS, style=styles.header)


def format_record(
    record: UserRecord, index: int, style: CellStyle, position: int
) -> Row:
    """
    Render one record into a row.

    Optional fields (age, created_at, active) become empty cells; a missing
    required field raises RowFormatError naming the record's 1-based position.
    """
    for name in REQUIRED_FIELDS:
        if getattr(record, name, None) is None:
            raise RowFormatError(f"Required field '{name}' is missing", position)

    created_at = record.created_at
    if created_at is not None and hasattr(created_at, "isoformat"):
        created_at = created_at.isoformat()
    elif created_at is not None:
        created_at = str(created_at)

    if record.active is None:
        active = None
    else:
        active = "true" if record.active else "false"

    return Row(
        index=index,
        cells=(
            record.id,
            str(record.username),
            str(record.email),
            record.age,
            str(record.department),
            created_at,
            active,
        ),
        style=style,
    )
