# Excel Export Styling
EXCEL_STYLES = {
    "header_bg": "#D9D9D9",  # Grey 25%
    "header_font_size": 12,
    "border": 1,  # Thin
    "column_width": 22,
}

SHEET_NAME = "Users"

# Output column contract (fixed order)
HEADER_LABELS = (
    "ID",
    "Username",
    "Email",
    "Age",
    "Department",
    "CreatedAt",
    "Active",
)

# Select order expected by UserRecord.from_row
USER_COLUMNS = (
    "id",
    "username",
    "email",
    "age",
    "department",
    "created_at",
    "active",
)

# Delivery
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
STREAMING_FILENAME = "users_streaming.xlsx"
TRADITIONAL_FILENAME = "users_traditional.xlsx"

# Export Chunking
STREAM_BUFFER_SIZE = 65536

DEPARTMENTS = ("Engineering", "Sales", "Marketing", "HR", "Finance", "Operations")

# xlsx worksheet limits: 1,048,576 rows (0-based index <= 1,048,575), 32,767 chars per cell
MAX_SHEET_ROW_INDEX = 1048575
MAX_CELL_CHARS = 32767

# Marker raised by the Oracle adapter when no pooled connection is free
POOL_EXHAUSTED_MARKER = "DATABASE_POOL_EXHAUSTED"
POOL_RETRY_AFTER_SECONDS = 5
