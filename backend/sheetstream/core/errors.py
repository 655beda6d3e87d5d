"""
Export error taxonomy.

Every failure inside an export is raised as one of the ExportError subclasses
below; the pipeline re-raises them to its caller as ExportAbortedError so a
failed export can never be mistaken for a usable file.
"""

from enum import Enum
from typing import Any, Optional

from sheetstream.core.constants import POOL_EXHAUSTED_MARKER


class ExportError(Exception):
    """Base class for all export engine failures."""

    def __init__(self, message: str, context: Any = None):
        if context:
            super().__init__(f"{message} (Context: {context})")
        else:
            super().__init__(message)
        self.context = context


class SourceError(ExportError):
    """The row source failed to produce further records (cursor/connection failure)."""


class RowFormatError(ExportError):
    """A record could not be rendered into a row."""

    def __init__(self, message: str, position: int, context: Any = None):
        super().__init__(f"{message} at record #{position}", context)
        self.position = position


class OverflowWriteError(ExportError):
    """The overflow store rejected an evicted row (e.g. disk full)."""


class FinalizationError(ExportError):
    """Cleanup (deleting the overflow store, closing handles) failed."""


class WriterStateError(ExportError):
    """The writer or overflow store was used outside its lifecycle."""


class SheetLimitError(ExportError):
    """A row or cell does not fit in an xlsx worksheet; writing it would truncate the file."""


class ResourceExhaustedError(ExportError):
    """A bounded exporter refused to hold more records."""


class ExportStage(str, Enum):
    """How far an export got before it failed."""

    BEFORE_OUTPUT = "before_output"
    PARTIAL_STATE = "partial_state"


class ExportAbortedError(ExportError):
    """
    Single failure outcome surfaced to the pipeline's caller.

    ``stage`` tells whether any data row had reached the writer; the original
    error is chained as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        stage: ExportStage,
        rows_processed: int = 0,
        context: Optional[Any] = None,
    ):
        super().__init__(message, context)
        self.stage = stage
        self.rows_processed = rows_processed


def is_pool_exhausted(exc: Optional[BaseException]) -> bool:
    """True if ``exc`` or anything in its cause chain is the adapter's pool-exhausted error."""
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, ValueError) and POOL_EXHAUSTED_MARKER in str(exc):
            return True
        exc = exc.__cause__ or exc.__context__
    return False
