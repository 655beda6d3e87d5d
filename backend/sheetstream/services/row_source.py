"""
Row Sources — push-based record producers.

A source is handed a per-record callback and drives it itself: exactly once
per record, in source order, synchronously. If the callback raises, the source
stops fetching, releases its cursor, and lets the callback's exception
propagate unchanged. Failures of the data access layer itself are raised as
SourceError. There is no other cancellation mechanism.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import ExitStack
from typing import Any, Callable, ContextManager, Dict, Iterable, Optional

from sheetstream.core.errors import SourceError
from sheetstream.schemas.user import UserRecord

logger = logging.getLogger(__name__)

RecordCallback = Callable[[UserRecord], None]


class RowSource(ABC):
    """Contract for anything that can push records to a consumer."""

    def __init__(self):
        self._streaming = False

    def stream(self, callback: RecordCallback) -> int:
        """
        Deliver every record to ``callback``. Returns the number delivered.
        Not reentrant: a callback may not start another stream on the same source.
        """
        if self._streaming:
            raise RuntimeError(f"{type(self).__name__} is already streaming")
        self._streaming = True
        try:
            return self._produce(callback)
        finally:
            self._streaming = False

    @abstractmethod
    def _produce(self, callback: RecordCallback) -> int:
        pass


class CursorRowSource(RowSource):
    """
    Streams rows from a DB-API cursor.

    ``open_cursor`` must be a context-manager factory yielding a cursor; the
    cursor (and the pooled connection behind it) is released when the context
    exits, whichever way the stream ends. Rows are fetched in bounded
    ``fetchmany`` batches and dispatched one at a time.
    """

    def __init__(
        self,
        open_cursor: Callable[[], ContextManager[Any]],
        query: str,
        params: Optional[Dict[str, Any]] = None,
        fetch_size: int = 1000,
        row_mapper: Callable[[Any], UserRecord] = UserRecord.from_row,
    ):
        super().__init__()
        if fetch_size < 1:
            raise ValueError(f"fetch_size must be >= 1, got {fetch_size}")
        self._open_cursor = open_cursor
        self._query = query
        self._params = params
        self._fetch_size = fetch_size
        self._row_mapper = row_mapper

    def _produce(self, callback: RecordCallback) -> int:
        delivered = 0
        with ExitStack() as stack:
            try:
                cursor = stack.enter_context(self._open_cursor())
            except Exception as e:
                raise SourceError("Could not open cursor", str(e)) from e
            stack.callback(
                lambda: logger.debug(f"Cursor released after {delivered} records")
            )

            try:
                if self._params:
                    cursor.execute(self._query, self._params)
                else:
                    cursor.execute(self._query)
            except Exception as e:
                raise SourceError("Query execution failed", str(e)) from e

            while True:
                try:
                    batch = cursor.fetchmany(self._fetch_size)
                except Exception as e:
                    raise SourceError(
                        f"Fetch failed after {delivered} records", str(e)
                    ) from e
                if not batch:
                    break

                for raw in batch:
                    try:
                        record = self._row_mapper(raw)
                    except Exception as e:
                        raise SourceError(
                            f"Could not map row #{delivered + 1}", str(e)
                        ) from e
                    callback(record)
                    delivered += 1

        return delivered


class IterableRowSource(RowSource):
    """
    Streams records from any iterable, typically a generator.
    Errors raised by the iterable itself surface as SourceError; a generator is
    closed when the stream stops early.
    """

    def __init__(self, records: Iterable[UserRecord]):
        super().__init__()
        self._records = records

    def _produce(self, callback: RecordCallback) -> int:
        delivered = 0
        iterator = iter(self._records)
        try:
            while True:
                try:
                    record = next(iterator)
                except StopIteration:
                    break
                except Exception as e:
                    raise SourceError(
                        f"Record iterator failed after {delivered} records", str(e)
                    ) from e
                callback(record)
                delivered += 1
        finally:
            close = getattr(iterator, "close", None)
            if close is not None:
                close()
        return delivered
