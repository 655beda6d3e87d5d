from abc import ABC, abstractmethod
from typing import List

from sheetstream.core.constants import USER_COLUMNS
from sheetstream.schemas.user import UserRecord
from sheetstream.services.row_source import CursorRowSource, RowSource

USERS_QUERY = f"SELECT {', '.join(USER_COLUMNS)} FROM users ORDER BY id"


class BaseDatabaseAdapter(ABC):
    """
    Abstract base class defining the contract for all database adapters.
    This keeps the export engine decoupled from the underlying database
    technology (DuckDB, Oracle, etc).
    """

    @abstractmethod
    def cursor(self):
        """
        Context manager yielding a DB-API cursor on a dedicated connection.
        The cursor and connection are released when the context exits.
        """
        pass

    def user_source(self, fetch_size: int = 1000) -> RowSource:
        """
        Push-based source over every user, ordered by id.
        Never materializes the result set; rows are fetched in bounded batches.
        """
        return CursorRowSource(self.cursor, USERS_QUERY, fetch_size=fetch_size)

    def fetch_all_users(self) -> List[UserRecord]:
        """
        Load every user into one list; memory grows with the table. Not used by
        either export path (both consume user_source); kept for small reads and
        for verifying seeded data.
        """
        with self.cursor() as cursor:
            cursor.execute(USERS_QUERY)
            return [UserRecord.from_row(row) for row in cursor.fetchall()]

    def count_users(self) -> int:
        with self.cursor() as cursor:
            cursor.execute("SELECT COUNT(*) FROM users")
            row = cursor.fetchone()
            return int(row[0]) if row else 0

    @abstractmethod
    def create_large_dataset(self, row_count: int) -> int:
        """
        Replace the users table content with ``row_count`` generated users.
        Returns the number of rows inserted.
        """
        pass

    @abstractmethod
    def close(self):
        """
        Close the database connection cleanly.
        """
        pass
