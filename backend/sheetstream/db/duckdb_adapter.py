import contextlib
from typing import Iterable

import duckdb

from .base import BaseDatabaseAdapter
from sheetstream.core.constants import DEPARTMENTS, USER_COLUMNS
from sheetstream.core.logger import logger
from sheetstream.schemas.user import UserRecord

USERS_DDL = """
    CREATE TABLE IF NOT EXISTS users (
        id BIGINT PRIMARY KEY,
        username VARCHAR NOT NULL,
        email VARCHAR NOT NULL,
        age INTEGER,
        department VARCHAR NOT NULL,
        created_at TIMESTAMP,
        active BOOLEAN
    )
"""


class DuckDBAdapter(BaseDatabaseAdapter):
    """
    Embedded DuckDB implementation of the database adapter.
    Used for local development and tests in place of the Oracle pool.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._conn = duckdb.connect(path)
        self._conn.execute(USERS_DDL)
        logger.info(f"DuckDB adapter ready at {path}")

    @contextlib.contextmanager
    def cursor(self):
        """Each cursor is a duplicate connection on the same database."""
        cursor = self._conn.cursor()
        try:
            yield cursor
        finally:
            cursor.close()

    def insert_users(self, records: Iterable[UserRecord]) -> int:
        rows = [
            (r.id, r.username, r.email, r.age, r.department, r.created_at, r.active)
            for r in records
        ]
        if not rows:
            return 0
        placeholders = ", ".join("?" for _ in USER_COLUMNS)
        with self.cursor() as cursor:
            cursor.executemany(
                f"INSERT INTO users ({', '.join(USER_COLUMNS)}) VALUES ({placeholders})",
                rows,
            )
        return len(rows)

    def create_large_dataset(self, row_count: int) -> int:
        """
        Set-based bulk generation: every 10th user has no age, every 7th has
        no active flag, departments rotate.
        """
        row_count = int(row_count)
        if row_count < 0:
            raise ValueError(f"row_count must be >= 0, got {row_count}")

        department_case = " ".join(
            f"WHEN {i} THEN '{name}'" for i, name in enumerate(DEPARTMENTS)
        )
        query = f"""
            INSERT INTO users ({', '.join(USER_COLUMNS)})
            SELECT
                i,
                'user' || i,
                'user' || i || '@example.com',
                CASE WHEN i % 10 = 0 THEN NULL ELSE 20 + (i % 45) END,
                CASE i % {len(DEPARTMENTS)} {department_case} END,
                TIMESTAMP '2024-01-01 00:00:00' + to_minutes(i),
                CASE WHEN i % 7 = 0 THEN NULL ELSE i % 2 = 0 END
            FROM range(1, {row_count + 1}) t(i)
        """

        # DELETE and INSERT commit together; a failed insert keeps the old rows
        with self.cursor() as cursor:
            cursor.execute("BEGIN TRANSACTION")
            try:
                cursor.execute("DELETE FROM users")
                if row_count:
                    cursor.execute(query)
                cursor.execute("COMMIT")
            except Exception:
                cursor.execute("ROLLBACK")
                raise
        logger.info(f"Generated {row_count} users in DuckDB")
        return row_count

    def close(self):
        logger.info("Closing DuckDB connection...")
        try:
            self._conn.close()
            logger.info("DuckDB connection closed successfully.")
        except Exception as e:
            logger.error(f"Error closing DuckDB connection: {e}")
