import oracledb
from typing import Dict
import contextlib

from .base import BaseDatabaseAdapter
from sheetstream.core.constants import DEPARTMENTS, POOL_EXHAUSTED_MARKER, USER_COLUMNS
from sheetstream.core.logger import logger

SEED_BATCH_SIZE = 100000


class OracleAdapter(BaseDatabaseAdapter):
    """
    Enterprise Oracle implementation of the database adapter.
    Supports connection pooling; export cursors fetch in bounded array batches.
    """

    def __init__(
        self,
        user: str,
        password: str,
        dsn: str,
        min_pool: int = 5,
        max_pool: int = 20,
        fetch_size: int = 1000,
    ):
        self.fetch_size = fetch_size
        self.pool = oracledb.create_pool(
            user=user,
            password=password,
            dsn=dsn,
            min=min_pool,
            max=max_pool,
            increment=1,
            wait_timeout=2000,  # Fail fast (2s) if pool is exhausted
        )

    @contextlib.contextmanager
    def connection(self):
        """Safe connection context manager with auto-release."""
        try:
            conn = self.pool.acquire()
        except oracledb.DatabaseError as e:
            error_obj = e.args[0]
            # ORA-12541: TNS:no listener, ORA-12170: TNS:Connect timeout
            # ORA-12537: TNS:connection closed
            if hasattr(error_obj, "code") and error_obj.code in (
                12541,
                12170,
                12537,
                28759,
            ):
                raise RuntimeError(f"Oracle Database is unreachable: {str(e)}") from e

            # Pool timeout (DPY-6001 or pool exhausted)
            if "DPY-6001" in str(e) or "pool exhausted" in str(e).lower():
                raise ValueError(
                    f"{POOL_EXHAUSTED_MARKER}: All available connections are in use. "
                    "Please try again in a moment."
                ) from e

            raise

        # Exceptions raised inside the block (query execution, export callbacks)
        # propagate unchanged; the connection always goes back to the pool.
        try:
            logger.debug("Acquired connection from pool")
            yield conn
        finally:
            self.pool.release(conn)
            logger.debug("Released connection back to pool")

    @contextlib.contextmanager
    def cursor(self):
        with self.connection() as conn:
            with conn.cursor() as cursor:
                # Bounded round trips: the driver buffers at most fetch_size rows
                cursor.arraysize = self.fetch_size
                cursor.prefetchrows = self.fetch_size
                yield cursor

    def create_large_dataset(self, row_count: int) -> int:
        """
        Regenerate the users table in batches of SEED_BATCH_SIZE using
        CONNECT BY LEVEL, committing after each batch.
        """
        row_count = int(row_count)
        if row_count < 0:
            raise ValueError(f"row_count must be >= 0, got {row_count}")

        department_case = " ".join(
            f"WHEN {i} THEN '{name}'" for i, name in enumerate(DEPARTMENTS)
        )
        insert_sql = f"""
            INSERT INTO users ({', '.join(USER_COLUMNS)})
            SELECT
                :offset_id + LEVEL,
                'user' || (:offset_id + LEVEL),
                'user' || (:offset_id + LEVEL) || '@example.com',
                CASE WHEN MOD(:offset_id + LEVEL, 10) = 0 THEN NULL
                     ELSE 20 + MOD(:offset_id + LEVEL, 45) END,
                CASE MOD(:offset_id + LEVEL, {len(DEPARTMENTS)}) {department_case} END,
                TIMESTAMP '2024-01-01 00:00:00'
                    + NUMTODSINTERVAL(:offset_id + LEVEL, 'MINUTE'),
                CASE WHEN MOD(:offset_id + LEVEL, 7) = 0 THEN NULL
                     ELSE 1 - MOD(:offset_id + LEVEL, 2) END
            FROM dual
            CONNECT BY LEVEL <= :batch_rows
        """

        inserted = 0
        with self.connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("DELETE FROM users")
                while inserted < row_count:
                    batch_rows = min(SEED_BATCH_SIZE, row_count - inserted)
                    cursor.execute(
                        insert_sql, {"offset_id": inserted, "batch_rows": batch_rows}
                    )
                    conn.commit()
                    inserted += batch_rows
                    logger.info(f"Seeded {inserted}/{row_count} users")
                conn.commit()
        return inserted

    def get_pool_metrics(self) -> Dict[str, int]:
        """Returns current utilization of the database pool."""
        return {
            "pool_max": self.pool.max,
            "pool_min": self.pool.min,
            "pool_busy": self.pool.busy,
            "pool_open": self.pool.opened,
            "pool_wait_count": self.pool.getwaitcount(),
        }

    def close(self):
        logger.info("Closing Oracle connection pool...")
        try:
            self.pool.close()
            logger.info("Oracle connection pool closed successfully.")
        except Exception as e:
            logger.error(f"Error closing Oracle connection pool: {e}")
