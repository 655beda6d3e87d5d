from typing import Callable, Dict

from .base import BaseDatabaseAdapter
from sheetstream.core.config import Settings, get_settings
from sheetstream.core.logger import logger

_ADAPTER_INSTANCE = None


def _build_oracle(settings: Settings) -> BaseDatabaseAdapter:
    from .oracle_adapter import OracleAdapter

    return OracleAdapter(
        user=settings.ORACLE_USER,
        password=settings.ORACLE_PASSWORD,
        dsn=settings.ORACLE_DSN,
        min_pool=settings.ORACLE_MIN_POOL,
        max_pool=settings.ORACLE_MAX_POOL,
        fetch_size=settings.FETCH_SIZE,
    )


def _build_duckdb(settings: Settings) -> BaseDatabaseAdapter:
    from .duckdb_adapter import DuckDBAdapter

    return DuckDBAdapter(path=settings.DUCKDB_PATH)


# Drivers are imported lazily so a DuckDB-only install never needs oracledb
ADAPTER_BUILDERS: Dict[str, Callable[[Settings], BaseDatabaseAdapter]] = {
    "oracledb": _build_oracle,
    "duckdb": _build_duckdb,
}


def build_database_adapter(settings: Settings) -> BaseDatabaseAdapter:
    """Create a new adapter for ``settings.DB_ENGINE``."""
    engine = settings.DB_ENGINE.lower()
    try:
        builder = ADAPTER_BUILDERS[engine]
    except KeyError:
        raise ValueError(f"Unsupported DB_ENGINE option: {engine}") from None
    logger.info(f"Creating {engine} database adapter")
    return builder(settings)


def get_database_adapter() -> BaseDatabaseAdapter:
    """
    Process-wide adapter shared by every request, built on first use from
    the cached settings. The export engine itself keeps no global state.
    """
    global _ADAPTER_INSTANCE
    if _ADAPTER_INSTANCE is None:
        _ADAPTER_INSTANCE = build_database_adapter(get_settings())
    return _ADAPTER_INSTANCE


def close_database_adapter():
    """Cleanly shutdown the global database adapter."""
    global _ADAPTER_INSTANCE
    if _ADAPTER_INSTANCE is not None:
        _ADAPTER_INSTANCE.close()
        _ADAPTER_INSTANCE = None
