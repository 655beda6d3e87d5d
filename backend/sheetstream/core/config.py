import os
import tempfile
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Literal, Optional
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application wide settings loaded from environment variables or .env file.
    Provides strict validation on startup to prevent silent failures.
    """

    APP_NAME: str = "Sheetstream Export Engine"
    ENVIRONMENT: Literal["development", "production", "testing"] = "development"

    # Database Configuration
    DB_ENGINE: Literal["duckdb", "oracledb"] = "duckdb"

    # Embedded DuckDB (development / testing)
    DUCKDB_PATH: str = ":memory:"

    # Oracle Specifics
    ORACLE_USER: str = ""
    ORACLE_PASSWORD: str = ""
    ORACLE_DSN: str = ""
    ORACLE_MIN_POOL: int = int(os.getenv("ORACLE_MIN_POOL", "2"))
    ORACLE_MAX_POOL: int = int(os.getenv("ORACLE_MAX_POOL", "10"))

    # Streaming Export
    EXPORT_WINDOW_SIZE: int = 100
    MEMORY_CHECK_INTERVAL: int = 10000
    MEMORY_WARN_THRESHOLD_PCT: float = 80.0
    MEMORY_LIMIT_MB: Optional[float] = None
    EXPORT_TEMP_DIR: str = os.path.join(tempfile.gettempdir(), "sheetstream_exports")
    FETCH_SIZE: int = 1000

    # Comparison fixture: cap on records the naive exporter may hold
    NAIVE_EXPORT_MAX_ROWS: Optional[int] = None

    # Test data
    SEED_ROW_COUNT: int = 1000000

    # HTTP
    EXPORT_RATE_LIMIT: str = os.getenv("EXPORT_RATE_LIMIT", "5/minute")
    TRUSTED_PROXY: bool = os.getenv("TRUSTED_PROXY", "false").lower() == "true"
    ALLOWED_ORIGINS: list[str] = ["http://localhost:3000"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra env vars passed by system that aren't defined here
    )


@lru_cache()
def get_settings() -> Settings:
    """Cached singleton of application settings."""
    return Settings()
