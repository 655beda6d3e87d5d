"""
Request/response schemas for the export and diagnostic endpoints.
"""

from datetime import datetime
from pydantic import BaseModel, Field


class MemoryStatusResponse(BaseModel):
    """Returned by /memory/status. Computed fresh on every call."""

    used_mb: float = Field(..., ge=0, description="Resident memory of the process")
    max_mb: float = Field(..., gt=0, description="Configured or physical ceiling")
    usage_percent: float = Field(..., ge=0, le=100)
    timestamp: datetime


class UserCountResponse(BaseModel):
    """Returned by /users/count."""

    total_rows: int = Field(0, ge=0)


class DataSetupResponse(BaseModel):
    """Returned when the test dataset has been (re)generated."""

    total_rows: int = Field(0, ge=0, description="Rows in the users dataset after seeding")
    inserted_rows: int = Field(0, ge=0)
    execution_time_ms: float = Field(0.0, ge=0)
    message: str = ""
