"""
Job system Pydantic schemas.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str | None = Field(default=None, description="Payload type or display name")
    priority: int
    run_at: datetime
    attempts: int

    # Worker coordination
    locked_at: datetime | None = None
    locked_by: str | None = None

    # Failure tracking
    last_error: str | None = None
    failed_at: datetime | None = None

    unique_key: str | None = None
    server: str | None = None
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int


class JobStatsResponse(BaseModel):
    """Schema for job statistics."""

    total: int
    pending: int
    locked: int
    failed: int
