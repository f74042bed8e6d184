import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from catalog_sync.models.job import JobStatus, JobType


class JobResponse(BaseModel):
    """Read model of a ledger entry for reporting."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: JobType
    status: JobStatus
    trigger: str
    started_at: datetime | None
    completed_at: datetime | None
    error: str | None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="job_metadata")
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """One page of jobs plus the unpaginated total."""

    jobs: list[JobResponse]
    total: int
    page: int
    page_size: int
