"""Schemas for the failed job admin and trigger endpoints."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from resilience.models.failed_job import JobType


class FailedJobCreate(BaseModel):
    job_type: JobType
    job_name: str = Field(min_length=1, max_length=255)
    payload: dict[str, Any] = Field(default_factory=dict)
    max_attempts: int | None = Field(default=None, ge=1, le=50)
    metadata: dict[str, Any] | None = None


class FailedJobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    job_name: str
    job_type: str
    payload: dict[str, Any]
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="job_metadata")
    status: str
    attempt_count: int
    max_attempts: int
    next_retry_at: datetime
    last_attempted_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    error_stack: str | None = None
    created_at: datetime


class FailedJobListResponse(BaseModel):
    items: list[FailedJobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    pending: int = 0
    retrying: int = 0
    succeeded: int = 0
    failed: int = 0
    total: int = 0


class RetryRunResponse(BaseModel):
    processed: int
    succeeded: int
    requeued: int
    failed: int
    skipped: int
    released: int
    errors: list[dict[str, Any]]

