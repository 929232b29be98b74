"""
Job system Pydantic schemas.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from jobengine.v1.jobs.models import JobStatus


class JobCreate(BaseModel):
    """Schema for creating a new job.

    Field values are checked by JobService.enqueue_job so that malformed input
    surfaces as the engine's ValidationError.
    """

    tenant_id: str = Field(..., description="Owning tenant")
    type: str = Field(..., description="Job type identifier")
    payload: Any = Field(default_factory=dict, description="Opaque job parameters")
    max_attempts: int | None = Field(
        default=None, description="Attempts before failure is terminal"
    )


class JobEnqueueRequest(BaseModel):
    """Schema for enqueueing jobs via API (tenant comes from the request)."""

    type: str = Field(..., description="Job type")
    payload: Any = Field(default_factory=dict, description="Job payload")
    max_attempts: int | None = Field(default=None, description="Attempt ceiling")


class JobEnqueueResponse(BaseModel):
    """Schema for job enqueue response."""

    job_id: UUID
    status: str


class JobResponse(BaseModel):
    """Schema for job API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: str
    type: str
    payload: Any
    status: str
    attempts: int
    max_attempts: int
    last_error: str | None = None
    error_code: str | None = None

    # Lease
    lease_owner: str | None = None
    lease_expires_at: datetime | None = None
    not_before_at: datetime | None = None

    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    """Schema for job list API response."""

    jobs: list[JobResponse]
    total: int
    limit: int
    offset: int


class JobStatsResponse(BaseModel):
    """Schema for per-tenant job statistics."""

    total_jobs: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    queue_depth: int  # pending + processing
    stale_leases: int


# Worker-facing schemas


class ClaimRequest(BaseModel):
    """Schema for claiming the next eligible job."""

    worker_id: str = Field(..., min_length=1, description="Worker identity")
    types: list[str] | None = Field(
        default=None, description="Only claim these job types"
    )
    tenant_id: str | None = Field(default=None, description="Only claim this tenant")


class ClaimResponse(BaseModel):
    """Schema for claim response; job is None when nothing is eligible."""

    job: JobResponse | None = None


class LeaseRequest(BaseModel):
    """Schema for lease renewal and completion."""

    worker_id: str = Field(..., min_length=1, description="Worker identity")


class FailRequest(BaseModel):
    """Schema for reporting a failed attempt."""

    worker_id: str = Field(..., min_length=1, description="Worker identity")
    error: str = Field(..., description="Error description")
    retryable: bool = Field(default=True, description="Whether a retry may help")


class RenewResponse(BaseModel):
    """Schema for lease renewal response."""

    job_id: UUID
    lease_expires_at: datetime


class OutcomeResponse(BaseModel):
    """Schema for complete/fail responses; applied is False for zombie writes."""

    job_id: UUID
    applied: bool


class JobTransitionEvent(BaseModel):
    """Structured event emitted on every job state transition."""

    job_id: UUID
    tenant_id: str
    type: str
    from_status: JobStatus | None
    to_status: JobStatus
    attempts: int
    timestamp: datetime
    worker_id: str | None = None
    error: str | None = None
