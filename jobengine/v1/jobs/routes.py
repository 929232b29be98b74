"""
Job API endpoints.

/jobs is the tenant-facing surface (enqueue, inspect, cancel). /leases lets
out-of-process workers claim jobs and report outcomes over HTTP.
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.config.settings import Settings, SettingsDep
from jobengine.infra.database import get_session
from jobengine.v1.core.exceptions import NotFoundError, create_success_response
from jobengine.v1.core.security import TenantContext, TenantDep
from jobengine.v1.jobs.events import JobEventSink, LoggingEventSink
from jobengine.v1.jobs.lease import LeaseManager
from jobengine.v1.jobs.models import JobErrorCode, JobStatus
from jobengine.v1.jobs.reducer import OutcomeReducer
from jobengine.v1.jobs.schemas import (
    ClaimRequest,
    ClaimResponse,
    FailRequest,
    JobCreate,
    JobEnqueueRequest,
    JobListResponse,
    JobResponse,
    LeaseRequest,
    OutcomeResponse,
    RenewResponse,
)
from jobengine.v1.jobs.service import JobService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])
lease_router = APIRouter(prefix="/leases", tags=["leases"])


def get_event_sink() -> JobEventSink:
    return LoggingEventSink()


def get_job_service(
    settings: Settings = SettingsDep,
    event_sink: JobEventSink = Depends(get_event_sink),
) -> JobService:
    return JobService(settings, event_sink=event_sink)


def get_lease_manager(
    settings: Settings = SettingsDep,
    event_sink: JobEventSink = Depends(get_event_sink),
) -> LeaseManager:
    return LeaseManager(settings, event_sink=event_sink)


def get_outcome_reducer(
    settings: Settings = SettingsDep,
    event_sink: JobEventSink = Depends(get_event_sink),
) -> OutcomeReducer:
    return OutcomeReducer(settings, event_sink=event_sink)


@router.post("", response_model=dict)
async def enqueue_job(
    job_request: JobEnqueueRequest,
    tenant: TenantContext = TenantDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Enqueue a new background job."""
    job_create = JobCreate(
        tenant_id=tenant.tenant_id,
        type=job_request.type,
        payload=job_request.payload,
        max_attempts=job_request.max_attempts,
    )

    result = await job_service.enqueue_job(session, job_create)

    logger.info(
        "Job enqueued via API",
        extra={
            "job_id": str(result.job_id),
            "type": job_request.type,
            "tenant_id": tenant.tenant_id,
        },
    )

    return create_success_response(data=result.model_dump(mode="json"))


@router.get("", response_model=dict)
async def list_jobs(
    status: list[JobStatus] | None = Query(
        default=None, description="Filter by status"
    ),
    type: str | None = Query(default=None, description="Filter by job type"),
    limit: int = Query(default=50, ge=1, le=1000, description="Maximum results"),
    offset: int = Query(default=0, ge=0, description="Results offset"),
    tenant: TenantContext = TenantDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """List jobs with filtering and pagination."""
    jobs, total = await job_service.list_jobs(
        session,
        tenant.tenant_id,
        status=status,
        job_type=type,
        limit=limit,
        offset=offset,
    )

    response_data = JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=total,
        limit=limit,
        offset=offset,
    )

    return create_success_response(data=response_data.model_dump(mode="json"))


@router.get("/stats/overview", response_model=dict)
async def get_job_stats(
    tenant: TenantContext = TenantDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Get job statistics for the tenant."""
    stats = await job_service.get_job_stats(session, tenant.tenant_id)

    return create_success_response(data=stats.model_dump())


@router.get("/{job_id}", response_model=dict)
async def get_job(
    job_id: UUID,
    tenant: TenantContext = TenantDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Get a specific job by ID."""
    job = await job_service.get_job(session, job_id, tenant.tenant_id)

    if not job:
        raise NotFoundError("Job not found", {"job_id": str(job_id)})

    return create_success_response(
        data=JobResponse.model_validate(job).model_dump(mode="json")
    )


@router.post("/{job_id}/cancel", response_model=dict)
async def cancel_job(
    job_id: UUID,
    tenant: TenantContext = TenantDep,
    session: AsyncSession = Depends(get_session),
    job_service: JobService = Depends(get_job_service),
) -> dict[str, Any]:
    """Cancel a pending or processing job."""
    success = await job_service.cancel_job(session, job_id, tenant.tenant_id)

    if not success:
        raise NotFoundError(
            "Job not found or not eligible for cancellation", {"job_id": str(job_id)}
        )

    logger.info(
        "Job canceled via API",
        extra={"job_id": str(job_id), "tenant_id": tenant.tenant_id},
    )

    return create_success_response(data={"success": True, "job_id": str(job_id)})


@lease_router.post("/claim", response_model=dict)
async def claim_job(
    claim_request: ClaimRequest,
    session: AsyncSession = Depends(get_session),
    lease_manager: LeaseManager = Depends(get_lease_manager),
) -> dict[str, Any]:
    """Claim the oldest eligible job; data.job is null when the queue is empty."""
    job = await lease_manager.claim(
        session,
        claim_request.worker_id,
        job_types=claim_request.types,
        tenant_id=claim_request.tenant_id,
    )

    response = ClaimResponse(job=JobResponse.model_validate(job) if job else None)
    return create_success_response(data=response.model_dump(mode="json"))


@lease_router.post("/{job_id}/renew", response_model=dict)
async def renew_lease(
    job_id: UUID,
    lease_request: LeaseRequest,
    session: AsyncSession = Depends(get_session),
    lease_manager: LeaseManager = Depends(get_lease_manager),
) -> dict[str, Any]:
    """Extend a lease; 409 when the caller no longer holds it."""
    lease_expires_at = await lease_manager.renew(
        session, job_id, lease_request.worker_id
    )

    response = RenewResponse(job_id=job_id, lease_expires_at=lease_expires_at)
    return create_success_response(data=response.model_dump(mode="json"))


@lease_router.post("/{job_id}/complete", response_model=dict)
async def complete_job(
    job_id: UUID,
    lease_request: LeaseRequest,
    session: AsyncSession = Depends(get_session),
    reducer: OutcomeReducer = Depends(get_outcome_reducer),
) -> dict[str, Any]:
    """Report success. applied is false when the caller is not the lease holder."""
    applied = await reducer.complete(session, job_id, lease_request.worker_id)

    response = OutcomeResponse(job_id=job_id, applied=applied)
    return create_success_response(data=response.model_dump(mode="json"))


@lease_router.post("/{job_id}/fail", response_model=dict)
async def fail_job(
    job_id: UUID,
    fail_request: FailRequest,
    session: AsyncSession = Depends(get_session),
    reducer: OutcomeReducer = Depends(get_outcome_reducer),
) -> dict[str, Any]:
    """Report a failed attempt. applied is false when the caller is not the lease holder."""
    applied = await reducer.fail(
        session,
        job_id,
        fail_request.worker_id,
        fail_request.error,
        retryable=fail_request.retryable,
        error_code=(
            JobErrorCode.HANDLER_ERROR
            if fail_request.retryable
            else JobErrorCode.NON_RETRYABLE
        ),
    )

    response = OutcomeResponse(job_id=job_id, applied=applied)
    return create_success_response(data=response.model_dump(mode="json"))
