"""
Job service: enqueueing and tenant-scoped job management.
"""

import logging
import uuid
from uuid import UUID

from sqlalchemy import and_, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.config.settings import Settings
from jobengine.infra.database import store_guard
from jobengine.v1.core.clock import Clock, utcnow
from jobengine.v1.core.exceptions import ValidationError
from jobengine.v1.jobs.events import JobEventSink, NullEventSink, emit_transition
from jobengine.v1.jobs.models import Job, JobErrorCode, JobStatus
from jobengine.v1.jobs.schemas import (
    JobCreate,
    JobEnqueueResponse,
    JobStatsResponse,
)

logger = logging.getLogger(__name__)

CANCELED_ERROR = "Job canceled by user"


class JobService:
    """Service for enqueueing jobs and querying them per tenant."""

    def __init__(
        self,
        settings: Settings,
        event_sink: JobEventSink | None = None,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.event_sink = event_sink or NullEventSink()
        self.clock = clock

    async def enqueue_job(
        self, session: AsyncSession, job_create: JobCreate
    ) -> JobEnqueueResponse:
        """
        Enqueue a new job in the pending state.

        Args:
            session: Database session
            job_create: Job creation parameters

        Returns:
            Job enqueue response with the new job_id

        Raises:
            ValidationError: tenant or type is empty, or max_attempts < 1
            StoreUnavailable: the store could not be written
        """
        tenant_id = (job_create.tenant_id or "").strip()
        job_type = (job_create.type or "").strip()
        max_attempts = (
            job_create.max_attempts
            if job_create.max_attempts is not None
            else self.settings.job_default_max_attempts
        )

        if not tenant_id:
            raise ValidationError("tenant_id is required", {"field": "tenant_id"})
        if not job_type:
            raise ValidationError("type is required", {"field": "type"})
        if max_attempts < 1:
            raise ValidationError(
                "max_attempts must be at least 1",
                {"field": "max_attempts", "value": max_attempts},
            )

        now = self.clock()
        job = Job(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            type=job_type,
            payload=job_create.payload,
            status=JobStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts,
            created_at=now,
            updated_at=now,
        )

        async with store_guard(session, "enqueue"):
            session.add(job)
            await session.commit()

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job.id),
                "type": job.type,
                "tenant_id": tenant_id,
                "max_attempts": max_attempts,
            },
        )
        emit_transition(self.event_sink, job, None, JobStatus.PENDING, now)

        return JobEnqueueResponse(job_id=job.id, status=job.status)

    async def get_job(
        self, session: AsyncSession, job_id: UUID, tenant_id: str
    ) -> Job | None:
        """Get a job by ID within a tenant."""
        async with store_guard(session, "get_job"):
            result = await session.execute(
                select(Job)
                .where(Job.id == job_id, Job.tenant_id == tenant_id)
                .execution_options(populate_existing=True)
            )
            return result.scalar_one_or_none()

    async def list_jobs(
        self,
        session: AsyncSession,
        tenant_id: str,
        status: list[JobStatus] | None = None,
        job_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Job], int]:
        """List a tenant's jobs newest first, with the total before paging."""
        base_query = select(Job).where(Job.tenant_id == tenant_id)

        if status:
            base_query = base_query.where(Job.status.in_([s.value for s in status]))

        if job_type:
            base_query = base_query.where(Job.type == job_type)

        async with store_guard(session, "list_jobs"):
            count_query = select(func.count()).select_from(base_query.subquery())
            total = (await session.execute(count_query)).scalar() or 0

            jobs_query = (
                base_query.order_by(desc(Job.created_at), desc(Job.id))
                .offset(offset)
                .limit(limit)
                .execution_options(populate_existing=True)
            )
            jobs = list((await session.execute(jobs_query)).scalars().all())

        return jobs, total

    async def get_job_stats(
        self, session: AsyncSession, tenant_id: str
    ) -> JobStatsResponse:
        """Get job counts for a tenant."""
        now = self.clock()
        tenant_filter = Job.tenant_id == tenant_id

        async with store_guard(session, "get_job_stats"):
            status_result = await session.execute(
                select(Job.status, func.count(Job.id))
                .where(tenant_filter)
                .group_by(Job.status)
            )
            by_status = {s.value: 0 for s in JobStatus}
            by_status.update(dict(status_result.all()))

            type_result = await session.execute(
                select(Job.type, func.count(Job.id))
                .where(tenant_filter)
                .group_by(Job.type)
            )
            by_type = dict(type_result.all())

            stale_result = await session.execute(
                select(func.count(Job.id)).where(
                    tenant_filter, self._stale_lease_filter(now)
                )
            )
            stale_leases = stale_result.scalar() or 0

        return JobStatsResponse(
            total_jobs=sum(by_status.values()),
            by_status=by_status,
            by_type=by_type,
            queue_depth=by_status[JobStatus.PENDING.value]
            + by_status[JobStatus.PROCESSING.value],
            stale_leases=stale_leases,
        )

    async def list_stale_jobs(
        self, session: AsyncSession, tenant_id: str | None = None
    ) -> list[Job]:
        """Processing jobs whose lease expired, oldest first."""
        query = select(Job).where(self._stale_lease_filter(self.clock()))
        if tenant_id:
            query = query.where(Job.tenant_id == tenant_id)

        async with store_guard(session, "list_stale_jobs"):
            result = await session.execute(
                query.order_by(Job.lease_expires_at).execution_options(
                    populate_existing=True
                )
            )
            return list(result.scalars().all())

    async def cancel_job(
        self, session: AsyncSession, job_id: UUID, tenant_id: str
    ) -> bool:
        """Fail a pending or processing job on user request."""
        now = self.clock()

        async with store_guard(session, "cancel_job"):
            job = await self.get_job(session, job_id, tenant_id)
            if job is None or not job.is_active():
                await session.commit()
                return False

            from_status = JobStatus(job.status)
            result = await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.id == job_id,
                        Job.tenant_id == tenant_id,
                        Job.status == job.status,
                        Job.attempts == job.attempts,
                    )
                )
                .values(
                    status=JobStatus.FAILED.value,
                    last_error=CANCELED_ERROR,
                    error_code=JobErrorCode.CANCELED.value,
                    lease_owner=None,
                    lease_expires_at=None,
                    not_before_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            canceled = result.rowcount == 1
            if canceled:
                await session.refresh(job)
            await session.commit()

        if not canceled:
            # A worker moved the job between our read and write
            logger.info("Job cancel lost race", extra={"job_id": str(job_id)})
            return False

        logger.info(
            "Job canceled",
            extra={"job_id": str(job_id), "tenant_id": tenant_id},
        )
        emit_transition(
            self.event_sink,
            job,
            from_status,
            JobStatus.FAILED,
            now,
            error=CANCELED_ERROR,
        )
        return True

    @staticmethod
    def _stale_lease_filter(now):
        return and_(
            Job.status == JobStatus.PROCESSING.value,
            Job.lease_expires_at.is_not(None),
            Job.lease_expires_at < now,
        )
