"""
Outcome reducer: applies completion, retry and terminal failure transitions.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.config.settings import Settings
from jobengine.infra.database import store_guard
from jobengine.v1.core.clock import Clock, utcnow
from jobengine.v1.jobs.events import JobEventSink, NullEventSink, emit_transition
from jobengine.v1.jobs.models import Job, JobErrorCode, JobStatus

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter between retry attempts."""

    enabled: bool = True
    base_seconds: float = 1.0
    max_seconds: float = 300.0
    jitter_ratio: float = 0.25
    rng: random.Random = field(default_factory=random.Random)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            enabled=settings.job_backoff_enabled,
            base_seconds=settings.job_backoff_base_ms / 1000,
            max_seconds=settings.job_max_backoff_s,
            jitter_ratio=settings.job_backoff_jitter,
        )

    def delay(self, attempts: int) -> float:
        """Seconds to wait before the next attempt: min(cap, base * 2^attempts) + jitter."""
        delay = min(self.max_seconds, self.base_seconds * (2**attempts))
        return delay + delay * self.jitter_ratio * self.rng.random()

    def not_before(self, now: datetime, attempts: int) -> datetime | None:
        """When the job becomes claimable again; None means immediately."""
        if not self.enabled:
            return None
        return now + timedelta(seconds=self.delay(attempts))


class OutcomeReducer:
    """
    Reports handler outcomes for jobs leased by a worker.

    Both operations only apply while the caller still holds the lease. A
    worker reporting on a job it no longer owns (lease reclaimed, job
    canceled or already terminal) gets False back and the job is left
    untouched.
    """

    def __init__(
        self,
        settings: Settings,
        clock: Clock = utcnow,
        event_sink: JobEventSink | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings
        self.clock = clock
        self.event_sink = event_sink or NullEventSink()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)

    async def complete(
        self, session: AsyncSession, job_id: UUID, worker_id: str
    ) -> bool:
        """Mark a leased job completed. Returns False for a zombie write."""
        now = self.clock()

        async with store_guard(session, "complete"):
            job = await self._load_leased(session, job_id, worker_id, "complete")
            if job is None:
                return False

            applied = await self._apply(
                session,
                job,
                worker_id,
                status=JobStatus.COMPLETED.value,
                lease_owner=None,
                lease_expires_at=None,
                not_before_at=None,
                updated_at=now,
            )
            if not applied:
                return False

        logger.info(
            "Job completed",
            extra={
                "job_id": str(job_id),
                "type": job.type,
                "worker_id": worker_id,
                "attempts": job.attempts,
            },
        )
        emit_transition(
            self.event_sink,
            job,
            JobStatus.PROCESSING,
            JobStatus.COMPLETED,
            now,
            worker_id=worker_id,
        )
        return True

    async def fail(
        self,
        session: AsyncSession,
        job_id: UUID,
        worker_id: str,
        error: str,
        retryable: bool = True,
        error_code: JobErrorCode = JobErrorCode.HANDLER_ERROR,
    ) -> bool:
        """
        Record a failed attempt.

        The job returns to pending while it is retryable and has attempts
        left; otherwise it becomes failed. Returns False for a zombie write.
        """
        now = self.clock()

        async with store_guard(session, "fail"):
            job = await self._load_leased(session, job_id, worker_id, "fail")
            if job is None:
                return False

            will_retry = retryable and job.attempts < job.max_attempts
            if will_retry:
                to_status = JobStatus.PENDING
                not_before_at = self.retry_policy.not_before(now, job.attempts)
            else:
                to_status = JobStatus.FAILED
                not_before_at = None

            applied = await self._apply(
                session,
                job,
                worker_id,
                status=to_status.value,
                last_error=error,
                error_code=error_code.value,
                lease_owner=None,
                lease_expires_at=None,
                not_before_at=not_before_at,
                updated_at=now,
            )
            if not applied:
                return False

        if will_retry:
            logger.info(
                "Job scheduled for retry",
                extra={
                    "job_id": str(job_id),
                    "type": job.type,
                    "attempts": job.attempts,
                    "max_attempts": job.max_attempts,
                    "not_before_at": not_before_at.isoformat() if not_before_at else None,
                    "error": error,
                },
            )
        else:
            logger.error(
                "Job failed permanently",
                extra={
                    "job_id": str(job_id),
                    "type": job.type,
                    "attempts": job.attempts,
                    "error_code": error_code.value,
                    "error": error,
                },
            )

        emit_transition(
            self.event_sink,
            job,
            JobStatus.PROCESSING,
            to_status,
            now,
            worker_id=worker_id,
            error=error,
        )
        return True

    async def _load_leased(
        self, session: AsyncSession, job_id: UUID, worker_id: str, operation: str
    ) -> Job | None:
        job = (
            await session.execute(
                select(Job)
                .where(Job.id == job_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        if job is None or not job.is_held_by(worker_id):
            await session.commit()
            logger.warning(
                "Zombie write ignored",
                extra={
                    "operation": operation,
                    "job_id": str(job_id),
                    "worker_id": worker_id,
                    "status": job.status if job else None,
                    "lease_owner": job.lease_owner if job else None,
                },
            )
            return None

        return job

    async def _apply(
        self, session: AsyncSession, job: Job, worker_id: str, **values
    ) -> bool:
        """Write ``values`` only if the lease we read is still in place."""
        result = await session.execute(
            update(Job)
            .where(
                and_(
                    Job.id == job.id,
                    Job.status == JobStatus.PROCESSING.value,
                    Job.lease_owner == worker_id,
                    Job.attempts == job.attempts,
                )
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != 1:
            await session.commit()
            logger.warning(
                "Zombie write ignored",
                extra={"job_id": str(job.id), "worker_id": worker_id, "race": True},
            )
            return False

        await session.refresh(job)
        await session.commit()
        return True
