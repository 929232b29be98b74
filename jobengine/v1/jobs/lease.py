"""
Lease manager: atomically claims, renews and reaps job leases.
"""

import logging
from collections.abc import Iterable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.config.settings import Settings
from jobengine.infra.database import store_guard
from jobengine.v1.core.clock import Clock, utcnow
from jobengine.v1.core.exceptions import LeaseLost
from jobengine.v1.jobs.events import JobEventSink, NullEventSink, emit_transition
from jobengine.v1.jobs.models import Job, JobErrorCode, JobStatus

logger = logging.getLogger(__name__)

LEASE_EXPIRED_ERROR = "Lease expired after final attempt"


class LeaseManager:
    """
    Claims jobs for workers with time-bounded leases.

    A claim reads the oldest eligible candidate (FOR UPDATE SKIP LOCKED where
    the backend supports it) and then moves it to processing with a single
    conditional UPDATE that re-checks eligibility and the attempts counter it
    saw. Two workers racing for one job cannot both match that UPDATE, so at
    most one of them gets the lease.
    """

    def __init__(
        self,
        settings: Settings,
        clock: Clock = utcnow,
        event_sink: JobEventSink | None = None,
    ):
        self.settings = settings
        self.clock = clock
        self.event_sink = event_sink or NullEventSink()

    @property
    def lease_duration(self) -> timedelta:
        return timedelta(seconds=self.settings.job_lease_duration_s)

    @staticmethod
    def eligible(now: datetime):
        """SQL predicate for claimable jobs at ``now``."""
        return or_(
            and_(
                Job.status == JobStatus.PENDING.value,
                or_(Job.not_before_at.is_(None), Job.not_before_at <= now),
            ),
            and_(
                Job.status == JobStatus.PROCESSING.value,
                Job.lease_expires_at < now,
                Job.attempts < Job.max_attempts,
            ),
        )

    async def claim(
        self,
        session: AsyncSession,
        worker_id: str,
        job_types: Iterable[str] | None = None,
        tenant_id: str | None = None,
    ) -> Job | None:
        """
        Claim the oldest eligible job for ``worker_id``.

        Returns None when no job is eligible (or every candidate was taken by
        other workers first).
        """
        if not worker_id:
            raise ValueError("worker_id is required to claim a job")

        types = sorted(set(job_types)) if job_types else None
        now = self.clock()
        lease_expires_at = now + self.lease_duration

        async with store_guard(session, "claim"):
            for _ in range(self.settings.job_claim_max_races):
                candidate_query = select(Job.id, Job.status, Job.attempts).where(
                    self.eligible(now)
                )
                if types:
                    candidate_query = candidate_query.where(Job.type.in_(types))
                if tenant_id:
                    candidate_query = candidate_query.where(Job.tenant_id == tenant_id)

                candidate = (
                    await session.execute(
                        candidate_query.order_by(Job.created_at, Job.id)
                        .limit(1)
                        .with_for_update(skip_locked=True)
                    )
                ).first()

                if candidate is None:
                    await session.commit()
                    return None

                result = await session.execute(
                    update(Job)
                    .where(
                        and_(
                            Job.id == candidate.id,
                            Job.attempts == candidate.attempts,
                            self.eligible(now),
                        )
                    )
                    .values(
                        status=JobStatus.PROCESSING.value,
                        lease_owner=worker_id,
                        lease_expires_at=lease_expires_at,
                        attempts=Job.attempts + 1,
                        not_before_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )

                if result.rowcount != 1:
                    await session.commit()
                    logger.debug(
                        "Lost claim race",
                        extra={"job_id": str(candidate.id), "worker_id": worker_id},
                    )
                    continue

                job = await self._load(session, candidate.id)
                await session.commit()

                logger.info(
                    "Claimed job",
                    extra={
                        "job_id": str(job.id),
                        "type": job.type,
                        "tenant_id": job.tenant_id,
                        "worker_id": worker_id,
                        "attempts": job.attempts,
                        "reclaimed": candidate.status == JobStatus.PROCESSING.value,
                    },
                )
                emit_transition(
                    self.event_sink,
                    job,
                    JobStatus(candidate.status),
                    JobStatus.PROCESSING,
                    now,
                    worker_id=worker_id,
                )
                return job

        return None

    async def renew(
        self, session: AsyncSession, job_id: UUID, worker_id: str
    ) -> datetime:
        """
        Extend the lease held by ``worker_id``.

        Raises:
            LeaseLost: the job is no longer processing under this worker
        """
        now = self.clock()
        lease_expires_at = now + self.lease_duration

        async with store_guard(session, "renew"):
            result = await session.execute(
                update(Job)
                .where(
                    and_(
                        Job.id == job_id,
                        Job.status == JobStatus.PROCESSING.value,
                        Job.lease_owner == worker_id,
                    )
                )
                .values(lease_expires_at=lease_expires_at, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount != 1:
            logger.warning(
                "Lease lost on renewal",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )
            raise LeaseLost(job_id, worker_id)

        logger.debug(
            "Lease renewed",
            extra={
                "job_id": str(job_id),
                "worker_id": worker_id,
                "lease_expires_at": lease_expires_at.isoformat(),
            },
        )
        return lease_expires_at

    async def reap_exhausted(self, session: AsyncSession) -> int:
        """
        Fail processing jobs whose lease expired on their final attempt.

        Such jobs are no longer claimable, so without this pass a worker crash
        during the last attempt would leave them processing forever.
        """
        now = self.clock()
        exhausted = and_(
            Job.status == JobStatus.PROCESSING.value,
            Job.lease_expires_at < now,
            Job.attempts >= Job.max_attempts,
        )

        async with store_guard(session, "reap"):
            candidates = (
                await session.execute(
                    select(Job.id, Job.attempts)
                    .where(exhausted)
                    .order_by(Job.lease_expires_at)
                    .with_for_update(skip_locked=True)
                )
            ).all()

            reaped: list[Job] = []
            for candidate in candidates:
                result = await session.execute(
                    update(Job)
                    .where(
                        and_(
                            Job.id == candidate.id,
                            Job.attempts == candidate.attempts,
                            exhausted,
                        )
                    )
                    .values(
                        status=JobStatus.FAILED.value,
                        last_error=LEASE_EXPIRED_ERROR,
                        error_code=JobErrorCode.LEASE_EXPIRED.value,
                        lease_owner=None,
                        lease_expires_at=None,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    reaped.append(await self._load(session, candidate.id))

            await session.commit()

        for job in reaped:
            emit_transition(
                self.event_sink,
                job,
                JobStatus.PROCESSING,
                JobStatus.FAILED,
                now,
                error=LEASE_EXPIRED_ERROR,
            )

        if reaped:
            logger.warning(
                "Failed jobs with exhausted expired leases",
                extra={"job_count": len(reaped)},
            )

        return len(reaped)

    @staticmethod
    async def _load(session: AsyncSession, job_id: UUID) -> Job:
        result = await session.execute(
            select(Job)
            .where(Job.id == job_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
