from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from jobengine.config.logging import get_logger
from jobengine.config.settings import Settings, SettingsDep
from jobengine.infra.database import get_session
from jobengine.v1.core.exceptions import create_success_response
from jobengine.v1.jobs.models import Job, JobStatus

router = APIRouter()
logger = get_logger(__name__)


class DatabaseHealth(BaseModel):
    """Database health status."""

    connected: bool
    response_time_ms: float | None = None
    error: str | None = None


class QueueHealth(BaseModel):
    """Job queue status."""

    active_workers: int
    queue_depth: int = 0
    stale_leases: int = 0
    oldest_pending_age_seconds: int | None = None


class HealthResponse(BaseModel):
    """Health response with queue and database status."""

    ok: bool
    version: str
    environment: str
    timestamp: str
    database: DatabaseHealth
    queue: QueueHealth | None = None


@router.get("/healthz", response_model=dict)
async def health_check(
    settings: Settings = SettingsDep, session: AsyncSession = Depends(get_session)
):
    """Health check endpoint with database and queue status."""

    timestamp = datetime.now(UTC).isoformat()

    db_health = await _check_database_health(session)

    queue_health = None
    if db_health.connected:
        try:
            queue_health = await _check_queue_health(session)
        except Exception as e:
            # Queue stats are informational; they don't fail overall health
            logger.warning("Queue health check failed", error=str(e))

    health = HealthResponse(
        ok=db_health.connected,
        version=settings.version,
        environment=settings.environment,
        timestamp=timestamp,
        database=db_health,
        queue=queue_health,
    )

    return create_success_response(data=health.model_dump())


async def _check_database_health(session: AsyncSession) -> DatabaseHealth:
    """Check database connectivity and response time."""
    start_time = datetime.now(UTC)

    try:
        await session.execute(text("SELECT 1"))

        end_time = datetime.now(UTC)
        response_time_ms = (end_time - start_time).total_seconds() * 1000

        return DatabaseHealth(
            connected=True, response_time_ms=round(response_time_ms, 2)
        )

    except Exception as e:
        return DatabaseHealth(connected=False, error=str(e))


async def _check_queue_health(session: AsyncSession) -> QueueHealth:
    """Count live lease holders, outstanding jobs and expired leases."""
    now = datetime.now(UTC)
    processing = Job.status == JobStatus.PROCESSING.value

    active_workers = (
        await session.execute(
            select(func.count(func.distinct(Job.lease_owner))).where(
                processing, Job.lease_expires_at >= now
            )
        )
    ).scalar() or 0

    stale_leases = (
        await session.execute(
            select(func.count(Job.id)).where(processing, Job.lease_expires_at < now)
        )
    ).scalar() or 0

    queue_depth = (
        await session.execute(
            select(func.count(Job.id)).where(
                Job.status.in_([JobStatus.PENDING.value, JobStatus.PROCESSING.value])
            )
        )
    ).scalar() or 0

    oldest_pending = (
        await session.execute(
            select(func.min(Job.created_at)).where(
                Job.status == JobStatus.PENDING.value
            )
        )
    ).scalar()

    oldest_pending_age_seconds = None
    if oldest_pending:
        if oldest_pending.tzinfo is None:
            oldest_pending = oldest_pending.replace(tzinfo=UTC)
        oldest_pending_age_seconds = int((now - oldest_pending).total_seconds())

    return QueueHealth(
        active_workers=active_workers,
        queue_depth=queue_depth,
        stale_leases=stale_leases,
        oldest_pending_age_seconds=oldest_pending_age_seconds,
    )
