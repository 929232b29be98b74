"""
Job record store: the durable source of truth for job state.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from jobengine.infra.database import Base


class JobStatus(str, Enum):
    """Job status enumeration."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobErrorCode(str, Enum):
    """Structured reason recorded next to last_error."""

    HANDLER_ERROR = "handler_error"
    UNKNOWN_JOB_TYPE = "unknown_job_type"
    NON_RETRYABLE = "non_retryable"
    LEASE_EXPIRED = "lease_expired"
    CANCELED = "canceled"


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend.

    SQLite has no timezone support, so values are stored there as naive UTC
    and re-tagged on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Job(Base):
    """
    A unit of deferred work.

    Status moves pending -> processing through a claim, then to completed,
    back to pending (retry), or to failed. Lease fields are set only while
    processing; a processing job whose lease has expired is claimable again.
    """

    __tablename__ = "jobs"

    # Core fields
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Owning tenant scope"
    )
    type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Job type identifier, selects the handler"
    )
    payload: Mapped[Any] = mapped_column(
        JSON, nullable=False, default=dict, comment="Opaque handler parameters"
    )

    # Job state
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default=JobStatus.PENDING.value,
        comment="Job status: pending|processing|completed|failed",
    )
    attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, comment="Claims made so far"
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Attempts before a failure is terminal"
    )
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Last error message"
    )
    error_code: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Structured error identifier"
    )

    # Lease
    lease_owner: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="Worker holding the lease"
    )
    lease_expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Lease is abandoned after this time"
    )
    not_before_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Retry backoff: not claimable before"
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        CheckConstraint("max_attempts >= 1", name="jobs_max_attempts_check"),
        CheckConstraint(
            "attempts >= 0 AND attempts <= max_attempts", name="jobs_attempts_check"
        ),
        CheckConstraint(
            "(status = 'processing' AND lease_owner IS NOT NULL"
            " AND lease_expires_at IS NOT NULL)"
            " OR (status <> 'processing' AND lease_owner IS NULL"
            " AND lease_expires_at IS NULL)",
            name="jobs_lease_check",
        ),
        Index("ix_jobs_status_created_at", "status", "created_at"),
        Index("ix_jobs_tenant_id", "tenant_id"),
        Index("ix_jobs_tenant_id_status", "tenant_id", "status"),
        Index("ix_jobs_type_status", "type", "status"),
    )

    def is_active(self) -> bool:
        """Check if job is still pending or processing."""
        return self.status in (JobStatus.PENDING.value, JobStatus.PROCESSING.value)

    def is_held_by(self, worker_id: str) -> bool:
        return (
            self.status == JobStatus.PROCESSING.value and self.lease_owner == worker_id
        )
