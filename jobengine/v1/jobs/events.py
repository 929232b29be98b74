"""
Observability sinks for job state transitions.
"""

import logging
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from jobengine.config.logging import get_logger
from jobengine.v1.jobs.models import Job, JobStatus
from jobengine.v1.jobs.schemas import JobTransitionEvent

logger = logging.getLogger(__name__)


class JobEventSink(Protocol):
    """Protocol for transition event sinks."""

    def emit(self, event: JobTransitionEvent) -> None:
        """Deliver one event. Must not block for long."""
        ...


class NullEventSink:
    """Discards every event."""

    def emit(self, event: JobTransitionEvent) -> None:
        return None


class LoggingEventSink:
    """Writes each transition as a structured log line."""

    def __init__(self, name: str = "jobengine.events"):
        self._logger = get_logger(name)

    def emit(self, event: JobTransitionEvent) -> None:
        self._logger.info(
            "Job transition",
            **event.model_dump(mode="json", exclude_none=True),
        )


class InMemoryEventSink:
    """Keeps events in a list; useful for embedding tests and dashboards."""

    def __init__(self):
        self.events: list[JobTransitionEvent] = []

    def emit(self, event: JobTransitionEvent) -> None:
        self.events.append(event)

    def for_job(self, job_id) -> list[JobTransitionEvent]:
        return [event for event in self.events if event.job_id == job_id]

    def clear(self) -> None:
        self.events.clear()


class CompositeEventSink:
    """Fans out to several sinks."""

    def __init__(self, sinks: Iterable[JobEventSink]):
        self.sinks = list(sinks)

    def emit(self, event: JobTransitionEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)


def emit_transition(
    sink: JobEventSink,
    job: Job,
    from_status: JobStatus | None,
    to_status: JobStatus,
    timestamp: datetime,
    worker_id: str | None = None,
    error: str | None = None,
) -> None:
    """Build and emit a transition event; sink failures are logged, never raised."""
    event = JobTransitionEvent(
        job_id=job.id,
        tenant_id=job.tenant_id,
        type=job.type,
        from_status=from_status,
        to_status=to_status,
        attempts=job.attempts,
        timestamp=timestamp,
        worker_id=worker_id,
        error=error,
    )
    try:
        sink.emit(event)
    except Exception:
        logger.exception(
            "Event sink failed",
            extra={"job_id": str(job.id), "to_status": to_status.value},
        )
