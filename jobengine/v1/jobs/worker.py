"""
Polling job worker with lease renewal and cooperative shutdown.
"""

import asyncio
import inspect
import os
import socket
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobengine.config.logging import bind_worker_context, get_logger
from jobengine.config.settings import Settings
from jobengine.v1.core.clock import Clock, utcnow
from jobengine.v1.core.exceptions import (
    HandlerError,
    LeaseLost,
    NonRetryableJobError,
    StoreUnavailable,
    UnknownJobType,
)
from jobengine.v1.core.registries import HandlerRegistry, job_registry
from jobengine.v1.jobs.events import JobEventSink
from jobengine.v1.jobs.lease import LeaseManager
from jobengine.v1.jobs.models import Job, JobErrorCode
from jobengine.v1.jobs.reducer import OutcomeReducer

logger = get_logger(__name__)


@dataclass
class JobContext:
    """What a handler knows about the job it is running."""

    job_id: UUID
    tenant_id: str
    type: str
    attempt: int
    worker_id: str
    lease_expires_at: datetime | None
    _renew: Callable[[], Awaitable[datetime]] = field(repr=False)
    _lost: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def lease_lost(self) -> bool:
        """True once a renewal found another worker (or a cancel) took the job."""
        return self._lost.is_set()

    async def renew_lease(self) -> datetime:
        """Extend the lease; raises LeaseLost when the job must be abandoned."""
        if self.lease_lost:
            raise LeaseLost(self.job_id, self.worker_id)
        try:
            self.lease_expires_at = await self._renew()
        except LeaseLost:
            self._lost.set()
            raise
        return self.lease_expires_at


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:8]}"


class JobWorker:
    """
    Store-backed job worker.

    Features:
    - Atomic lease claims, oldest job first, optionally limited to job types
    - N independent claim/execute/report slots, each with its own identity
    - Periodic lease renewal while a handler runs
    - Handler failures converted into retry/failed outcomes
    - Reaper for jobs whose final attempt was abandoned
    - Cooperative shutdown through stop()
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        registry: HandlerRegistry = job_registry,
        lease_manager: LeaseManager | None = None,
        reducer: OutcomeReducer | None = None,
        worker_id: str | None = None,
        job_types: list[str] | None = None,
        clock: Clock = utcnow,
        event_sink: JobEventSink | None = None,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.registry = registry
        self.lease_manager = lease_manager or LeaseManager(settings, clock, event_sink)
        self.reducer = reducer or OutcomeReducer(settings, clock, event_sink)
        self.worker_id = worker_id or settings.worker_id or default_worker_id()
        self.job_types = list(job_types if job_types is not None else settings.job_types)
        self.running = False
        self.active_jobs: set[UUID] = set()
        self._stop = asyncio.Event()

    def slot_identity(self, slot: int) -> str:
        """Lease owner name for a handler slot."""
        if self.settings.job_concurrency == 1:
            return self.worker_id
        return f"{self.worker_id}:{slot}"

    async def run(self) -> None:
        """Run the worker slots and the reaper until stop() is called."""
        if self.running:
            raise RuntimeError("Worker is already running")

        self.running = True
        self._stop.clear()
        bind_worker_context(self.worker_id)
        logger.info(
            "Starting job worker",
            worker_id=self.worker_id,
            concurrency=self.settings.job_concurrency,
            poll_interval_ms=self.settings.job_poll_interval_ms,
            job_types=self.job_types or "all",
            handlers=self.registry.list(),
        )

        try:
            await asyncio.gather(
                *(
                    self._slot_loop(slot)
                    for slot in range(self.settings.job_concurrency)
                ),
                self._reaper_loop(),
            )
        finally:
            self.running = False
            logger.info("Job worker stopped", worker_id=self.worker_id)

    def request_stop(self) -> None:
        """Ask the loops to exit after their current job; usable as a signal handler."""
        logger.info("Stopping job worker", worker_id=self.worker_id)
        self._stop.set()

    async def stop(self) -> None:
        self.request_stop()

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    async def run_once(self, slot: int = 0) -> bool:
        """Claim and process at most one job. Returns True if a job was processed."""
        worker_id = self.slot_identity(slot)

        async with self.session_factory() as session:
            job = await self.lease_manager.claim(
                session, worker_id, job_types=self.job_types or None
            )

        if job is None:
            return False

        await self._process_job(job, worker_id)
        return True

    async def reap_once(self) -> int:
        async with self.session_factory() as session:
            return await self.lease_manager.reap_exhausted(session)

    async def _slot_loop(self, slot: int) -> None:
        """Claim/execute/report cycle for one handler slot."""
        poll_interval = self.settings.job_poll_interval_ms / 1000

        while not self._stop.is_set():
            try:
                processed = await self.run_once(slot)
            except StoreUnavailable as e:
                logger.warning(
                    "Job store unavailable",
                    worker_id=self.slot_identity(slot),
                    error=e.message,
                )
                await self._sleep(self.settings.job_store_error_backoff_s)
                continue
            except Exception:
                logger.exception(
                    "Error in worker loop", worker_id=self.slot_identity(slot)
                )
                await self._sleep(self.settings.job_store_error_backoff_s)
                continue

            if not processed:
                await self._sleep(poll_interval)

    async def _reaper_loop(self) -> None:
        """Fail jobs whose final attempt was abandoned."""
        while not self._stop.is_set():
            try:
                await self.reap_once()
            except StoreUnavailable as e:
                logger.warning("Reaper skipped, job store unavailable", error=e.message)
            except Exception:
                logger.exception("Error in reaper loop")

            await self._sleep(self.settings.job_reaper_interval_s)

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early when the worker is stopped."""
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)

    async def _process_job(self, job: Job, worker_id: str) -> None:
        """Run the handler for a claimed job and report the outcome."""
        job_logger = logger.bind(
            job_id=str(job.id),
            job_type=job.type,
            tenant_id=job.tenant_id,
            worker_id=worker_id,
            attempt=job.attempts,
        )
        self.active_jobs.add(job.id)

        try:
            handler = self.registry.find(job.type)
            if handler is None:
                error = UnknownJobType(job.type)
                job_logger.error("No handler registered for job type")
                await self._report_failure(
                    job,
                    worker_id,
                    error.message,
                    retryable=False,
                    error_code=JobErrorCode.UNKNOWN_JOB_TYPE,
                )
                return

            context = self._build_context(job, worker_id)
            failure: HandlerError | None = None
            retryable = True

            job_logger.info("Processing job started")
            renewer = self._start_renewer(context)
            try:
                await self._run_handler(handler, context, job.payload)
            except NonRetryableJobError as e:
                failure = HandlerError(job.type, e)
                retryable = False
            except Exception as e:
                failure = HandlerError(job.type, e)
            except asyncio.CancelledError as e:
                # Only a cancel aimed at this task means shutdown
                if asyncio.current_task().cancelling():
                    raise
                failure = HandlerError(job.type, e)
            finally:
                if renewer is not None:
                    renewer.cancel()
                    with suppress(asyncio.CancelledError):
                        await renewer

            if context.lease_lost:
                job_logger.warning("Lease lost during processing, outcome not reported")
                return

            if failure is None:
                applied = await self._report(
                    self.reducer.complete, job.id, worker_id
                )
                if applied:
                    job_logger.info("Processing job completed successfully")
                return

            job_logger.warning(
                "Processing job failed",
                error=failure.message,
                exception=failure.details["exception"],
                retryable=retryable,
                exc_info=failure.cause,
            )
            await self._report_failure(
                job,
                worker_id,
                failure.message,
                retryable=retryable,
                error_code=(
                    JobErrorCode.HANDLER_ERROR
                    if retryable
                    else JobErrorCode.NON_RETRYABLE
                ),
            )
        finally:
            self.active_jobs.discard(job.id)

    async def _run_handler(self, handler, context: JobContext, payload: Any) -> None:
        """Await async handlers; run sync ones in a thread so renewals keep going."""
        if inspect.iscoroutinefunction(handler.handle):
            await handler.handle(context, payload)
            return

        result = await asyncio.to_thread(handler.handle, context, payload)
        if inspect.isawaitable(result):
            await result

    async def _report(self, operation, *args: Any, **kwargs: Any) -> bool:
        async with self.session_factory() as session:
            return await operation(session, *args, **kwargs)

    async def _report_failure(
        self,
        job: Job,
        worker_id: str,
        error: str,
        retryable: bool,
        error_code: JobErrorCode,
    ) -> bool:
        return await self._report(
            self.reducer.fail,
            job.id,
            worker_id,
            error,
            retryable=retryable,
            error_code=error_code,
        )

    def _build_context(self, job: Job, worker_id: str) -> JobContext:
        async def renew() -> datetime:
            async with self.session_factory() as session:
                return await self.lease_manager.renew(session, job.id, worker_id)

        return JobContext(
            job_id=job.id,
            tenant_id=job.tenant_id,
            type=job.type,
            attempt=job.attempts,
            worker_id=worker_id,
            lease_expires_at=job.lease_expires_at,
            _renew=renew,
        )

    def _start_renewer(self, context: JobContext) -> asyncio.Task | None:
        interval = self.settings.job_lease_renew_interval_s
        if not interval:
            return None
        return asyncio.create_task(self._renew_loop(context, interval))

    async def _renew_loop(self, context: JobContext, interval: float) -> None:
        """Keep the lease alive while the handler runs."""
        while True:
            await asyncio.sleep(interval)
            try:
                await context.renew_lease()
            except LeaseLost:
                logger.warning(
                    "Lease lost while job running",
                    job_id=str(context.job_id),
                    worker_id=context.worker_id,
                )
                return
            except StoreUnavailable as e:
                logger.warning(
                    "Lease renewal failed, will retry",
                    job_id=str(context.job_id),
                    error=e.message,
                )
            except Exception:
                logger.exception(
                    "Unexpected error renewing lease, will retry",
                    job_id=str(context.job_id),
                )


def create_worker(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    event_sink: JobEventSink | None = None,
    **kwargs: Any,
) -> JobWorker:
    """Build a worker wired to the shared handler registry."""
    return JobWorker(
        settings,
        session_factory,
        registry=kwargs.pop("registry", job_registry),
        event_sink=event_sink,
        **kwargs,
    )
