"""Tests for completion, retry and terminal failure reporting."""

import random
import uuid
from datetime import timedelta

import pytest

from jobengine.v1.jobs.models import JobErrorCode, JobStatus
from jobengine.v1.jobs.reducer import OutcomeReducer, RetryPolicy


@pytest.fixture
def report(session_factory, reducer):
    """Call a reducer operation in a fresh session."""

    async def _report(operation: str, *args, **kwargs) -> bool:
        async with session_factory() as session:
            return await getattr(reducer, operation)(session, *args, **kwargs)

    return _report


async def test_happy_path(enqueue, claim, report, fetch_job, events):
    job_id = await enqueue(payload={"licenseId": "L1"}, max_attempts=3)
    job = await claim("worker-a")
    assert job.attempts == 1

    assert await report("complete", job_id, "worker-a") is True

    job = await fetch_job(job_id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.attempts == 1
    assert job.lease_owner is None
    assert job.lease_expires_at is None
    assert [e.to_status for e in events.for_job(job_id)] == [
        JobStatus.PENDING,
        JobStatus.PROCESSING,
        JobStatus.COMPLETED,
    ]


async def test_exhausted_retries(enqueue, claim, report, fetch_job):
    """Every attempt fails: after max_attempts the job is failed."""
    job_id = await enqueue(max_attempts=3)

    for attempt in range(1, 4):
        job = await claim("worker-a")
        assert job.attempts == attempt
        assert await report("fail", job_id, "worker-a", "render error") is True

    job = await fetch_job(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 3
    assert job.last_error == "render error"
    assert job.error_code == JobErrorCode.HANDLER_ERROR.value
    assert await claim("worker-a") is None


async def test_retryable_failure_returns_to_pending(
    enqueue, claim, report, fetch_job, clock
):
    job_id = await enqueue(max_attempts=3)
    await claim("worker-a")
    clock.advance(seconds=5)

    assert await report("fail", job_id, "worker-a", "timeout") is True

    job = await fetch_job(job_id)
    assert job.status == JobStatus.PENDING.value
    assert job.last_error == "timeout"
    assert job.lease_owner is None
    assert job.lease_expires_at is None
    assert job.updated_at == clock()


async def test_non_retryable_failure_is_terminal(enqueue, claim, report, fetch_job):
    job_id = await enqueue(max_attempts=5)
    await claim("worker-a")

    assert await report(
        "fail",
        job_id,
        "worker-a",
        "missing source file",
        retryable=False,
        error_code=JobErrorCode.NON_RETRYABLE,
    )

    job = await fetch_job(job_id)
    assert job.status == JobStatus.FAILED.value
    assert job.attempts == 1
    assert job.error_code == JobErrorCode.NON_RETRYABLE.value


async def test_immediate_retry_when_backoff_disabled(enqueue, claim, report, fetch_job):
    """Backoff off: a failed job is claimable again right away."""
    job_id = await enqueue(max_attempts=3)
    await claim("worker-a")

    await report("fail", job_id, "worker-a", "boom")

    assert (await fetch_job(job_id)).not_before_at is None
    assert (await claim("worker-b")).id == job_id


async def test_backoff_delays_retry_when_enabled(
    settings, events, clock, session_factory, enqueue, claim, fetch_job
):
    """Backoff on: the retry waits min(cap, base * 2^attempts)."""
    reducer = OutcomeReducer(
        settings,
        clock=clock,
        event_sink=events,
        retry_policy=RetryPolicy(enabled=True, base_seconds=1, jitter_ratio=0),
    )
    job_id = await enqueue(max_attempts=5)
    await claim("worker-a")

    async with session_factory() as session:
        await reducer.fail(session, job_id, "worker-a", "boom")

    job = await fetch_job(job_id)
    assert job.status == JobStatus.PENDING.value
    assert job.not_before_at == clock() + timedelta(seconds=2)

    clock.advance(seconds=1)
    assert await claim("worker-b") is None
    clock.advance(seconds=1)
    job = await claim("worker-b")
    assert job.id == job_id
    assert job.not_before_at is None


def test_retry_policy_delay_grows_and_caps():
    policy = RetryPolicy(base_seconds=1, max_seconds=10, jitter_ratio=0)

    assert [policy.delay(n) for n in range(1, 6)] == [2, 4, 8, 10, 10]


def test_retry_policy_jitter_bounds():
    policy = RetryPolicy(
        base_seconds=1, max_seconds=300, jitter_ratio=0.25, rng=random.Random(7)
    )

    for _ in range(50):
        assert 4 <= policy.delay(2) <= 5


def test_retry_policy_from_settings(settings):
    policy = RetryPolicy.from_settings(
        settings.model_copy(
            update={
                "job_backoff_enabled": True,
                "job_backoff_base_ms": 500,
                "job_max_backoff_s": 60,
            }
        )
    )

    assert policy.enabled is True
    assert policy.base_seconds == 0.5
    assert policy.max_seconds == 60


async def test_zombie_write_after_reclaim_is_ignored(
    enqueue, claim, report, fetch_job, clock
):
    """Worker A lost its lease to B; A's late report changes nothing."""
    job_id = await enqueue(max_attempts=3)
    await claim("worker-a")
    clock.advance(seconds=61)
    await claim("worker-b")
    before = await fetch_job(job_id)

    clock.advance(seconds=1)
    assert await report("complete", job_id, "worker-a") is False
    assert await report("fail", job_id, "worker-a", "late") is False

    after = await fetch_job(job_id)
    assert after.status == JobStatus.PROCESSING.value
    assert after.lease_owner == "worker-b"
    assert after.last_error is None
    assert after.updated_at == before.updated_at

    assert await report("complete", job_id, "worker-b") is True


async def test_expired_lease_owner_may_still_complete(
    enqueue, claim, report, fetch_job, clock
):
    """Until someone reclaims it, the original holder can still report."""
    job_id = await enqueue()
    await claim("worker-a")
    clock.advance(seconds=120)

    assert await report("complete", job_id, "worker-a") is True
    assert (await fetch_job(job_id)).status == JobStatus.COMPLETED.value


@pytest.mark.parametrize("operation", ["complete", "fail"])
async def test_terminal_jobs_are_idempotent(
    enqueue, claim, report, fetch_job, clock, events, operation
):
    job_id = await enqueue()
    await claim("worker-a")
    await report("complete", job_id, "worker-a")
    before = await fetch_job(job_id)
    event_count = len(events.events)

    clock.advance(seconds=10)
    args = (job_id, "worker-a", "again") if operation == "fail" else (job_id, "worker-a")
    assert await report(operation, *args) is False

    after = await fetch_job(job_id)
    assert after.status == JobStatus.COMPLETED.value
    assert after.updated_at == before.updated_at
    assert after.last_error is None
    assert len(events.events) == event_count


async def test_report_on_missing_job(report):
    assert await report("complete", uuid.uuid4(), "worker-a") is False
