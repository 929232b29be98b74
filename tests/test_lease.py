"""Tests for lease claims, renewal and the exhausted-lease reaper."""

import asyncio
from datetime import timedelta

import pytest

from jobengine.v1.core.exceptions import LeaseLost
from jobengine.v1.jobs.lease import LEASE_EXPIRED_ERROR
from jobengine.v1.jobs.models import JobErrorCode, JobStatus


async def test_claim_leases_job(enqueue, claim, fetch_job, clock, events):
    job_id = await enqueue(max_attempts=3)

    job = await claim("worker-a")

    assert job.id == job_id
    assert job.status == JobStatus.PROCESSING.value
    assert job.attempts == 1
    assert job.lease_owner == "worker-a"
    assert job.lease_expires_at == clock() + timedelta(seconds=60)

    stored = await fetch_job(job_id)
    assert stored.status == JobStatus.PROCESSING.value
    assert stored.lease_owner == "worker-a"
    assert events.events[-1].from_status == JobStatus.PENDING
    assert events.events[-1].to_status == JobStatus.PROCESSING
    assert events.events[-1].worker_id == "worker-a"


async def test_claim_empty_queue_returns_none(claim):
    assert await claim() is None


async def test_claim_requires_worker_id(session_factory, lease_manager):
    async with session_factory() as session:
        with pytest.raises(ValueError, match="worker_id"):
            await lease_manager.claim(session, "")


async def test_concurrent_claims_mutual_exclusion(enqueue, claim):
    """With one pending job, exactly one of N racing claimers gets it."""
    job_id = await enqueue()

    results = await asyncio.gather(*(claim(f"worker-{i}") for i in range(8)))

    winners = [job for job in results if job is not None]
    assert len(winners) == 1
    assert winners[0].id == job_id
    assert results.count(None) == 7


async def test_concurrent_claims_spread_over_jobs(enqueue, claim, clock):
    """Racing claimers never receive the same job twice."""
    for _ in range(5):
        await enqueue()
        clock.advance(seconds=1)

    results = await asyncio.gather(*(claim(f"worker-{i}") for i in range(5)))

    claimed_ids = [job.id for job in results if job is not None]
    assert len(claimed_ids) == len(set(claimed_ids))
    assert len(claimed_ids) == 5


async def test_claims_are_fifo(enqueue, claim, clock):
    t1 = await enqueue()
    clock.advance(seconds=1)
    t2 = await enqueue()
    clock.advance(seconds=1)
    t3 = await enqueue()

    claimed = [(await claim()).id for _ in range(3)]

    assert claimed == [t1, t2, t3]
    assert await claim() is None


async def test_active_lease_blocks_second_claim(enqueue, claim, clock):
    await enqueue()
    assert await claim("worker-a") is not None

    clock.advance(seconds=59)
    assert await claim("worker-b") is None


async def test_expired_lease_is_reclaimed(enqueue, claim, clock, events):
    """A lease abandoned by worker A can be taken over by worker B."""
    job_id = await enqueue(max_attempts=3)
    await claim("worker-a")

    clock.advance(seconds=61)
    job = await claim("worker-b")

    assert job.id == job_id
    assert job.lease_owner == "worker-b"
    assert job.attempts == 2
    assert events.events[-1].from_status == JobStatus.PROCESSING


async def test_expired_lease_on_final_attempt_not_reclaimed(enqueue, claim, clock):
    await enqueue(max_attempts=1)
    await claim("worker-a")

    clock.advance(seconds=61)
    assert await claim("worker-b") is None


async def test_claim_filters_by_type(enqueue, claim, clock):
    await enqueue(type="license_pdf")
    clock.advance(seconds=1)
    preview_id = await enqueue(type="preview_generate")

    job = await claim(job_types=["preview_generate"])

    assert job.id == preview_id
    assert await claim(job_types=["preview_generate"]) is None


async def test_claim_filters_by_tenant(enqueue, claim, clock):
    await enqueue(tenant_id="t1")
    clock.advance(seconds=1)
    t2_id = await enqueue(tenant_id="t2")

    job = await claim(tenant_id="t2")

    assert job.id == t2_id


async def test_claim_respects_not_before(
    session_factory, enqueue, claim, reducer, clock
):
    """A job waiting out its backoff is not eligible yet."""
    job_id = await enqueue(max_attempts=3)
    await claim("worker-a")
    reducer.retry_policy.enabled = True
    reducer.retry_policy.jitter_ratio = 0

    async with session_factory() as session:
        await reducer.fail(session, job_id, "worker-a", "boom")

    assert await claim("worker-b") is None
    clock.advance(seconds=2)
    assert (await claim("worker-b")).id == job_id


async def test_renew_extends_lease(session_factory, enqueue, claim, lease_manager, clock):
    job_id = await enqueue()
    await claim("worker-a")

    clock.advance(seconds=30)
    async with session_factory() as session:
        expires_at = await lease_manager.renew(session, job_id, "worker-a")

    assert expires_at == clock() + timedelta(seconds=60)
    clock.advance(seconds=45)
    assert await claim("worker-b") is None


async def test_renew_by_other_worker_raises_lease_lost(
    session_factory, enqueue, claim, lease_manager, clock
):
    job_id = await enqueue()
    await claim("worker-a")
    clock.advance(seconds=61)
    await claim("worker-b")

    async with session_factory() as session:
        with pytest.raises(LeaseLost) as exc_info:
            await lease_manager.renew(session, job_id, "worker-a")

    assert exc_info.value.status_code == 409
    assert exc_info.value.worker_id == "worker-a"


async def test_renew_of_pending_job_raises_lease_lost(
    session_factory, enqueue, lease_manager
):
    job_id = await enqueue()

    async with session_factory() as session:
        with pytest.raises(LeaseLost):
            await lease_manager.renew(session, job_id, "worker-a")


async def test_reaper_fails_exhausted_expired_leases(
    session_factory, enqueue, claim, lease_manager, fetch_job, clock, events
):
    exhausted_id = await enqueue(max_attempts=1)
    clock.advance(seconds=1)
    retryable_id = await enqueue(max_attempts=2)
    await claim("worker-a")
    await claim("worker-a")

    clock.advance(seconds=61)
    async with session_factory() as session:
        reaped = await lease_manager.reap_exhausted(session)

    assert reaped == 1
    exhausted = await fetch_job(exhausted_id)
    assert exhausted.status == JobStatus.FAILED.value
    assert exhausted.last_error == LEASE_EXPIRED_ERROR
    assert exhausted.error_code == JobErrorCode.LEASE_EXPIRED.value
    assert exhausted.lease_owner is None
    assert exhausted.attempts == 1
    assert events.events[-1].job_id == exhausted_id
    assert events.events[-1].to_status == JobStatus.FAILED

    # Still has an attempt left, so it stays reclaimable
    retryable = await fetch_job(retryable_id)
    assert retryable.status == JobStatus.PROCESSING.value


async def test_reaper_ignores_live_leases(
    session_factory, enqueue, claim, lease_manager
):
    await enqueue(max_attempts=1)
    await claim()

    async with session_factory() as session:
        assert await lease_manager.reap_exhausted(session) == 0
