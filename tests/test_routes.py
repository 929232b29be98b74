"""Tests for the job and lease HTTP endpoints."""

import uuid

from httpx import AsyncClient

from jobengine.main import create_app
from jobengine.v1.core.registries import job_registry
from jobengine.v1.jobs.models import JobStatus

TENANT = {"X-Tenant-ID": "t1"}


async def _enqueue(client: AsyncClient, **body) -> str:
    body.setdefault("type", "license_pdf")
    response = await client.post("/v1/jobs", json=body, headers=TENANT)
    assert response.status_code == 200
    return response.json()["data"]["job_id"]


async def test_enqueue_job(client: AsyncClient, fetch_job):
    response = await client.post(
        "/v1/jobs",
        json={"type": "license_pdf", "payload": {"licenseId": "L1"}, "max_attempts": 3},
        headers=TENANT,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["data"]["status"] == "pending"
    assert "X-Request-ID" in response.headers

    job = await fetch_job(uuid.UUID(body["data"]["job_id"]))
    assert job.tenant_id == "t1"
    assert job.max_attempts == 3


async def test_enqueue_requires_tenant(client: AsyncClient):
    response = await client.post("/v1/jobs", json={"type": "license_pdf"})

    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["message"] == "X-Tenant-ID header is required"


async def test_enqueue_validation_error_envelope(client: AsyncClient):
    response = await client.post(
        "/v1/jobs", json={"type": "   "}, headers=TENANT
    )

    assert response.status_code == 422
    body = response.json()
    assert body["ok"] is False
    assert body["error"]["code"] == 422
    assert body["error"]["details"] == {"field": "type"}


async def test_enqueue_rejects_zero_max_attempts(client: AsyncClient):
    response = await client.post(
        "/v1/jobs", json={"type": "license_pdf", "max_attempts": 0}, headers=TENANT
    )

    assert response.status_code == 422
    assert response.json()["error"]["details"]["field"] == "max_attempts"


async def test_get_job_and_tenant_isolation(client: AsyncClient):
    job_id = await _enqueue(client)

    response = await client.get(f"/v1/jobs/{job_id}", headers=TENANT)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["id"] == job_id
    assert data["attempts"] == 0
    assert data["lease_owner"] is None

    response = await client.get(f"/v1/jobs/{job_id}", headers={"X-Tenant-ID": "t2"})
    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Job not found"


async def test_list_jobs(client: AsyncClient):
    await _enqueue(client, type="license_pdf")
    await _enqueue(client, type="preview_generate")

    response = await client.get("/v1/jobs", headers=TENANT)
    data = response.json()["data"]
    assert data["total"] == 2
    assert {job["type"] for job in data["jobs"]} == {"license_pdf", "preview_generate"}

    response = await client.get(
        "/v1/jobs", params={"type": "preview_generate"}, headers=TENANT
    )
    assert response.json()["data"]["total"] == 1

    response = await client.get(
        "/v1/jobs", params={"status": ["completed"]}, headers=TENANT
    )
    assert response.json()["data"]["jobs"] == []


async def test_job_stats(client: AsyncClient):
    await _enqueue(client)

    response = await client.get("/v1/jobs/stats/overview", headers=TENANT)

    data = response.json()["data"]
    assert data["total_jobs"] == 1
    assert data["by_status"]["pending"] == 1
    assert data["queue_depth"] == 1


async def test_cancel_job(client: AsyncClient):
    job_id = await _enqueue(client)

    response = await client.post(f"/v1/jobs/{job_id}/cancel", headers=TENANT)
    assert response.status_code == 200
    assert response.json()["data"] == {"success": True, "job_id": job_id}

    response = await client.post(f"/v1/jobs/{job_id}/cancel", headers=TENANT)
    assert response.status_code == 404


async def test_worker_lease_flow(client: AsyncClient, events):
    """claim -> renew -> complete over HTTP."""
    job_id = await _enqueue(client)

    response = await client.post("/v1/leases/claim", json={"worker_id": "remote-1"})
    job = response.json()["data"]["job"]
    assert job["id"] == job_id
    assert job["status"] == "processing"
    assert job["attempts"] == 1
    assert job["lease_owner"] == "remote-1"

    response = await client.post(
        f"/v1/leases/{job_id}/renew", json={"worker_id": "remote-1"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["job_id"] == job_id

    response = await client.post(
        f"/v1/leases/{job_id}/complete", json={"worker_id": "remote-1"}
    )
    assert response.json()["data"] == {"job_id": job_id, "applied": True}

    assert [e.to_status for e in events.events] == [
        JobStatus.PENDING,
        JobStatus.PROCESSING,
        JobStatus.COMPLETED,
    ]


async def test_claim_empty_queue(client: AsyncClient):
    response = await client.post("/v1/leases/claim", json={"worker_id": "remote-1"})

    assert response.status_code == 200
    assert response.json()["data"] == {"job": None}


async def test_claim_by_type(client: AsyncClient):
    await _enqueue(client, type="license_pdf")

    response = await client.post(
        "/v1/leases/claim",
        json={"worker_id": "remote-1", "types": ["preview_generate"]},
    )

    assert response.json()["data"]["job"] is None


async def test_renew_without_lease_is_conflict(client: AsyncClient):
    job_id = await _enqueue(client)

    response = await client.post(
        f"/v1/leases/{job_id}/renew", json={"worker_id": "remote-1"}
    )

    assert response.status_code == 409
    assert response.json()["error"]["details"]["worker_id"] == "remote-1"


async def test_fail_and_zombie_report(client: AsyncClient):
    job_id = await _enqueue(client, max_attempts=1)
    await client.post("/v1/leases/claim", json={"worker_id": "remote-1"})

    response = await client.post(
        f"/v1/leases/{job_id}/fail",
        json={"worker_id": "remote-2", "error": "not mine"},
    )
    assert response.json()["data"]["applied"] is False

    response = await client.post(
        f"/v1/leases/{job_id}/fail",
        json={"worker_id": "remote-1", "error": "render error", "retryable": False},
    )
    assert response.json()["data"]["applied"] is True

    response = await client.get(f"/v1/jobs/{job_id}", headers=TENANT)
    data = response.json()["data"]
    assert data["status"] == "failed"
    assert data["last_error"] == "render error"
    assert data["error_code"] == "non_retryable"


async def test_claim_requires_worker_id(client: AsyncClient):
    response = await client.post("/v1/leases/claim", json={"worker_id": ""})

    assert response.status_code == 422


async def test_lifespan_freezes_registry_outside_development(settings, monkeypatch):
    monkeypatch.setattr(job_registry, "_frozen", False)
    app = create_app(settings)

    async with app.router.lifespan_context(app):
        assert job_registry.is_frozen()
