from datetime import UTC, datetime

from httpx import AsyncClient


async def test_health_check_success(client: AsyncClient):
    """Test health check endpoint returns correct format."""
    response = await client.get("/v1/healthz")

    assert response.status_code == 200

    data = response.json()
    assert data["ok"] is True

    health_data = data["data"]
    assert health_data["ok"] is True
    assert health_data["version"] == "1.0.0"
    assert health_data["environment"] == "test"
    assert health_data["database"]["connected"] is True


async def test_health_check_response_structure(client: AsyncClient):
    """Test health check response envelope structure."""
    response = await client.get("/v1/healthz")

    data = response.json()

    for key in ["ok", "data", "message", "request_id", "timestamp"]:
        assert key in data

    assert "X-Request-ID" in response.headers


async def test_health_check_queue_status(client: AsyncClient, enqueue, claim, clock):
    """Queue section counts outstanding jobs and expired leases."""
    clock.now = datetime(2020, 1, 1, tzinfo=UTC)
    await enqueue()
    clock.advance(seconds=1)
    await enqueue()
    await claim("worker-a")

    response = await client.get("/v1/healthz")

    queue = response.json()["data"]["queue"]
    assert queue["queue_depth"] == 2
    assert queue["stale_leases"] == 1
    assert queue["active_workers"] == 0
    assert queue["oldest_pending_age_seconds"] > 0
