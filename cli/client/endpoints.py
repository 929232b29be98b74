"""API Endpoint Wrappers - Typed API calls"""

from typing import Any

import httpx

from ..utils.config_manager import config
from .base import APIClient, JobEngineClientError

__all__ = ["JobEngineClient", "JobEngineClientError"]


class JobEngineClient:
    """High-level client with typed endpoint methods"""

    def __init__(
        self,
        base_url: str | None = None,
        tenant_id: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        # Use config values if not provided
        api_config = config.load_config().get("api", {})
        final_base_url = base_url or api_config.get("base_url", "http://localhost:8000")
        final_tenant = tenant_id or api_config.get("tenant_id")

        headers = {"X-Tenant-ID": final_tenant} if final_tenant else {}
        self.api = APIClient(
            base_url=final_base_url,
            timeout=int(api_config.get("timeout", 30)),
            headers=headers,
            transport=transport,
        )

    def __enter__(self):
        self.api.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.api.__exit__(exc_type, exc_val, exc_tb)

    # Health Check
    def health_check(self) -> dict[str, Any]:
        """Check API health status"""
        return self.api.get("/healthz")

    # Job Endpoints
    def enqueue_job(
        self, type: str, payload: Any = None, max_attempts: int | None = None
    ) -> dict[str, Any]:
        """Enqueue a job for the configured tenant"""
        body: dict[str, Any] = {"type": type, "payload": payload if payload is not None else {}}
        if max_attempts is not None:
            body["max_attempts"] = max_attempts
        return self.api.post("/jobs", json=body)

    def list_jobs(
        self,
        status: list[str] | None = None,
        type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        """List jobs with filters"""
        params: dict[str, Any] = {"limit": limit, "offset": offset}
        if status:
            params["status"] = status
        if type:
            params["type"] = type
        return self.api.get("/jobs", params)

    def get_job(self, job_id: str) -> dict[str, Any]:
        """Get specific job by ID"""
        return self.api.get(f"/jobs/{job_id}")

    def get_job_stats(self) -> dict[str, Any]:
        """Get job counts for the tenant"""
        return self.api.get("/jobs/stats/overview")

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Cancel a pending or processing job"""
        return self.api.post(f"/jobs/{job_id}/cancel")

    # Lease Endpoints (out-of-process workers)
    def claim_job(
        self,
        worker_id: str,
        types: list[str] | None = None,
        tenant_id: str | None = None,
    ) -> dict[str, Any] | None:
        """Claim the next eligible job; None when the queue is empty"""
        data = self.api.post(
            "/leases/claim",
            json={"worker_id": worker_id, "types": types, "tenant_id": tenant_id},
        )
        return data.get("job")

    def renew_lease(self, job_id: str, worker_id: str) -> dict[str, Any]:
        """Extend a lease held by worker_id"""
        return self.api.post(f"/leases/{job_id}/renew", json={"worker_id": worker_id})

    def complete_job(self, job_id: str, worker_id: str) -> bool:
        """Report success; False when the lease was no longer held"""
        data = self.api.post(
            f"/leases/{job_id}/complete", json={"worker_id": worker_id}
        )
        return bool(data.get("applied"))

    def fail_job(
        self, job_id: str, worker_id: str, error: str, retryable: bool = True
    ) -> bool:
        """Report a failed attempt; False when the lease was no longer held"""
        data = self.api.post(
            f"/leases/{job_id}/fail",
            json={"worker_id": worker_id, "error": error, "retryable": retryable},
        )
        return bool(data.get("applied"))
