import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from jobengine.config.logging import get_logger

logger = get_logger(__name__)


class JobEngineError(Exception):
    """Base exception for the job engine."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(JobEngineError):
    """Raised when enqueue input is malformed; nothing is written."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY, details)


class NotFoundError(JobEngineError):
    """Raised when a job is not found."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, status.HTTP_404_NOT_FOUND, details)


class StoreUnavailable(JobEngineError):
    """Transient failure of the job store; callers should retry with backoff."""

    def __init__(
        self,
        message: str = "Job store unavailable",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE, details)


class LeaseLost(JobEngineError):
    """The worker no longer holds the lease; it must stop and not report an outcome."""

    def __init__(self, job_id: uuid.UUID, worker_id: str):
        self.job_id = job_id
        self.worker_id = worker_id
        super().__init__(
            f"Lease on job {job_id} is no longer held by {worker_id}",
            status.HTTP_409_CONFLICT,
            {"job_id": str(job_id), "worker_id": worker_id},
        )


class UnknownJobType(JobEngineError):
    """No handler is registered for a claimed job's type."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(
            "UnknownJobType",
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            {"type": job_type},
        )


class HandlerError(JobEngineError):
    """A job handler raised; the message becomes the job's last_error."""

    def __init__(self, job_type: str, cause: BaseException):
        self.job_type = job_type
        self.cause = cause
        super().__init__(
            str(cause) or cause.__class__.__name__,
            details={"type": job_type, "exception": cause.__class__.__name__},
        )


class NonRetryableJobError(Exception):
    """Raised by handlers for failures a retry cannot fix (e.g. missing source file)."""


def create_error_response(
    status_code: int,
    message: str,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Create standardized error response envelope."""
    return {
        "ok": False,
        "error": {
            "message": message,
            "code": status_code,
            "details": details or {},
        },
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


def create_success_response(
    data: Any, message: str | None = None, request_id: str | None = None
) -> dict[str, Any]:
    """Create standardized success response envelope."""
    return {
        "ok": True,
        "data": data,
        "message": message,
        "request_id": request_id,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def job_engine_exception_handler(
    request: Request, exc: JobEngineError
) -> JSONResponse:
    """Handle job engine exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Application exception",
        exception=exc.__class__.__name__,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=exc.message,
            details=exc.details,
            request_id=request_id,
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTP exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.warning(
        "HTTP exception",
        status_code=exc.status_code,
        detail=exc.detail,
        request_id=request_id,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            status_code=exc.status_code,
            message=str(exc.detail),
            request_id=request_id,
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    logger.error(
        "Unhandled exception",
        exception=exc.__class__.__name__,
        message=str(exc),
        request_id=request_id,
        exc_info=True,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=create_error_response(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            message="Internal server error",
            request_id=request_id,
        ),
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context and correlation IDs."""

    async def dispatch(self, request: Request, call_next):
        # Generate correlation ID for request tracking
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        from jobengine.config.logging import add_request_context

        add_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id

        return response
