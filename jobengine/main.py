from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from jobengine.config.logging import get_logger, setup_logging
from jobengine.config.settings import Settings, settings
from jobengine.infra.database import close_database
from jobengine.v1.core.exceptions import (
    JobEngineError,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    job_engine_exception_handler,
)
from jobengine.v1.core.registries import job_registry
from jobengine.v1.healthz import router as health_router
from jobengine.v1.jobs.registry_init import load_handler_modules
from jobengine.v1.jobs.routes import lease_router
from jobengine.v1.jobs.routes import router as jobs_router

logger = get_logger(__name__)


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Create and configure the job engine sidecar application."""
    app_settings = app_settings or settings

    # Initialize structured logging
    setup_logging(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # Handlers must be registered before the registry is frozen
        registered = load_handler_modules(app_settings.job_handler_modules)
        if app_settings.environment != "development":
            job_registry.freeze()
        logger.info(
            "Job engine sidecar started",
            environment=app_settings.environment,
            handlers=registered,
        )
        yield
        await close_database()

    app = FastAPI(
        title=app_settings.app_name,
        description="Durable background jobs with leases and bounded retries",
        version=app_settings.version,
        debug=app_settings.debug,
        lifespan=lifespan,
        openapi_url="/v1/openapi.json" if app_settings.debug else None,
        docs_url="/v1/docs" if app_settings.debug else None,
        redoc_url="/v1/redoc" if app_settings.debug else None,
    )

    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if app_settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(JobEngineError, job_engine_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Producer/admin surface, then the out-of-process worker surface
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(lease_router, prefix="/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "jobengine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
