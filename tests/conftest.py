from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient

from jobengine.config.settings import Settings, get_settings
from jobengine.infra.database import Database, get_session
from jobengine.main import create_app
from jobengine.v1.core.registries import HandlerRegistry
from jobengine.v1.jobs.events import InMemoryEventSink
from jobengine.v1.jobs.lease import LeaseManager
from jobengine.v1.jobs.models import Job
from jobengine.v1.jobs.reducer import OutcomeReducer
from jobengine.v1.jobs.routes import get_event_sink
from jobengine.v1.jobs.schemas import JobCreate
from jobengine.v1.jobs.service import JobService


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite file."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}",
        environment="test",
        debug=False,
        job_lease_duration_s=60,
        job_lease_renew_interval_s=0,
        job_poll_interval_ms=10,
        job_backoff_enabled=False,
        job_reaper_interval_s=1,
        job_store_error_backoff_s=0.01,
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncGenerator[Database, None]:
    db = Database(settings)
    await db.create_all()
    yield db
    await db.close()


@pytest.fixture
def session_factory(database: Database):
    return database.SessionLocal


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def events() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def registry() -> HandlerRegistry:
    return HandlerRegistry()


@pytest.fixture
def job_service(settings, events, clock) -> JobService:
    return JobService(settings, event_sink=events, clock=clock)


@pytest.fixture
def lease_manager(settings, events, clock) -> LeaseManager:
    return LeaseManager(settings, clock=clock, event_sink=events)


@pytest.fixture
def reducer(settings, events, clock) -> OutcomeReducer:
    return OutcomeReducer(settings, clock=clock, event_sink=events)


@pytest.fixture
def enqueue(session_factory, job_service):
    """Enqueue a job in its own session and return its id."""

    async def _enqueue(
        type: str = "license_pdf",
        tenant_id: str = "t1",
        payload=None,
        max_attempts: int | None = None,
    ):
        async with session_factory() as session:
            result = await job_service.enqueue_job(
                session,
                JobCreate(
                    tenant_id=tenant_id,
                    type=type,
                    payload={} if payload is None else payload,
                    max_attempts=max_attempts,
                ),
            )
        return result.job_id

    return _enqueue


@pytest.fixture
def fetch_job(session_factory):
    """Read a job's current row in a fresh session."""

    async def _fetch(job_id) -> Job | None:
        async with session_factory() as session:
            return await session.get(Job, job_id)

    return _fetch


@pytest.fixture
def claim(session_factory, lease_manager):
    """Claim in a fresh session."""

    async def _claim(worker_id: str = "worker-a", **kwargs) -> Job | None:
        async with session_factory() as session:
            return await lease_manager.claim(session, worker_id, **kwargs)

    return _claim


@pytest.fixture
async def client(settings, database, events) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, wired to the test database."""
    app = create_app()

    async def _session():
        async with database.session() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_event_sink] = lambda: events

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
