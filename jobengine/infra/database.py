import logging
from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends
from sqlalchemy import event
from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from jobengine.config.settings import Settings, get_settings
from jobengine.v1.core.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

# Failures of the store itself, as opposed to bad statements or constraint
# violations, which propagate unchanged.
TRANSIENT_STORE_ERRORS = (
    OperationalError,
    InterfaceError,
    DisconnectionError,
    PoolTimeoutError,
    OSError,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


def create_engine_for(settings: Settings) -> AsyncEngine:
    """Create the async engine, switching SQLite to immediate transactions."""
    if settings.is_sqlite:
        engine = create_async_engine(
            settings.database_url,
            echo=settings.db_echo,
            connect_args={"timeout": settings.db_sqlite_busy_timeout_s},
        )
        _use_immediate_transactions(engine)
        return engine

    return create_async_engine(
        settings.database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
        echo=settings.db_echo,
    )


def _use_immediate_transactions(engine: AsyncEngine) -> None:
    """
    Take SQLite's write lock when a transaction begins.

    Deferred transactions that read before writing can fail with SQLITE_BUSY
    when two connections try to upgrade their locks at the same time; with
    BEGIN IMMEDIATE concurrent writers wait on the busy timeout instead.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@asynccontextmanager
async def store_guard(session: AsyncSession, operation: str) -> AsyncIterator[None]:
    """Roll back and raise StoreUnavailable when the store fails mid-operation."""
    try:
        yield
    except TRANSIENT_STORE_ERRORS as e:
        try:
            await session.rollback()
        except Exception:
            logger.warning(
                "Rollback failed after store error", extra={"operation": operation}
            )
        raise StoreUnavailable(
            f"Job store unavailable during {operation}",
            details={"operation": operation, "error": str(e)},
        ) from e


class Database:
    """Database connection and session management."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine = create_engine_for(settings)
        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session that is rolled back if the block raises."""
        async with self.SessionLocal() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create tables directly (development and tests; production uses Alembic)."""
        # Import models so they are registered on the metadata
        from jobengine.v1.jobs import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connections."""
        await self.engine.dispose()


# Global database instance
_database: Database | None = None


def get_database(settings: Settings = Depends(get_settings)) -> Database:
    """Get or create the global database instance."""
    global _database
    if _database is None:
        _database = Database(settings)
    return _database


async def close_database() -> None:
    """Dispose the global database engine, if one was created."""
    global _database
    if _database is not None:
        await _database.close()
        _database = None


async def get_session(
    database: Database = Depends(get_database),
) -> AsyncGenerator[AsyncSession, None]:
    """Dependency injection for database sessions."""
    async with database.session() as session:
        yield session


# Convenience type alias for dependency injection
SessionDep = Depends(get_session)
