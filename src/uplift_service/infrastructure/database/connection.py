"""Database engines and sessions for the API and the learning worker."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool, NullPool

from uplift_service.config import Settings, get_settings
from uplift_service.infrastructure.database.models import SCHEMA

logger = structlog.get_logger()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _connect_args(settings: Settings) -> dict:
    # asyncpg: unqualified names resolve to the uplift schema first
    return {
        "server_settings": {
            "application_name": settings.app_name,
            "search_path": f"{SCHEMA},public",
        },
        "command_timeout": settings.upstream_timeout_seconds * 10,
    }


def create_engine(settings: Settings, pooled: bool = True) -> AsyncEngine:
    """
    Build an async engine.

    The API process keeps a pool. Celery tasks call ``asyncio.run`` per task,
    so they get an unpooled engine whose connections never outlive the loop.
    """
    if not pooled:
        return create_async_engine(
            settings.database_url,
            poolclass=NullPool,
            connect_args=_connect_args(settings),
        )
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
        connect_args=_connect_args(settings),
    )


def _sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Process-wide session factory for the API."""
    global _engine, _session_factory
    if _session_factory is None:
        _engine = create_engine(get_settings())
        _session_factory = _sessionmaker(_engine)
    return _session_factory


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database pool disposed")
    _engine = None
    _session_factory = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session dependency.

    Commits once the endpoint returns so served-recommendation events are
    persisted; rolls back if the endpoint raised.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for one worker task, on its own unpooled engine."""
    engine = create_engine(get_settings(), pooled=False)
    try:
        async with _sessionmaker(engine)() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    finally:
        await engine.dispose()
