"""Async database engine and session management.

Provides:
    - _get_engine / _get_session_factory: lazy singletons built from Settings
      (PostgreSQL via asyncpg, or SQLite via aiosqlite).
    - session_scope: async context manager yielding one session per batch.
    - init_db / close_db: lifecycle hooks for the indexer process.

Usage:
    async with session_scope() as session:
        store = SqlEntityStore(session)
        ...
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from marketplace_indexer.config import get_settings
from marketplace_indexer.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from marketplace_indexer.config import Settings

logger = get_logger(__name__)

# Module-level singletons (initialized lazily)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.db_echo_sql}
    if settings.database_url.startswith("sqlite"):
        return options
    return {
        **options,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_timeout": settings.db_pool_timeout,
        "pool_pre_ping": True,
    }


def _get_engine() -> AsyncEngine:
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        options = _engine_options(settings)
        _engine = create_async_engine(settings.database_url, **options)
        logger.info(
            "database.engine_created",
            dialect=_engine.dialect.name,
            pool_size=options.get("pool_size"),
        )
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory (lazy singleton)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=_get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession] | None = None,
) -> AsyncIterator[AsyncSession]:
    """Yield a session that commits on success and rolls back on error.

    Args:
        factory: Session factory to use; defaults to the settings-backed one.
    """
    factory = factory or _get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            logger.debug("database.rolled_back")
            raise


async def init_db() -> None:
    """Create tables if they don't exist (development only).

    Other environments are expected to manage the schema with migrations.
    """
    from marketplace_indexer.infrastructure.database.orm_models import Base

    engine = _get_engine()
    settings = get_settings()

    if settings.is_development:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("database.tables_created")
    else:
        logger.info("database.skipping_create_all", reason="not in development mode")


async def close_db() -> None:
    """Dispose of the database engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
