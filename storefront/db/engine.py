"""
Async SQLAlchemy engine and session factory.
Uses the asyncpg driver for PostgreSQL and aiosqlite for local/test databases.
Engine is lazily created on first use to avoid import-time connection failures.
"""
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from storefront.config.settings import settings
from storefront.db.base import Base

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker] = None


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with driver-appropriate options."""
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
        )
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
        connect_args={"ssl": "disable"} if "asyncpg" in database_url else {},
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    """Lazily create and return the async engine singleton."""
    global _engine
    if _engine is None:
        _engine = build_engine(settings.database_url, echo=False)
        logger.info(f"Created async engine for {settings.database_url.split('@')[-1]}")
    return _engine


def get_session_factory() -> async_sessionmaker:
    """Lazily create and return the session factory singleton."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables directly (dev/test); production uses Alembic migrations."""
    from storefront.db import models  # noqa: F401  registers tables on Base.metadata

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Dispose the engine on shutdown (call from lifespan)."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Async engine disposed")

