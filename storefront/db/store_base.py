"""
Shared plumbing for the session-per-operation stores.
Each store call opens its own short session and commits, so writes made mid-deployment
are visible to pollers immediately. Driver errors surface as PersistenceError.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.promotions.errors import PersistenceError

logger = logging.getLogger(__name__)


class SessionStore:
    """Base class for stores that take a session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Store operation '{operation}' failed: {e}")
            raise PersistenceError(f"Failed to {operation}: {e}") from e

    async def ping(self) -> None:
        """Round-trip to the database; raises PersistenceError when it is unreachable."""
        async with self._session("ping database") as session:
            await session.execute(text("SELECT 1"))
