"""FastAPI dependency injection functions."""

import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession

from automation.engine import ExecutionEngine
from automation.factory import AutomationRuntime, build_runtime
from db.database import AsyncSessionLocal

logger = logging.getLogger(__name__)


async def get_db() -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error("Database error: %s", e)
            await session.rollback()
            raise


@lru_cache()
def get_runtime() -> AutomationRuntime:
    """Process-wide engine and scheduler bound to the application session factory."""
    return build_runtime(AsyncSessionLocal)


def get_engine() -> ExecutionEngine:
    return get_runtime().engine
