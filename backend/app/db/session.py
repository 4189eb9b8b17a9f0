import asyncio
import logging
from collections.abc import AsyncGenerator, Awaitable
from typing import TypeVar

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.config import settings
from app.core.errors import UpstreamError
from app.db.base import Base

T = TypeVar("T")
logger = logging.getLogger(__name__)

STORE_RETRY_AFTER_SECONDS = 5

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db() -> None:
    import app.models  # noqa: F401 - register models on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def with_store_timeout(awaitable: Awaitable[T]) -> T:
    """Await a store call; past settings.store_timeout_seconds raise a retryable 503."""
    try:
        return await asyncio.wait_for(awaitable, timeout=settings.store_timeout_seconds)
    except asyncio.TimeoutError as e:
        raise UpstreamError(
            "Database did not respond in time. Please try again.",
            status_code=503,
            retry_after=STORE_RETRY_AFTER_SECONDS,
        ) from e


async def database_connected() -> bool:
    """SELECT 1 for the health endpoint; connecting and querying share one store timeout."""

    async def _ping() -> None:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    try:
        await with_store_timeout(_ping())
        return True
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        return False
