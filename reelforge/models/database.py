import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from reelforge.config import get_settings
from reelforge.models.base import Base

settings = get_settings()
logger = logging.getLogger(__name__)

# Async engine for FastAPI
engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=5,
    max_overflow=0,  # Queue instead of exceeding the connection limit
    pool_pre_ping=True,  # Check connection health before use
    pool_recycle=300,  # Recycle connections after 5 minutes
    pool_timeout=30,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def init_db() -> None:
    """Initialize database with retry logic for connection failures."""
    max_retries = 5
    retry_delay = 2  # seconds

    for attempt in range(max_retries):
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            return
        except Exception as e:
            if attempt < max_retries - 1:
                logger.warning(
                    f"DB connection attempt {attempt + 1}/{max_retries} failed: {e}. "
                    f"Retrying in {retry_delay} seconds..."
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # Exponential backoff
            else:
                logger.error(f"Failed to connect to database after {max_retries} attempts")
                raise


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


@asynccontextmanager
async def task_session() -> AsyncGenerator[AsyncSession, None]:
    """Session for Celery tasks.

    Each task runs on its own event loop, so pooled connections cannot be
    shared across tasks; a throwaway NullPool engine is used instead.
    """
    task_engine = create_async_engine(settings.database_url, poolclass=NullPool)
    maker = async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise
    finally:
        await task_engine.dispose()
