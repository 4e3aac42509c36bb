"""Database engine, session factories and the declarative Base."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from app.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a request-scoped session."""
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def job_session_factory() -> AsyncIterator[async_sessionmaker]:
    """Session factory backed by a dedicated engine for one background run.

    The engine (and its pool) is disposed when the run finishes.
    """
    job_engine = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)
    try:
        yield async_sessionmaker(job_engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await job_engine.dispose()
        logger.debug("Disposed background job engine")
