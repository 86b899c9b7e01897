"""
CoverWatch Database Session Management

The API shares one pooled engine. Celery tasks and scripts run inside their
own event loop (asyncio.run), so they open a throwaway engine per run via
task_session() instead of borrowing connections from another loop's pool.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@asynccontextmanager
async def task_session(database_url: str) -> AsyncIterator[AsyncSession]:
    """Session on a NullPool engine that is disposed when the block exits."""
    task_engine = create_async_engine(database_url, poolclass=NullPool)
    try:
        async with async_sessionmaker(task_engine, class_=AsyncSession, expire_on_commit=False)() as session:
            yield session
    finally:
        await task_engine.dispose()


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
