"""
Database engine and session scopes.

The API gets one session per request through ``get_session``; the sweep worker
opens its own short transactions through ``session_scope``. Both commit on
success and roll back on any exception.
"""

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core.config import get_settings

settings = get_settings()

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    future=True,
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

SessionFactory = Callable[[], AsyncSession]


@asynccontextmanager
async def session_scope(factory: SessionFactory = async_session_factory) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work outside a request: commit on exit, roll back on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with session_scope() as session:
        yield session
