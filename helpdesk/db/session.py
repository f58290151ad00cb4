"""
Database session management.

WHY: Async database sessions are required for FastAPI's async/await pattern.
Using a context manager ensures proper connection cleanup and transaction management.
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from helpdesk.core.config import settings


def _engine_options(url: str) -> dict:
    """
    Build engine keyword arguments for the configured backend.

    WHY: pool_pre_ping recycles stale connections. Pool sizing only applies
    to server databases; SQLite (used in development) rejects it.
    """
    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if url.startswith("postgresql"):
        options.update(pool_size=10, max_overflow=20)
    return options


engine = create_async_engine(
    settings.async_database_url,
    **_engine_options(settings.async_database_url),
)

# Create session factory
# WHY: expire_on_commit=False keeps committed rows readable after the
# service commits, which is when notifications are scheduled.
# autoflush=False gives explicit control over when SQL is emitted.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get database session.

    WHY: FastAPI dependency injection ensures each request gets its own
    database session, with automatic cleanup via context manager.
    Services commit their own mutations; the commit here covers anything
    left pending, and the rollback discards partial work on errors.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
