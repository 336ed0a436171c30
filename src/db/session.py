"""Async Postgres engine and session helpers.

Request handlers get a session through ``get_async_session``; the
scheduler and scripts open their own with ``session_scope``.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.config.settings import get_settings

_engine = None
_session_factory = None


def _get_engine():
    """Create or return the cached async engine.

    Returns:
        AsyncEngine for the configured Postgres database.
    """
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            echo=False,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return _engine


def _get_session_factory():
    """Create or return the cached session factory.

    Returns:
        Async session factory bound to the engine.
    """
    global _session_factory  # noqa: PLW0603
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=_get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session with auto-commit.

    Commits on successful completion, rolls back on exception.

    Yields:
        AsyncSession that commits on success.
    """
    factory = _get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Alias for FastAPI Depends() compatibility
get_async_session = get_session


def session_scope() -> AsyncSession:
    """Open a standalone session outside a request.

    Used by background jobs that run without FastAPI dependency
    injection. Use as ``async with session_scope() as session``; the
    caller commits explicitly.

    Returns:
        New AsyncSession (also an async context manager).
    """
    return _get_session_factory()()
