"""Async SQLAlchemy engine and session factory.

Learn: SQLAlchemy 2.0 async mode — create_async_engine for connection pooling,
AsyncSession for per-request database access, dependency injection via FastAPI.

Nothing is built at import. The app factory (and the CLI) build an engine
from their Settings; requests get sessions from the factory parked on
app.state.
"""

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from nutriclinic.config import Settings


def build_engine(settings: Settings) -> AsyncEngine:
    """Connection pool for settings.database_url.

    Pool: min 5, max 20 connections. echo=True in dev to see SQL queries.
    """
    if settings.database_url.startswith("sqlite"):
        # SQLite picks its own pool class; sizing args don't apply
        return create_async_engine(settings.database_url, echo=settings.debug)
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=15,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db(request: Request) -> AsyncSession:
    """FastAPI dependency — yields a session per request, auto-closes."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
