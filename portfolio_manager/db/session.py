"""Database session helpers for the portfolio manager."""

from __future__ import annotations

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def configure_engine(database_url: str) -> AsyncEngine:
    """Replace the process-wide engine with one bound to ``database_url``."""

    global _engine, _session_factory
    _engine = create_async_engine(database_url, future=True, echo=False)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Return the singleton async engine, creating it from ``database_url`` or settings."""

    if _engine is None:
        return configure_engine(database_url or get_settings().database_url)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        get_engine()
    assert _session_factory is not None
    return _session_factory


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async session."""

    async with get_session_factory()() as session:
        yield session


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


__all__ = ["configure_engine", "dispose_engine", "get_engine", "get_session", "get_session_factory"]
