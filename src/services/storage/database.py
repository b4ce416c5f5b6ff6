"""
Database wiring for the clinic records (audio sessions, transcripts, reports).

One async engine per process, built lazily from ``settings.database_url``.
Request handlers and services open a unit of work with ``get_session()``;
the block commits when it exits cleanly and rolls back when it raises.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.core.config import get_settings


class Base(DeclarativeBase):
    """Base class of the clinic ORM tables in ``models_db``."""


# Tests swap these for an in-memory engine and clear them with reset_engine()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _ensure_sqlite_dir(db_url: str) -> None:
    """Make sure the folder of a file-backed SQLite database exists."""
    url = make_url(db_url)
    if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
        return
    Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def get_engine(url: str | None = None) -> AsyncEngine:
    """Process-wide engine; *url* only matters on the first call."""
    global _engine
    if _engine is None:
        db_url = url or get_settings().database_url
        _ensure_sqlite_dir(db_url)
        _engine = create_async_engine(db_url, echo=False)
    return _engine


@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    """Open a unit of work against the clinic database."""
    global _session_factory
    if _session_factory is None:
        # Rows stay readable after commit; routes serialize them afterwards
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine | None = None) -> None:
    """Create the session, transcript and report tables if they are missing."""
    from src.services.storage import models_db  # noqa: F401

    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine on shutdown."""
    engine = _engine
    reset_engine()
    if engine is not None:
        await engine.dispose()


def reset_engine() -> None:
    """Forget the engine and session factory without disposing them."""
    global _engine, _session_factory
    _engine = None
    _session_factory = None
