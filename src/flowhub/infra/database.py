"""Database engine and session management.

SQLite (aiosqlite) by default; any async SQLAlchemy URL works, e.g.
postgresql+asyncpg://... with the postgres extra installed.
"""

import logging
from collections.abc import AsyncGenerator
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from flowhub.app.config import get_settings

# Register tables on SQLModel.metadata
from flowhub.core.models import InstanceRecord, MonitoringConfigRecord  # noqa: F401

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _ensure_sqlite_dir(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return
    database = parsed.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


async def init_db(url: str | None = None) -> None:
    global _engine, _session_factory

    settings = get_settings()
    url = url or settings.storage.database_url
    _ensure_sqlite_dir(url)

    _engine = create_async_engine(url, echo=settings.storage.echo, pool_pre_ping=True)
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    try:
        async with _engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info(
            "Database connected",
            extra={"event": "db_connected", "backend": make_url(url).get_backend_name()},
        )
    except Exception as e:
        logger.error(
            "Database connection failed",
            extra={
                "event": "db_error",
                "error_type": type(e).__name__,
                "error": str(e),
            },
        )
        raise


async def close_db() -> None:
    global _engine, _session_factory

    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized")
    return _engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized")

    async with _session_factory() as session:
        yield session


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get session factory for creating new sessions."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized")
    return _session_factory
