"""SQLite storage for key-value slots and asset blobs."""

import logging
from pathlib import Path
from typing import Optional, Union

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from freeflow_engine.core.config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""
    pass


def create_database_engine(path: Union[str, Path], echo: bool = False) -> AsyncEngine:
    """Async engine for the SQLite file at `path`, in WAL mode with a 5s busy timeout."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", echo=echo)

    @event.listens_for(engine.sync_engine, "connect")
    def _configure_sqlite(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()

    return engine


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_database_engine(settings.DATABASE_PATH, echo=settings.DEBUG)
async_session_maker = create_session_maker(engine)


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """Create the slot and blob tables if needed."""
    from freeflow_engine.models import asset_blob, kv_slot  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created/verified")


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
    logger.info("Database connections closed")

