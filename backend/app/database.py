"""Async SQLAlchemy setup shared by the API, the seeder and Temporal activities.

SQLite (aiosqlite) in development, PostgreSQL (asyncpg) in production,
selected by DATABASE_URL. SqlExecutionStore commits per save; the session
scopes here commit whatever is left and roll back on error.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import sqlalchemy
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./hybridflow.db")
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
SQLITE_BUSY_TIMEOUT_MS = int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000"))


def normalize_database_url(url: str) -> str:
    """Point plain postgres URLs at the asyncpg driver."""
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    # Enforce ON DELETE CASCADE and wait on a busy worker instead of failing
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
    cursor.close()


def create_db_engine(url: str = DATABASE_URL, **kwargs: Any) -> AsyncEngine:
    """Create an AsyncEngine for url.

    Pool sizing applies to server databases only; SQLite connections get
    foreign keys and a busy timeout on connect.
    """
    url = normalize_database_url(url)
    if not _is_sqlite(url):
        kwargs.setdefault("pool_size", DB_POOL_SIZE)
        kwargs.setdefault("max_overflow", DB_MAX_OVERFLOW)
    db_engine = create_async_engine(url, echo=DB_ECHO, **kwargs)
    if _is_sqlite(url):
        event.listen(db_engine.sync_engine, "connect", _sqlite_on_connect)
    return db_engine


engine: AsyncEngine = create_db_engine()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


@asynccontextmanager
async def get_session_ctx() -> AsyncGenerator[AsyncSession, None]:
    """Session scope for code outside a request (Temporal activities, seeding).

    Resolves the module-level factory on each call, so tests can swap it.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for database sessions."""
    async with get_session_ctx() as session:
        yield session


async def init_db() -> None:
    """Create all tables. Use for development/testing only."""
    url = engine.url.render_as_string(hide_password=True)
    async with engine.begin() as conn:
        if _is_sqlite(url):
            # WAL lets the API and a worker process share the file
            await conn.execute(sqlalchemy.text("PRAGMA journal_mode=WAL"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready: {url}")


async def close_db() -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()
