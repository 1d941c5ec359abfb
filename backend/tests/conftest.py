"""Root conftest for API, repository and driver tests.

Provides:
- In-memory SQLite database (replaces production engine)
- FastAPI test client over ASGITransport with mocked Temporal
- The PPC landing template seeded into the test database
"""

from __future__ import annotations

from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import StaticPool

import app.database as db_module
from app.database import Base

# Import all ORM models so they register with Base.metadata
import app.models.db  # noqa: F401


# ---------------------------------------------------------------------------
# In-memory async SQLite engine (StaticPool shares one connection)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a fresh in-memory SQLite engine per test."""
    engine = db_module.create_db_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Per-test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def patched_db(test_engine: AsyncEngine, session_factory):
    """Point app.database at the test engine for the duration of a test.

    Every get_session() / get_session_ctx() call in the app, the seeder and
    the Temporal activities then uses the in-memory database.
    """
    original_engine = db_module.engine
    original_factory = db_module.async_session_factory
    db_module.engine = test_engine
    db_module.async_session_factory = session_factory
    try:
        yield session_factory
    finally:
        db_module.engine = original_engine
        db_module.async_session_factory = original_factory


@pytest_asyncio.fixture
async def seeded_db(patched_db):
    """Test database with the bundled templates loaded."""
    from app.seeds import seed_templates

    await seed_templates()
    return patched_db


# ---------------------------------------------------------------------------
# Temporal mock
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_temporal_client():
    """Mock Temporal client for route tests."""
    client = AsyncMock()
    client.start_workflow = AsyncMock(return_value=MagicMock(id="test-wf-id"))
    return client


# ---------------------------------------------------------------------------
# FastAPI test client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(seeded_db, mock_temporal_client) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI routes.

    ASGITransport does not run the lifespan, so the database is prepared by
    the seeded_db fixture instead.
    """
    with patch("app.temporal_adapter.get_client", AsyncMock(return_value=mock_temporal_client)):
        from app.main import app

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
