"""
Shared test configuration and fixtures for the session manager tests.

This module provides:
- Session managers wired to in-memory storage and mock OAuth clients
- A fake Redis client for the Redis backed adapters
- PostgreSQL database setup for the database session store, skipped when no
  database is reachable
"""

import os
import uuid

import fakeredis.aioredis
import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from social.graze.sessions.manager import SessionConfig, SessionManager
from social.graze.sessions.model.storage import Base
from tests.test_helpers import (
    TEST_BASE_URL,
    TEST_SECRET,
    MockOAuthClient,
    MockStorage,
    RefreshingOAuthClient,
)


@pytest.fixture
def storage():
    return MockStorage()


@pytest.fixture
def oauth_client():
    return MockOAuthClient()


@pytest.fixture
def refreshing_oauth_client():
    return RefreshingOAuthClient()


@pytest.fixture
def session_manager(oauth_client, storage):
    """Session manager with default settings and a non-refreshing client."""
    return SessionManager(
        SessionConfig(
            oauth_client=oauth_client,
            storage=storage,
            cookie_secret=TEST_SECRET,
            base_url=TEST_BASE_URL,
        )
    )


@pytest.fixture
def refreshing_session_manager(refreshing_oauth_client, storage):
    """Session manager whose OAuth client supports refresh."""
    return SessionManager(
        SessionConfig(
            oauth_client=refreshing_oauth_client,
            storage=storage,
            cookie_secret=TEST_SECRET,
            base_url=TEST_BASE_URL,
        )
    )


@pytest_asyncio.fixture
async def fake_redis_client():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis()
    yield client
    await client.flushall()
    await client.aclose()


# Test database configuration
TEST_DB_HOST = os.getenv("TEST_DB_HOST", "postgres")
TEST_DB_PORT = os.getenv("TEST_DB_PORT", "5432")
TEST_DB_USER = os.getenv("TEST_DB_USER", "postgres")
TEST_DB_PASSWORD = os.getenv("TEST_DB_PASSWORD", "password")

# Admin URL for database creation/deletion (connects to postgres database)
ADMIN_DATABASE_URL = f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@{TEST_DB_HOST}:{TEST_DB_PORT}/postgres"


async def check_postgres_available():
    """Check if PostgreSQL is available for testing."""
    try:
        admin_engine = create_async_engine(ADMIN_DATABASE_URL, echo=False)
        async with admin_engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        await admin_engine.dispose()
        return True
    except Exception:
        return False


@pytest_asyncio.fixture(scope="function")
async def test_database():
    """Create and clean up a uniquely named test database for each test."""
    if not await check_postgres_available():
        pytest.skip("PostgreSQL database not available for testing")

    unique_db_name = f"sessions_test_{uuid.uuid4().hex[:8]}"
    unique_db_url = (
        f"postgresql+asyncpg://{TEST_DB_USER}:{TEST_DB_PASSWORD}@"
        f"{TEST_DB_HOST}:{TEST_DB_PORT}/{unique_db_name}"
    )

    admin_engine = create_async_engine(
        ADMIN_DATABASE_URL, echo=False, isolation_level="AUTOCOMMIT"
    )

    try:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"CREATE DATABASE {unique_db_name}"))

        yield unique_db_url

    finally:
        async with admin_engine.connect() as conn:
            await conn.execute(text(f"DROP DATABASE IF EXISTS {unique_db_name}"))
        await admin_engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def database_session_maker(test_database):
    """Create the session store table and provide a session factory."""
    engine = create_async_engine(test_database, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()
