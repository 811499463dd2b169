"""Pytest configuration and fixtures for async testing.

Tests run against a throwaway SQLite file per test unless TEST_DATABASE_URL
points at a PostgreSQL database.
"""
import os
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from metergate.api.deps import get_db
from metergate.api.v1.billing import get_proof_storage
from metergate.database import build_engine, build_session_factory
from metergate.integrations.proof_storage import PaymentProofStorage
from metergate.main import app
from metergate.middleware.rate_limit import AdminRateLimiter, MemoryRateLimitStore, get_admin_rate_limiter
from metergate.models import Base

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL")


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Create an engine with a fresh schema for each test.

    Yields:
        AsyncEngine bound to the test database
    """
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'metergate_test.db'}"
    engine = build_engine(url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory for code under test that opens its own sessions."""
    return build_session_factory(test_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh database session for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
def proof_storage(tmp_path: Path) -> PaymentProofStorage:
    """Proof storage writing under the test's temporary directory."""
    return PaymentProofStorage(base_dir=tmp_path / "payment-proofs")


@pytest.fixture(scope="function")
def admin_rate_limiter() -> AdminRateLimiter:
    """In-process admin limiter so counters never outlive a test."""
    return AdminRateLimiter(MemoryRateLimitStore(), window_seconds=60)


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    proof_storage: PaymentProofStorage,
    admin_rate_limiter: AdminRateLimiter,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for the application, bound to the test database.

    Every request gets its own session, like the real ``get_db``.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        """Override database dependency to use test database."""
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_proof_storage] = lambda: proof_storage
    app.dependency_overrides[get_admin_rate_limiter] = lambda: admin_rate_limiter

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    # Clean up
    app.dependency_overrides.clear()
