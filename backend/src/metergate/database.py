"""Database session management with async SQLAlchemy."""
from typing import Any, AsyncGenerator, Callable

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from metergate.config import settings


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine, applying pool sizing only where the driver supports it."""
    options: dict[str, Any] = {"echo": echo}
    if not database_url.startswith("sqlite"):
        options.update(pool_pre_ping=True, pool_size=20, max_overflow=10)
    return create_async_engine(database_url, **options)


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the API, workers and tests."""
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine(settings.database_url, echo=settings.debug)

AsyncSessionLocal = build_session_factory(engine)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def dialect_insert(session: AsyncSession) -> Callable[..., Any]:
    """
    Dialect-specific ``insert`` exposing ``on_conflict_do_nothing``/``on_conflict_do_update``.

    Raises:
        RuntimeError: Bound database has no ON CONFLICT support here
    """
    dialect = session.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"No upsert support for dialect {dialect!r}")
    return insert


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Commits when the request handler returns and rolls back if it raises.

    Yields:
        AsyncSession: Database session for the request lifecycle
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# Declarative base for all models
Base = declarative_base()
