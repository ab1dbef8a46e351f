"""Database connection and session management."""
import logging
from typing import AsyncIterator

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from debrief_service.config.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def is_sqlite_url(url: str) -> bool:
    return url.startswith("sqlite")


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """
    Let SQLAlchemy own BEGIN on SQLite connections.

    pysqlite/aiosqlite otherwise emit their own BEGIN lazily, which breaks
    SAVEPOINT (``begin_nested``) semantics.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_primary_engine(url: str | None = None) -> AsyncEngine:
    """Create the database engine."""
    url = url or settings.database_url

    if is_sqlite_url(url):
        sqlite_engine = create_async_engine(url, echo=settings.debug, future=True)
        enable_sqlite_savepoints(sqlite_engine)
        return sqlite_engine

    return create_async_engine(
        url,
        echo=settings.debug,
        future=True,
        pool_size=20,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=300,
        pool_pre_ping=True,
    )


# Create primary engine
engine = create_primary_engine()

# Primary session maker
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


async def get_db() -> AsyncIterator[AsyncSession]:
    """
    Dependency that provides a database session.

    Commits when the request handler returns, rolls back on error.
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    """Initialize database tables."""
    # Import models so their tables are registered on Base.metadata
    import debrief_service.models  # noqa: F401

    if settings.debug and not is_sqlite_url(settings.database_url):
        logger.info("Alembic migrations skipped (manual migration required)")

    # Enable WAL mode for SQLite to support concurrent access
    if is_sqlite_url(settings.database_url):
        async with engine.connect() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))
            await conn.commit()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_all_engines():
    """Close the database engine."""
    await engine.dispose()
