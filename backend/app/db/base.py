"""
Database base configuration

Builds the async SQLAlchemy engine and session factory from ``DatabaseConfig``
and declares the shared declarative ``Base``.
"""

from datetime import datetime, timezone

from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from app.config.settings import DatabaseConfig

ASYNC_DATABASE_URL = DatabaseConfig.get_async_database_url()


def _build_engine(url: str):
    if url.startswith("sqlite"):
        # aiosqlite connections are bound to the loop that opened them
        engine = create_async_engine(url, poolclass=NullPool, echo=DatabaseConfig.ECHO)

        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_async_engine(
        url,
        pool_size=DatabaseConfig.POOL_SIZE,
        max_overflow=DatabaseConfig.MAX_OVERFLOW,
        pool_pre_ping=True,
        pool_recycle=DatabaseConfig.POOL_RECYCLE,
        echo=DatabaseConfig.ECHO,
    )


async_engine = _build_engine(ASYNC_DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def init_db():
    """Create all tables."""
    # Register every model on the metadata
    from app.db import models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db():
    """Drop all tables."""
    from app.db import models  # noqa: F401

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def dispose_db():
    """Dispose database engine."""
    await async_engine.dispose()
