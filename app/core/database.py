"""
Database configuration and session management
"""

from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    async_sessionmaker,
    create_async_engine
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool, AsyncAdaptedQueuePool
from sqlalchemy import event as sa_event
import logging

from app.config import settings

logger = logging.getLogger(__name__)


def create_engine_for_url(url: str, echo: bool = False) -> AsyncEngine:
    """
    Build an async engine with pool settings appropriate for the backend
    """
    if url.startswith("sqlite"):
        engine = create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        # SQLite takes the write lock lazily; BEGIN IMMEDIATE makes each
        # transaction serialize up front, as SELECT ... FOR UPDATE does on Postgres
        @sa_event.listens_for(engine.sync_engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @sa_event.listens_for(engine.sync_engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    if settings.is_testing:
        # NullPool doesn't accept pool parameters
        return create_async_engine(url, echo=echo, poolclass=NullPool)

    return create_async_engine(
        url,
        echo=echo,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        poolclass=AsyncAdaptedQueuePool,
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Create async engine
engine: AsyncEngine = create_engine_for_url(settings.DATABASE_URL, echo=settings.DB_ECHO)

# Create async session factory
async_session = create_session_factory(engine)

# Create declarative base
Base = declarative_base()


async def init_db():
    """
    Initialize database connections
    """
    # Import models so their tables are registered on Base.metadata
    import app.models  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db():
    """
    Close database connections
    """
    await engine.dispose()
    logger.info("Database connections closed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency to get a read-only database session.
    Writes go through a unit of work that owns its own transaction.
    """
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
