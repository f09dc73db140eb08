"""Async database connection using SQLAlchemy (supports SQLite and PostgreSQL)."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import InterfaceError, InvalidRequestError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def get_database_url(url: str) -> str:
    """Convert database URL to async format."""
    # SQLite
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # PostgreSQL
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def create_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Build an async engine with driver-appropriate pool settings."""
    database_url = get_database_url(url)
    engine_kwargs: dict = {"echo": echo}

    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = True  # Verify connection before checkout
        engine_kwargs["pool_size"] = 10
        engine_kwargs["max_overflow"] = 20
        engine_kwargs["pool_recycle"] = 300  # Managed Postgres drops idle connections
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_reset_on_return"] = "rollback"
        # Kill queries that run longer than 60s
        engine_kwargs["connect_args"] = {
            "server_settings": {"statement_timeout": "60000"}
        }

    return create_async_engine(database_url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> SessionFactory:
    """Session factory shared by every component that touches the store."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    from matchday import models  # noqa: F401 (registers the tables)

    logger.info("Initializing database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created successfully.")


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections."""
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed.")


async def ping_db(session_factory: SessionFactory) -> bool:
    """Return True when a trivial query round-trips."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        return False


def get_pool_status(engine: AsyncEngine) -> dict:
    """Get current connection pool statistics for monitoring."""
    if engine.dialect.name == "sqlite":
        return {"type": "sqlite", "pooled": False}

    pool = engine.pool
    checked_out = pool.checkedout()
    total_capacity = pool.size() + pool.overflow()
    return {
        "type": "postgresql",
        "pool_size": pool.size(),
        "checked_in": pool.checkedin(),
        "checked_out": checked_out,
        "overflow": pool.overflow(),
        "utilization_pct": round(
            (checked_out / total_capacity) * 100, 1
        ) if total_capacity > 0 else 0,
    }


@asynccontextmanager
async def get_session_with_retry(
    session_factory: SessionFactory,
    max_retries: int = 3,
    retry_delay: float = 1.0,
) -> AsyncIterator[AsyncSession]:
    """
    Context manager that provides a session with automatic retry on connection errors.

    Use this for scheduled jobs that may encounter stale connections after a
    database restart or network interruption.

    Example:
        async with get_session_with_retry(session_factory) as session:
            result = await session.execute(...)
            await session.commit()

    Retries only happen on session CREATION failure. If a connection drops
    DURING execution, the exception propagates to the caller.
    """
    last_error = None
    current_delay = retry_delay
    session = None

    for attempt in range(max_retries):
        try:
            session = session_factory()
            # Test the connection is alive before yielding
            await session.connection()
            break
        except (InterfaceError, OperationalError, InvalidRequestError) as e:
            last_error = e
            error_msg = str(e).lower()

            if session is not None:
                try:
                    await session.close()
                except Exception as close_error:
                    logger.debug(f"Error closing failed session: {close_error}")
                session = None

            retryable = any(
                marker in error_msg
                for marker in ("greenlet", "closed", "connection", "terminated")
            )
            if retryable and attempt < max_retries - 1:
                logger.warning(
                    f"Database connection error (attempt {attempt + 1}/{max_retries}): {e}. "
                    f"Retrying in {current_delay}s..."
                )
                await asyncio.sleep(current_delay)
                current_delay *= 2
                continue

            raise

    if session is None:
        if last_error:
            raise last_error
        raise RuntimeError("Failed to create database session after retries")

    try:
        yield session
    finally:
        try:
            await session.close()
        except Exception as close_error:
            logger.debug(f"Error closing session during cleanup: {close_error}")
