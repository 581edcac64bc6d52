"""Async database connection using SQLAlchemy (supports SQLite and PostgreSQL)."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool, StaticPool
from sqlmodel import SQLModel

from app.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def get_database_url(url: Optional[str] = None) -> str:
    """Convert database URL to async format."""
    url = url or settings.DATABASE_URL

    # SQLite
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # PostgreSQL
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def build_engine(url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine with dialect-specific pool settings."""
    database_url = get_database_url(url)
    engine_kwargs = {
        "echo": False,
    }

    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        # In-memory DBs must share one connection; file DBs get one per session
        if ":memory:" in database_url:
            engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_pre_ping"] = True
        engine_kwargs["pool_size"] = 10
        engine_kwargs["max_overflow"] = 20  # Seeding fans out one session per record in a chunk
        engine_kwargs["pool_recycle"] = 300
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_reset_on_return"] = "rollback"

    return create_async_engine(database_url, **engine_kwargs)


def build_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


DATABASE_URL = get_database_url()

async_engine = build_engine(DATABASE_URL)

AsyncSessionLocal = build_session_factory(async_engine)


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Initialize database tables."""
    # Register every table on SQLModel.metadata
    import app.models  # noqa: F401

    engine = engine or async_engine
    logger.info("Initializing database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created successfully.")


async def close_db(engine: Optional[AsyncEngine] = None) -> None:
    """Close database connections."""
    engine = engine or async_engine
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed.")
