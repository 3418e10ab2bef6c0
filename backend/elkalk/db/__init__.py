"""
Database Layer - Async SQLAlchemy engine + session factory.

The engine is only created when DATABASE_URL is set; without it the service
runs on the in-memory stores.
"""
import os
import logging
from typing import Optional
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger("elkalk-db")


def normalize_database_url(raw_url: str) -> str:
    """Force the asyncpg driver on plain postgres URLs."""
    url = raw_url
    if url.startswith("postgresql://") and "+asyncpg" not in url:
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    return url


DATABASE_URL = normalize_database_url(os.getenv("DATABASE_URL", ""))


class Base(DeclarativeBase):
    pass


engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None

if DATABASE_URL:
    engine = create_async_engine(
        DATABASE_URL,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        echo=False,
        pool_timeout=5,
    )
    AsyncSessionLocal = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db():
    """Create the learning-loop tables. No-op without DATABASE_URL."""
    if engine is None:
        logger.warning("DATABASE_URL not set — skipping init_db() (in-memory stores)")
        return
    from elkalk.models import orm_models  # noqa: F401
    async with engine.begin() as conn:
        if os.getenv("DB_RESET_ON_STARTUP", "").lower() in ("1", "true", "yes"):
            logger.warning("DB_RESET_ON_STARTUP=true — dropping all tables")
            await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized.")

