"""Async SQLAlchemy engine and session helpers.

Provides a configured async engine, sessionmaker and helper functions for
initializing the database.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from timekeeper.config.config import settings
from timekeeper.core.logging import logger


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for ``url``.

    SQLite (used for local runs and tests) does not take pool sizing
    arguments, so they are only passed for server databases.
    """
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url, echo=echo, pool_size=5, max_overflow=10, pool_pre_ping=True
    )


engine = build_engine(settings.DATABASE_URL_ASYNC, echo=settings.DB_ECHO)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)

Base = declarative_base()


async def initialize_database(bind: AsyncEngine = engine):
    """Create all metadata tables defined on the declarative `Base`.

    Raises:
        Exception: Re-raises any exception encountered while initializing.
    """

    # NOTE: models must be imported so their tables are registered on Base
    import timekeeper.models.auth  # noqa: F401

    logger.info("Initializing database tables")
    async with bind.begin() as conn:
        try:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database initialization complete")
        except Exception:
            logger.exception("Database initialization failed")
            raise
