"""Database engine, session management, and table creation."""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from .config import WafPlaneConfig
from .models.base import Base

logger = logging.getLogger("wafplane.database")

_engine = None
_session_factory = None


def get_engine(config: WafPlaneConfig):
    """Get or create the async database engine."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(
            config.database_url,
            echo=config.debug,
            future=True,
            pool_pre_ping=True,
            connect_args={"timeout": 30},
        )
    return _engine


def get_session_factory(config: WafPlaneConfig) -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _session_factory
    if _session_factory is None:
        engine = get_engine(config)
        _session_factory = async_sessionmaker(engine, expire_on_commit=False)
    return _session_factory


async def create_tables(config: WafPlaneConfig) -> None:
    """Create all database tables (schema migrations are managed elsewhere)."""
    engine = get_engine(config)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database tables ensured (%s)", engine.dialect.name)


async def ping_database(session_factory: async_sessionmaker[AsyncSession]) -> bool:
    """Return True if a trivial statement succeeds."""
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("database ping failed: %s", e)
        return False


async def close_engine() -> None:
    """Close the database engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
