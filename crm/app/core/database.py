"""
Deal Pipeline CRM Database Configuration
SQLAlchemy setup for the hosted PostgreSQL/Supabase deals store
"""

from typing import AsyncGenerator, Dict, Any
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
import structlog

from .config import settings

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


def _engine_options(database_url: str) -> Dict[str, Any]:
    """Engine keyword arguments for the configured backend"""
    if database_url.startswith("sqlite"):
        # Local development and test runs
        return {"connect_args": {"check_same_thread": False}}

    return {"pool_pre_ping": True, "pool_recycle": 300}


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **_engine_options(settings.database_url)
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.error("Database session error", error=str(e))
            await session.rollback()
            raise


async def ping_db(session: AsyncSession) -> bool:
    """Round-trip a trivial query to the store"""
    try:
        await session.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database ping failed", error=str(e))
        return False


async def init_db():
    """Create the deals table when it is missing"""
    async with engine.begin() as conn:
        from ..models import deals  # noqa: F401

        await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified", url=engine.url.render_as_string(hide_password=True))


async def close_db():
    """Close database connections"""
    await engine.dispose()
    logger.info("Database connections closed")
