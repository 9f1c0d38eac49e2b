"""
cadet_portal/database.py
Database configuration for the ledger store
"""
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine

# Import Base from orm.base to avoid circular imports
from cadet_portal.orm.base import Base
import cadet_portal.orm  # ensures all models are registered

from cadet_portal.config.settings import settings

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def build_engine(database_url: str) -> AsyncEngine:
    """
    Create an async engine with bounded waits.

    Every store call must complete or fail within a bounded time, so both the
    pool checkout and the SQLite busy handler carry a timeout.
    """
    if "sqlite" in database_url.lower():
        return create_async_engine(
            database_url,
            echo=settings.DB_ECHO,
            future=True,
            pool_pre_ping=True,
            connect_args={
                "timeout": float(settings.DB_BUSY_TIMEOUT),  # SQLite busy timeout in seconds
            }
        )

    # PostgreSQL/MySQL: Use standard pool with larger size
    return create_async_engine(
        database_url,
        echo=settings.DB_ECHO,
        future=True,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=3600,
    )


engine = build_engine(DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db():
    """Dependency for getting async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db():
    """Create missing tables."""
    logger.info("Initializing database...")

    try:
        logger.info(f"Database dialect: {engine.url.get_backend_name()}")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("✓ Database initialization complete")

    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


async def close_db():
    """Close database connection"""
    await engine.dispose()
    logger.info("Database connection closed")
