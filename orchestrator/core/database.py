"""Database configuration and connection management"""

from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
    AsyncEngine
)
from sqlalchemy.pool import AsyncAdaptedQueuePool
from orchestrator.core.config import settings

# Import Base from models so every table is registered on the same metadata
from orchestrator.models import Base

engine: Optional[AsyncEngine] = None
async_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_database_url() -> str:
    """Construct the async database URL"""
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    return (
        f"mysql+aiomysql://{settings.MYSQL_USER}:{settings.MYSQL_PASSWORD}"
        f"@{settings.MYSQL_HOST}:{settings.MYSQL_PORT}/{settings.MYSQL_DATABASE}"
    )


def create_session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory shared by the scanner, dispatcher and services"""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(create_tables: bool = False) -> None:
    """Initialize the async engine and session factory"""
    global engine, async_session_factory

    url = get_database_url()

    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=settings.DEBUG)
    else:
        engine = create_async_engine(
            url,
            echo=settings.DEBUG,
            pool_size=10,  # Maximum number of connections in the pool
            max_overflow=20,  # Maximum overflow connections beyond pool_size
            pool_timeout=30,  # Timeout for getting connection from pool
            pool_recycle=3600,  # Recycle connections after 1 hour
            pool_pre_ping=True,  # Verify connections before using
            poolclass=AsyncAdaptedQueuePool,
        )

    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async_session_factory = create_session_factory(engine)


async def close_database() -> None:
    """Close the engine and cleanup connections"""
    global engine, async_session_factory
    if engine:
        await engine.dispose()
        engine = None
        async_session_factory = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a database session, rolling back on error.

    Usage:
        async for session in get_session():
            service = ScheduledTestService(session)
    """
    if async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with async_session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise

