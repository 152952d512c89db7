"""
Database Session Management
TradeJournal cTrader Sync

Provides async database connection with:
- Connection pooling
- Dependency injection for FastAPI
- Health check capabilities
"""

from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy import text

from journal.core.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool options; SQLite drivers do not accept queue-pool sizing."""
    if url.startswith("sqlite"):
        return {}
    db_settings = settings.db
    return {
        "pool_size": db_settings.pool_size,
        "max_overflow": db_settings.max_overflow,
        "pool_timeout": db_settings.pool_timeout,
        "pool_recycle": db_settings.pool_recycle,  # Recycle connections after 30 minutes
        "pool_pre_ping": True,  # Verify connections before use
    }


def create_engine(url: Optional[str] = None) -> AsyncEngine:
    url = url or settings.DATABASE_URL
    return create_async_engine(
        url,
        echo=False,
        future=True,
        **_engine_options(url),
    )


def create_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


engine = create_engine()

AsyncSessionLocal = create_session_factory(engine)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database sessions.

    Usage:
        @router.get("/items")
        async def get_items(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(bind: Optional[AsyncEngine] = None) -> None:
    """
    Initialize database tables.

    Note: In production, use Alembic migrations instead.
    """
    from journal.db.base import Base
    # Import models module to register all models with Base
    from journal.db import models  # noqa: F401

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


class DatabaseService:
    """
    Database service for application-level operations.

    Provides health checks and connection management.
    """

    _instance: Optional["DatabaseService"] = None

    def __new__(cls) -> "DatabaseService":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def health_check(self) -> bool:
        """
        Check database connectivity.

        Returns True if database is accessible.
        """
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close all database connections."""
        await engine.dispose()
