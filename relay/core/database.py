"""
Database configuration and session management
Uses SQLAlchemy with async support
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, AsyncEngine, async_sessionmaker
from sqlalchemy import event, text
from sqlalchemy.pool import NullPool, StaticPool
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from fastapi import Request
import logging

from .config import Settings

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Owns the async engine and session factory for one process.

    Built by the process entry point and shared by the HTTP path and the
    consumer; the engine pool is safe for concurrent use.
    """

    def __init__(self, settings: Settings, url: Optional[str] = None):
        self.url = url or settings.database_url_async
        self.is_sqlite = self.url.startswith("sqlite")

        if self.is_sqlite:
            # SQLite doesn't support connection pooling parameters
            in_memory = ":memory:" in self.url or self.url.rstrip("/").endswith("sqlite+aiosqlite:")
            self.engine: AsyncEngine = create_async_engine(
                self.url,
                echo=settings.DATABASE_ECHO,
                poolclass=StaticPool if in_memory else NullPool,
                connect_args={"check_same_thread": False},
            )
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        else:
            self.engine = create_async_engine(
                self.url,
                echo=settings.DATABASE_ECHO,
                pool_size=settings.DATABASE_POOL_SIZE,
                max_overflow=settings.DATABASE_MAX_OVERFLOW,
                pool_timeout=settings.DATABASE_POOL_TIMEOUT,
                pool_pre_ping=True,  # Verify connections before use
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Context manager for database sessions
        Used by the consumer and by scripts outside a request
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        """Check the store is reachable"""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    async def init_models(self) -> None:
        """Initialize database tables"""
        from relay.models import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")

    async def close(self) -> None:
        """Close database connections"""
        await self.engine.dispose()
        logger.info("Database connections closed")


# Database dependency
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """
    Create and yield database session
    Ensures proper cleanup after use
    """
    database: Database = request.app.state.database
    async with database.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
