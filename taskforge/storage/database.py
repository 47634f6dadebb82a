"""Async database connection management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from taskforge.core.config import get_settings
from taskforge.storage.models import Base


class Database:
    """
    Engine and session factory for one database URL.

    Example:
        >>> db = Database("sqlite+aiosqlite:///./taskforge.db")
        >>> await db.init()
        >>> async with db.session() as session:
        ...     await session.execute(query)
    """

    def __init__(self, url: str | None = None, echo: bool | None = None) -> None:
        settings = get_settings()
        self.url = url or settings.taskforge_database_url
        self.echo = settings.taskforge_debug if echo is None else echo
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the async engine."""
        if self._engine is None:
            options: dict[str, Any] = {"echo": self.echo, "pool_pre_ping": True}
            if not self.url.startswith("sqlite"):
                options.update(pool_size=10, max_overflow=20, pool_timeout=30, pool_recycle=3600)

            self._engine = create_async_engine(self.url, **options)
            logger.info(f"Database engine created ({self.url.split('://', 1)[0]})")

        return self._engine

    @property
    def session_maker(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the async session maker."""
        if self._session_maker is None:
            self._session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_maker

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session.

        Commits on success and rolls back on error.
        """
        async with self.session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init(self) -> None:
        """Create all tables that don't exist yet."""
        logger.info("Initializing database schema")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop(self) -> None:
        """
        Drop all tables.

        WARNING: This will delete all data!
        """
        logger.warning("Dropping all database tables")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        """Close database connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None
            logger.info("Database connections closed")

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
