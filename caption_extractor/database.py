"""
Async database module for SQLite using SQLModel.

Backs the persistent key/value store with lifecycle management for the
FastAPI application.
"""

import logging
import threading
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool
from sqlmodel import SQLModel, delete, select, text

from caption_extractor.models import StorageEntry, utcnow

logger = logging.getLogger(__name__)


def get_database_url(database_path: str | None = None) -> str:
    """
    Get the database URL, converting relative paths to absolute.

    Args:
        database_path: Path to database file (relative or absolute). If None, uses settings.
            ``:memory:`` selects an in-memory database.

    Returns:
        SQLite database URL
    """
    if database_path is None:
        from caption_extractor.config import settings
        database_path = settings.database_path

    if database_path == ":memory:":
        return "sqlite+aiosqlite:///:memory:"

    if not Path(database_path).is_absolute():
        # Make path relative to the project directory
        project_dir = Path(__file__).parent.parent
        database_path = str(project_dir / database_path)
    return f"sqlite+aiosqlite:///{database_path}"


class DatabaseEngine:
    """
    Async database engine manager with session factory.

    Provides async database connectivity for SQLite with proper
    lifecycle management for FastAPI applications.
    """

    def __init__(self, database_url: str | None = None, echo: bool = False):
        """
        Initialize the database engine.

        Args:
            database_url: SQLAlchemy database URL for async SQLite. If None, uses settings.
            echo: Whether to echo SQL statements (for debugging)
        """
        self._engine = None
        self._session_factory = None
        self._database_url = database_url
        self._echo = echo
        self._lock = threading.Lock()

    @property
    def database_url(self) -> str:
        """Get the database URL, resolving from settings if not set."""
        if self._database_url is None:
            self._database_url = get_database_url()
        return self._database_url

    @property
    def engine(self):
        """Get or create the async engine."""
        if self._engine is None:
            with self._lock:
                # Double-check after acquiring lock
                if self._engine is None:
                    self._engine = create_async_engine(
                        self.database_url,
                        echo=self._echo,
                        connect_args={"check_same_thread": False},
                        # An in-memory database lives only as long as its single connection
                        poolclass=StaticPool if ":memory:" in self.database_url else NullPool,
                    )
                    logger.info(f"Created async database engine: {self.database_url}")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the async session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    async def init_db(self) -> None:
        """
        Initialize database tables.

        This should be called on application startup.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database tables initialized")

    async def close(self) -> None:
        """Close the database engine and cleanup resources."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine closed")

    async def get_entry(self, key: str) -> StorageEntry | None:
        async with self.session_factory() as session:
            result = await session.execute(select(StorageEntry).where(StorageEntry.key == key))
            return result.scalars().first()

    async def set_entry(self, key: str, value: str) -> StorageEntry:
        """
        Insert or update a key.

        Args:
            key: Storage key
            value: JSON-encoded value

        Returns:
            The stored entry
        """
        async with self.session_factory() as session:
            entry = await session.get(StorageEntry, key)
            if entry is None:
                entry = StorageEntry(key=key, value=value)
                session.add(entry)
            else:
                entry.value = value
                entry.updated_at = utcnow()
            await session.commit()
            await session.refresh(entry)
            return entry

    async def delete_entry(self, key: str) -> int:
        """
        Delete a key.

        Returns:
            Number of entries deleted
        """
        async with self.session_factory() as session:
            result = await session.execute(delete(StorageEntry).where(StorageEntry.key == key))
            await session.commit()
            return result.rowcount or 0

    async def health_check(self) -> dict[str, str]:
        """
        Check database health.

        Returns:
            Dictionary with status and message
        """
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return {"status": "healthy", "database": "connected"}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "database": str(e)}
