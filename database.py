"""
Database connection and session management for Identity Reconciliation API
This module sets up the async SQLAlchemy engine with transactional session
management. Supports local PostgreSQL, AWS RDS and SQLite (tests) with
connection pooling and error handling.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from config import settings
from models.base import Base, create_database_engine

# Configure logging
logger = logging.getLogger(__name__)


def _hide_credentials(database_url: str) -> str:
    if "@" not in database_url:
        return database_url
    scheme = database_url.split("://", 1)[0]
    location = database_url.rsplit("@", 1)[1]
    return f"{scheme}://[HIDDEN]@{location}"


class DatabaseManager:
    """
    Database connection manager that handles the SQLAlchemy engine,
    session creation, and connection lifecycle management.
    The engine is created lazily on first use.
    """

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.get_active_database_url()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._initialize_database()
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker:
        if self._session_factory is None:
            self._initialize_database()
        return self._session_factory

    def _initialize_database(self):
        """Initialize database engine and session factory"""
        try:
            logger.info(f"Initializing database connection to: {_hide_credentials(self.database_url)}")

            self._engine = create_database_engine(self.database_url)
            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,  # Records are read after commit
                autoflush=False
            )

            logger.info("Database connection initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database connection: {e}")
            raise

    async def create_tables(self):
        """Create all database tables defined in models"""
        try:
            logger.info("Creating database tables...")
            async with self.engine.begin() as connection:
                await connection.run_sync(Base.metadata.create_all)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Failed to create database tables: {e}")
            raise

    async def test_connection(self) -> bool:
        """Test database connection"""
        try:
            async with self.engine.connect() as connection:
                await connection.execute(text("SELECT 1"))
            logger.debug("Database connection test successful")
            return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager for a transactional database session.
        Commits when the block exits cleanly, rolls back otherwise.
        Usage:
            async with db_manager.get_session() as session:
                # database operations
        """
        session = self.session_factory()
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            await session.close()

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


# Global database manager instance
db_manager = DatabaseManager()
