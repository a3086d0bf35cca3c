"""
Storage - Database.

============================================================
RESPONSIBILITY
============================================================
Manages database connections and sessions.

- Creates the async engine and session factory
- Provides short-lived transaction scopes
- Creates tables on startup
- Health checks for the connection

============================================================
DESIGN PRINCIPLES
============================================================
- Async by default (SQLAlchemy asyncio extension)
- One transaction per logical step: "create order" and
  "mark order OPEN after exchange ack" are separate scopes
- Every failure rolls back and is re-raised as DatabaseError
- SQLite (aiosqlite) by default, any async URL accepted

============================================================
"""

import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from core.exceptions import DatabaseError
from storage.models.base import Base


logger = logging.getLogger(__name__)


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./risk_management.db"


# ============================================================
# CONFIGURATION
# ============================================================

@dataclass
class DatabaseConfig:
    """Database connection configuration."""

    url: str = DEFAULT_DATABASE_URL
    """Async SQLAlchemy URL."""

    echo: bool = False
    """Log emitted SQL."""

    pool_size: int = 5
    """Connection pool size (ignored for SQLite)."""

    max_overflow: int = 10
    """Extra connections beyond pool_size (ignored for SQLite)."""

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and (
            self.url.endswith("://") or ":memory:" in self.url
        )

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """
        Load configuration from environment variables.

        Environment variables:
        - DATABASE_URL
        - DATABASE_ECHO
        """
        config = cls()
        if os.getenv("DATABASE_URL"):
            config.url = os.getenv("DATABASE_URL")
        if os.getenv("DATABASE_ECHO"):
            config.echo = os.getenv("DATABASE_ECHO", "").lower() in ("1", "true", "yes")
        return config


# ============================================================
# DATABASE
# ============================================================

class Database:
    """
    Owner of the async engine and session factory.

    Usage:
        db = Database(DatabaseConfig.from_env())
        await db.connect()
        async with db.transaction_scope() as session:
            session.add(record)
        await db.disconnect()
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self._config = config or DatabaseConfig()
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise DatabaseError("Database is not connected", operation="engine")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self._engine is not None

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def connect(self, create_tables: bool = True) -> None:
        """
        Create the engine and (optionally) all tables.

        Args:
            create_tables: Run metadata.create_all on connect
        """
        if self._engine is not None:
            return

        kwargs = {"echo": self._config.echo}
        if self._config.is_sqlite:
            kwargs["connect_args"] = {"check_same_thread": False}
            if self._config.is_memory:
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_size"] = self._config.pool_size
            kwargs["max_overflow"] = self._config.max_overflow
            kwargs["pool_pre_ping"] = True

        self._engine = create_async_engine(self._config.url, **kwargs)

        if self._config.is_sqlite:
            # ON DELETE CASCADE needs foreign keys switched on per connection
            @event.listens_for(self._engine.sync_engine, "connect")
            def on_connect(dbapi_conn, connection_record):
                cursor = dbapi_conn.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        if create_tables:
            await self.create_all_tables()

        logger.info(f"Database connected ({self._safe_url()})")

    async def disconnect(self) -> None:
        """Dispose the engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connections closed")

    async def create_all_tables(self) -> None:
        """Create all tables known to the declarative base."""
        # Registers the models on Base.metadata
        from storage import models  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise DatabaseError(f"Failed to create tables: {e}", operation="create_all", cause=e) from e

    async def health_check(self) -> bool:
        """Run a trivial query."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, DatabaseError) as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    # --------------------------------------------------------
    # SESSIONS
    # --------------------------------------------------------

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read-only session without an explicit commit."""
        if self._session_factory is None:
            raise DatabaseError("Database is not connected", operation="session")
        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction_scope(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager for explicit transaction boundaries.

        Commits only if no exception occurs.
        Rolls back on ANY exception. SQLAlchemy errors are
        re-raised as DatabaseError, domain errors propagate as-is.

        Usage:
            async with db.transaction_scope() as session:
                await repo.add(order)
                # Commits automatically at end
        """
        if self._session_factory is None:
            raise DatabaseError("Database is not connected", operation="transaction")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database transaction failed, rolling back: {e}")
                await session.rollback()
                raise DatabaseError(f"Transaction failed: {e}", operation="commit", cause=e) from e
            except BaseException:
                await session.rollback()
                raise

    # --------------------------------------------------------
    # SHORTCUTS
    # --------------------------------------------------------

    async def init_db(self) -> None:
        """Connect and create all tables."""
        await self.connect(create_tables=True)

    async def close_db(self) -> None:
        await self.disconnect()

    def _safe_url(self) -> str:
        url = self._config.url
        if "@" in url:
            scheme, rest = url.split("://", 1)
            return f"{scheme}://***@{rest.split('@', 1)[1]}"
        return url
