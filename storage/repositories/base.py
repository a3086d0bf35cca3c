"""
Base Repository Class.

============================================================
PURPOSE
============================================================
Provides common functionality for all repositories including:
- Session injection
- Error handling wrappers
- Common query operations
- Logging setup

============================================================
USAGE
============================================================
All domain repositories inherit from BaseRepository.
The AsyncSession is injected via the constructor and owned by
the caller's transaction scope; repositories flush but never
commit.

============================================================
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import DatabaseError
from storage.models.base import Base


# Type variable for ORM model
T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """
    Base class for all repositories.

    ============================================================
    RESPONSIBILITIES
    ============================================================
    - Provides common CRUD patterns
    - Wraps database errors in DatabaseError
    - Manages logging for all operations

    ============================================================
    USAGE
    ============================================================
    class MyRepository(BaseRepository[MyModel]):
        def __init__(self, session: AsyncSession):
            super().__init__(session, MyModel, "MyRepository")

    ============================================================
    """

    def __init__(
        self,
        session: AsyncSession,
        model_class: Type[T],
        repository_name: str
    ) -> None:
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy async session (injected)
            model_class: The ORM model class this repository manages
            repository_name: Name for logging and error messages
        """
        self._session = session
        self._model_class = model_class
        self._repository_name = repository_name
        self._logger = logging.getLogger(f"repository.{repository_name}")

    @property
    def session(self) -> AsyncSession:
        return self._session

    # =========================================================
    # PROTECTED HELPER METHODS
    # =========================================================

    def _handle_db_error(self, error: Exception, operation: str) -> None:
        """
        Wrap a database error in DatabaseError.

        Raises:
            DatabaseError: Always
        """
        self._logger.error(f"Database error in {operation}: {error}")
        raise DatabaseError(
            f"[{self._repository_name}] {operation} failed: {error}",
            operation=operation,
            cause=error,
        ) from error

    async def add(self, entity: T) -> T:
        """
        Add (or re-attach) an entity to the session and flush it.

        Detached instances loaded in an earlier transaction keep
        their change history, so re-attaching persists their edits.

        Args:
            entity: The entity to add

        Returns:
            The added entity
        """
        try:
            self._session.add(entity)
            await self._session.flush()
            self._logger.debug(f"Added entity: {entity}")
            return entity
        except SQLAlchemyError as e:
            self._handle_db_error(e, "add")
            raise

    async def get_by_id(self, record_id: UUID) -> Optional[T]:
        """
        Get an entity by its primary key.

        Returns:
            The entity or None if not found
        """
        try:
            return await self._session.get(self._model_class, record_id)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get_by_id")
            raise

    async def count(self) -> int:
        try:
            stmt = select(func.count()).select_from(self._model_class)
            result = await self._session.execute(stmt)
            return result.scalar() or 0
        except SQLAlchemyError as e:
            self._handle_db_error(e, "count")
            raise

    async def _execute_query(self, stmt: Any) -> List[T]:
        """Execute a select statement and return all entities."""
        try:
            result = await self._session.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query")
            raise

    async def _execute_scalar(self, stmt: Any) -> Optional[Any]:
        """Execute a select statement and return a single value."""
        try:
            result = await self._session.execute(stmt)
            return result.scalars().first()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "query_scalar")
            raise

    async def _execute(self, stmt: Any) -> Any:
        try:
            return await self._session.execute(stmt)
        except SQLAlchemyError as e:
            self._handle_db_error(e, "execute")
            raise
