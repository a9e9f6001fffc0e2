"""
Base Repository for CriaPrompt

Generic async repository over one SQLModel table.
Repositories never commit; the calling service owns the unit of work.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel


# Type variable for generic repository
ModelType = TypeVar("ModelType", bound=SQLModel)


class IReadRepository(ABC, Generic[ModelType]):
    """
    Interface for read operations.
    """

    @abstractmethod
    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """Get a single record by primary key."""
        pass


class BaseRepository(IReadRepository[ModelType], Generic[ModelType]):
    """
    Generic async repository with read helpers and staged writes.

    Args:
        model: The SQLModel class to operate on
        session: Async database session
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self._model = model
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        return self._session

    async def get_by_id(self, id: Any) -> Optional[ModelType]:
        """
        Get a single record by its primary key.

        Args:
            id: Primary key value

        Returns:
            Model instance or None if not found
        """
        return await self._session.get(self._model, id)

    async def add(self, db_obj: ModelType) -> ModelType:
        """
        Stage a new or modified record and flush it.

        Flushing surfaces constraint violations here instead of at commit.
        """
        self._session.add(db_obj)
        await self._session.flush()
        await self._session.refresh(db_obj)
        return db_obj

    async def count(self, *criteria) -> int:
        """
        Exact row count, optionally filtered.

        Args:
            criteria: SQLAlchemy boolean expressions joined with AND
        """
        stmt = select(func.count()).select_from(self._model)
        if criteria:
            stmt = stmt.where(*criteria)
        result = await self._session.execute(stmt)
        return result.scalar_one()
