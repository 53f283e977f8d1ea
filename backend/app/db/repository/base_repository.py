"""
Base repository pattern implementation

Generic CRUD helpers used inside the decorated methods of concrete
repositories. Every helper takes the active session explicitly so several
of them can share one transaction.
"""

from abc import ABC
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

ModelType = TypeVar("ModelType")


class BaseRepository(Generic[ModelType], ABC):
    """
    Asynchronous base Repository class

    Generic parameters:
        ModelType: SQLAlchemy model type
    """

    def __init__(self, model: Type[ModelType]):
        self.model = model

    def _primary_key(self):
        return list(self.model.__table__.primary_key.columns)

    async def get_by_id(self, session: AsyncSession, record_id: Any) -> Optional[ModelType]:
        """
        Get single record by primary key

        Args:
            session: Asynchronous database session
            record_id: Primary key value, or a tuple for composite keys

        Returns:
            Model instance or None
        """
        return await session.get(self.model, record_id)

    async def get_multi(
            self,
            session: AsyncSession,
            skip: int = 0,
            limit: Optional[int] = 100,
            filters: Optional[Dict[str, Any]] = None,
            order_by: Optional[List[str]] = None,
    ) -> List[ModelType]:
        """
        Get multiple records

        Args:
            session: Asynchronous database session
            skip: Number of records to skip
            limit: Maximum number of records, None for all
            filters: Exact-match filters
            order_by: Sort fields, ``-field`` for descending

        Returns:
            List of model instances
        """
        stmt = self._apply_filters(select(self.model), filters)
        for field in order_by or []:
            stmt = self._apply_order_by(stmt, field)
        stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def count(self, session: AsyncSession, filters: Optional[Dict[str, Any]] = None) -> int:
        """Count records matching exact-match filters"""
        stmt = self._apply_filters(select(func.count()).select_from(self.model), filters)
        result = await session.execute(stmt)
        return result.scalar() or 0

    async def create(self, session: AsyncSession, **values) -> ModelType:
        """Insert a record and flush it so defaults are populated"""
        db_obj = self.model(**values)
        session.add(db_obj)
        await session.flush()
        await session.refresh(db_obj)
        return db_obj

    def _apply_filters(self, stmt, filters: Optional[Dict[str, Any]]):
        for key, value in (filters or {}).items():
            if not hasattr(self.model, key):
                raise ValueError(f"{self.model.__name__} has no column '{key}'")
            stmt = stmt.where(getattr(self.model, key) == value)
        return stmt

    def _apply_order_by(self, stmt, order_by: str):
        descending = order_by.startswith("-")
        field = order_by.lstrip("-")
        if not hasattr(self.model, field):
            raise ValueError(f"{self.model.__name__} has no column '{field}'")
        column = getattr(self.model, field)
        return stmt.order_by(column.desc() if descending else column)
