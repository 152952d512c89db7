"""
Base Repository Pattern Implementation
TradeJournal cTrader Sync

Provides generic CRUD operations with:
- Type-safe async repository base class
- Lookup by primary key or field
- Commit or flush on create
"""

from abc import ABC
from typing import Any, Dict, Generic, Optional, Type, TypeVar, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from journal.db.base import Base


# Type variables
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType], ABC):
    """
    Generic async repository with CRUD operations.

    Type Parameters:
        ModelType: SQLAlchemy model class
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            session: Async database session
        """
        self.model = model
        self.session = session

    # =========================================================================
    # Basic CRUD Operations
    # =========================================================================

    async def get(self, id: str) -> Optional[ModelType]:
        """
        Get a single record by ID.

        Args:
            id: Primary key value

        Returns:
            Model instance or None
        """
        result = await self.session.execute(
            select(self.model).where(self.model.id == id)
        )
        return result.scalar_one_or_none()

    async def get_by_field(
        self,
        field_name: str,
        value: Any,
    ) -> Optional[ModelType]:
        """
        Get a single record by field value.

        Args:
            field_name: Field/column name
            value: Value to match

        Returns:
            Model instance or None
        """
        field = getattr(self.model, field_name, None)
        if field is None:
            raise ValueError(f"Field {field_name} not found on {self.model.__name__}")

        result = await self.session.execute(
            select(self.model).where(field == value)
        )
        return result.scalar_one_or_none()

    async def create(self, obj_in: Union[BaseModel, Dict[str, Any]], commit: bool = True) -> ModelType:
        """
        Create a new record.

        Args:
            obj_in: Schema or dict with column values
            commit: Commit immediately; otherwise only flush

        Returns:
            Created model instance
        """
        obj_data = obj_in if isinstance(obj_in, dict) else obj_in.model_dump()
        db_obj = self.model(**obj_data)
        self.session.add(db_obj)
        if commit:
            await self.session.commit()
            await self.session.refresh(db_obj)
        else:
            await self.session.flush()
        return db_obj


__all__ = [
    "BaseRepository",
]
