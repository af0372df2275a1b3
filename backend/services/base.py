"""Base CRUD service with organization scoping.

Service classes inherit from this. Provides standard read/create/delete
with pagination, optional soft-delete filtering (for models that carry
the soft delete columns) and organization scoping (multi-tenant).
Services flush; the caller owns the transaction and commits.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Generic CRUD service for any SQLAlchemy model.

    Usage:
        class GraphService(BaseService[AutomationGraph]):
            def __init__(self, db: AsyncSession):
                super().__init__(AutomationGraph, db)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    def _soft_delete_filter(self, query, include_deleted: bool):
        if not include_deleted and hasattr(self.model, "is_deleted"):
            query = query.where(self.model.is_deleted == False)  # noqa: E712
        return query

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(
        self,
        id: str,
        include_deleted: bool = False,
    ) -> Optional[ModelType]:
        """Get a single record by ID."""
        query = self._soft_delete_filter(select(self.model).where(self.model.id == id), include_deleted)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id_and_org(
        self,
        id: str,
        organization_id: str,
        include_deleted: bool = False,
    ) -> Optional[ModelType]:
        """Get a single record scoped to an organization."""
        query = select(self.model).where(
            self.model.id == id,
            self.model.organization_id == organization_id,
        )
        query = self._soft_delete_filter(query, include_deleted)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list(
        self,
        organization_id: Optional[str] = None,
        offset: int = 0,
        limit: int = 50,
        order_by: str = "created_at",
        order_desc: bool = True,
        include_deleted: bool = False,
        filters: dict[str, Any] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """List records with pagination, filtering, and sorting.

        ``None`` filter values are ignored; list values become ``IN``.

        Returns:
            Tuple of (items, total_count)
        """
        query = select(self.model)
        count_query = select(func.count()).select_from(self.model)

        if organization_id and hasattr(self.model, "organization_id"):
            query = query.where(self.model.organization_id == organization_id)
            count_query = count_query.where(self.model.organization_id == organization_id)

        query = self._soft_delete_filter(query, include_deleted)
        count_query = self._soft_delete_filter(count_query, include_deleted)

        for field, value in (filters or {}).items():
            if value is None or not hasattr(self.model, field):
                continue
            col = getattr(self.model, field)
            condition = col.in_(value) if isinstance(value, list) else col == value
            query = query.where(condition)
            count_query = count_query.where(condition)

        if hasattr(self.model, order_by):
            col = getattr(self.model, order_by)
            query = query.order_by(col.desc() if order_desc else col.asc())

        query = query.offset(offset).limit(limit)

        result = await self.db.execute(query)
        items = result.scalars().all()

        total = await self.db.scalar(count_query) or 0
        return items, total

    # ─── Write ─────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Create and flush a new record."""
        instance = self.model(**data)
        self.db.add(instance)
        await self.db.flush()
        return instance

    async def hard_delete(self, instance: ModelType) -> None:
        """Permanently delete a record."""
        await self.db.delete(instance)
        await self.db.flush()
