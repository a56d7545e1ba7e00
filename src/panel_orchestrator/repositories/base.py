"""Persistence operations shared by every repository."""

from datetime import datetime, timezone
from typing import Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from panel_orchestrator.models.base import Base

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """
    Primary key lookup, insert, save and delete for one model.

    Repositories only flush; the surrounding ``get_session()`` block owns
    the transaction.
    """

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self.session = session
        self.model = model

    async def get(self, pk: str | int) -> ModelT | None:
        """Row with the given primary key, or None."""
        return await self.session.get(self.model, pk)

    async def create(self, entity: ModelT) -> ModelT:
        """
        Insert a row.

        Args:
            entity: New row

        Returns:
            The row with generated columns loaded
        """
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def update(self, entity: ModelT) -> ModelT:
        """
        Save changes made to a loaded row.

        ``updated_at`` is stamped on models that have one.

        Args:
            entity: Modified row

        Returns:
            The refreshed row
        """
        if hasattr(entity, "updated_at"):
            entity.updated_at = datetime.now(timezone.utc)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def delete(self, entity: ModelT) -> None:
        """Delete a row."""
        await self.session.delete(entity)
        await self.session.flush()
