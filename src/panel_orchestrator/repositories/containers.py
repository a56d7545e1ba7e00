"""Repository for Container model operations."""

from datetime import datetime, timedelta, timezone
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from panel_orchestrator.models.containers import Container, ContainerStatus

from .base import BaseRepository


class ContainerRepository(BaseRepository[Container]):
    """Repository for container CRUD operations."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize container repository.

        Args:
            session: Database session
        """
        super().__init__(session, Container)

    async def get_by_docker_id(self, docker_id: str) -> Container | None:
        """
        Get container by Docker ID.

        Args:
            docker_id: Docker container ID

        Returns:
            Container or None if not found
        """
        stmt = select(Container).where(Container.docker_id == docker_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_owner_and_name(self, owner_id: str, name: str) -> Container | None:
        """
        Get a container by its owner and name.

        Args:
            owner_id: Owning user ID
            name: Container name

        Returns:
            Container or None if not found
        """
        stmt = select(Container).where(Container.owner_id == owner_id, Container.name == name)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_by_owner(self, owner_id: str) -> int:
        """
        Count the containers owned by a user.

        Args:
            owner_id: Owning user ID

        Returns:
            Number of containers
        """
        stmt = select(func.count()).select_from(Container).where(Container.owner_id == owner_id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def list_containers(
        self, owner_id: str | None = None, status: str | None = None
    ) -> List[Container]:
        """
        List containers, newest first.

        Args:
            owner_id: Restrict to one owner (None for all owners)
            status: Filter by status

        Returns:
            List of containers
        """
        stmt = select(Container).order_by(Container.created_at.desc())

        if owner_id:
            stmt = stmt.where(Container.owner_id == owner_id)
        if status:
            stmt = stmt.where(Container.status == status.upper())

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_with_engine_id(self) -> List[Container]:
        """List every container that has an engine object."""
        stmt = select(Container).where(Container.docker_id.is_not(None))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def update_status(self, container_id: str, status: str) -> Container | None:
        """
        Update container status.

        Args:
            container_id: Container ID
            status: New status

        Returns:
            Updated container or None if not found
        """
        container = await self.get(container_id)
        if container is None:
            return None
        container.status = status
        return await self.update(container)

    async def set_docker_id(self, container_id: str, docker_id: str) -> Container | None:
        """
        Record the engine-assigned identifier of a container.

        Args:
            container_id: Container ID
            docker_id: Engine identifier

        Returns:
            Updated container or None if not found
        """
        container = await self.get(container_id)
        if container is None:
            return None
        container.docker_id = docker_id
        return await self.update(container)

    async def get_orphaned_provisional(self, grace_s: int) -> List[Container]:
        """
        Get provisional records that never received an engine id.

        Args:
            grace_s: Minimum age in seconds

        Returns:
            List of orphaned CREATED records
        """
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=grace_s)
        stmt = select(Container).where(
            Container.docker_id.is_(None),
            Container.status == ContainerStatus.CREATED.value,
            Container.created_at < cutoff,
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
