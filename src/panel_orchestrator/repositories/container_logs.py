"""Repository for ContainerLog model operations."""

from datetime import datetime, timezone
from typing import List

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from panel_orchestrator.models.container_logs import ContainerLog

from .base import BaseRepository


class ContainerLogRepository(BaseRepository[ContainerLog]):
    """Repository for the append-only container log."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize container log repository.

        Args:
            session: Database session
        """
        super().__init__(session, ContainerLog)

    async def append(
        self,
        container_id: str,
        command: str,
        output: str | None = None,
        exit_code: int | None = None,
    ) -> ContainerLog:
        """
        Append a log entry.

        Args:
            container_id: Container ID
            command: Command text or lifecycle marker
            output: Captured output, None while unknown
            exit_code: Exit code, None while unknown

        Returns:
            Created log entry
        """
        entry = ContainerLog(
            container_id=container_id,
            command=command,
            output=output,
            exit_code=exit_code,
            timestamp=datetime.now(timezone.utc),
        )
        return await self.create(entry)

    async def list_by_container(self, container_id: str, limit: int = 100) -> List[ContainerLog]:
        """
        Get the most recent log entries of a container, newest first.

        Args:
            container_id: Container ID
            limit: Maximum number of entries

        Returns:
            List of log entries
        """
        stmt = (
            select(ContainerLog)
            .where(ContainerLog.container_id == container_id)
            .order_by(ContainerLog.timestamp.desc(), ContainerLog.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_by_container(self, container_id: str) -> int:
        """
        Delete all log entries of a container.

        Args:
            container_id: Container ID

        Returns:
            Number of deleted entries
        """
        stmt = delete(ContainerLog).where(ContainerLog.container_id == container_id)
        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.rowcount or 0
