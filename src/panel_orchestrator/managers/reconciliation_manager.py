"""Reconciliation of persisted container status with engine-observed state."""

from typing import Dict

from panel_orchestrator.config import get_settings
from panel_orchestrator.managers.engine_client import MANAGED_LABEL, EngineClient
from panel_orchestrator.models.containers import Container, ContainerStatus
from panel_orchestrator.models.database import get_db_manager
from panel_orchestrator.repositories.container_logs import ContainerLogRepository
from panel_orchestrator.repositories.containers import ContainerRepository
from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.audit_logger import AuditEventType, get_audit_logger
from panel_orchestrator.utils.exceptions import EngineError, EngineNotFoundError

logger = get_logger(__name__)

# Docker ``State.Status`` values mapped onto the persisted status
ENGINE_STATE_MAP: Dict[str, ContainerStatus] = {
    "CREATED": ContainerStatus.CREATED,
    "RUNNING": ContainerStatus.RUNNING,
    "RESTARTING": ContainerStatus.RUNNING,
    "PAUSED": ContainerStatus.STOPPED,
    "EXITED": ContainerStatus.STOPPED,
    "REMOVING": ContainerStatus.STOPPED,
    "DEAD": ContainerStatus.ERROR,
}


def map_engine_state(state: str | None) -> ContainerStatus | None:
    """
    Map an engine state onto the persisted status enum.

    Args:
        state: Engine state as reported by inspect

    Returns:
        Matching status, or None for an unknown state
    """
    if not state:
        return None
    return ENGINE_STATE_MAP.get(state.upper())


class ReconciliationManager:
    """Manager for container status synchronization and boot recovery."""

    def __init__(self, engine: EngineClient | None = None) -> None:
        """
        Initialize reconciliation manager.

        Args:
            engine: Engine client (defaults to one over the global Docker client)
        """
        self.settings = get_settings()
        self.engine = engine or EngineClient()
        self.db_manager = get_db_manager()
        self.audit_logger = get_audit_logger()

    async def sync_status(self, container: Container, repo: ContainerRepository) -> Container:
        """
        Overwrite the persisted status with the engine-observed one.

        A missing engine object sets ERROR. Any other failure, while asking
        the engine or while saving the new status, leaves the persisted
        status as is.

        Args:
            container: Container record
            repo: Repository bound to the caller's session

        Returns:
            Container with up-to-date status
        """
        if not container.docker_id:
            return container

        try:
            info = await self.engine.get_container_info(container.docker_id)
            engine_state = (info.get("State") or {}).get("Status")
            new_status = map_engine_state(engine_state)
            if new_status is None:
                logger.warning(
                    "Unknown engine state, keeping persisted status",
                    extra={"container_id": container.id, "engine_state": engine_state},
                )
                return container
        except EngineNotFoundError:
            logger.warning(
                "Engine object missing for container",
                extra={"container_id": container.id, "docker_id": container.docker_id},
            )
            new_status = ContainerStatus.ERROR
        except Exception as e:
            logger.warning(
                "Could not reconcile container status",
                extra={"container_id": container.id, "error": str(e)},
            )
            return container

        if new_status.value == container.status:
            return container

        old_status = container.status
        try:
            updated = await repo.update_status(container.id, new_status.value)
        except Exception as e:
            logger.warning(
                "Could not save reconciled status",
                extra={
                    "container_id": container.id,
                    "new_status": new_status.value,
                    "error": str(e),
                },
            )
            return container

        logger.info(
            "Container status reconciled",
            extra={
                "container_id": container.id,
                "old_status": old_status,
                "new_status": new_status.value,
            },
        )
        self.audit_logger.log_event(
            AuditEventType.CONTAINER_STATE_CHANGE,
            container_id=container.id,
            details={"old_status": old_status, "new_status": new_status.value},
        )
        return updated or container

    async def reconcile(self) -> dict:
        """
        Reconcile every record with the engine.

        Discovers engine objects labelled as managed, syncs each record that
        has an engine id and removes provisional records that never got one.

        Returns:
            Dictionary with reconciliation statistics
        """
        logger.info("Starting container reconciliation")

        stats = {
            "discovered": 0,
            "synced": 0,
            "missing": 0,
            "untracked": 0,
            "orphaned": 0,
            "errors": 0,
        }

        try:
            discovered = await self.engine.list_containers(
                all=True, filters={"label": f"{MANAGED_LABEL}=true"}
            )
        except EngineError as e:
            logger.error("Failed to discover containers", extra={"error": str(e)})
            stats["errors"] += 1
            discovered = []
        stats["discovered"] = len(discovered)

        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)
            log_repo = ContainerLogRepository(session)

            records = await repo.list_with_engine_id()
            known_ids = {c.docker_id for c in records}

            for record in records:
                synced = await self.sync_status(record, repo)
                stats["synced"] += 1
                if synced.status == ContainerStatus.ERROR.value:
                    stats["missing"] += 1

            for engine_container in discovered:
                if engine_container.get("Id") not in known_ids:
                    stats["untracked"] += 1
                    logger.warning(
                        "Managed engine container has no record",
                        extra={
                            "docker_id": engine_container.get("Id"),
                            "names": engine_container.get("Names"),
                        },
                    )

            orphans = await repo.get_orphaned_provisional(self.settings.orphan_grace_s)
            for orphan in orphans:
                await log_repo.delete_by_container(orphan.id)
                await repo.delete(orphan)
                stats["orphaned"] += 1
                logger.info(
                    "Removed orphaned provisional record",
                    extra={"container_id": orphan.id, "container_name": orphan.name},
                )

        logger.info("Container reconciliation completed", extra=stats)
        self.audit_logger.log_event(AuditEventType.SYSTEM_RECONCILE, details=stats)
        return stats
