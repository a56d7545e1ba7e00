"""Container lifecycle manager for panel containers."""

from datetime import datetime, timezone
from typing import Any, Dict, List
from uuid import uuid4

from docker.utils import parse_repository_tag

from panel_orchestrator.config import get_settings
from panel_orchestrator.identity import Identity
from panel_orchestrator.managers.engine_client import ContainerSpec, ContainerStats, EngineClient
from panel_orchestrator.managers.reconciliation_manager import ReconciliationManager
from panel_orchestrator.managers.resource_limits import ResourceLimits
from panel_orchestrator.models.container_logs import ContainerLog
from panel_orchestrator.models.containers import Container, ContainerStatus
from panel_orchestrator.models.database import get_db_manager
from panel_orchestrator.repositories.container_logs import ContainerLogRepository
from panel_orchestrator.repositories.containers import ContainerRepository
from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.audit_logger import AuditEventType, get_audit_logger
from panel_orchestrator.utils.exceptions import (
    AuthorizationError,
    ContainerAlreadyExistsError,
    ContainerNotFoundError,
    EngineError,
    QuotaExceededError,
    ValidationError,
)
from panel_orchestrator.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

DEFAULT_CONTAINER_PORT = 3000

_PAST_TENSE = {"start": "started", "stop": "stopped", "restart": "restarted"}


def check_access(container: Container, identity: Identity) -> None:
    """
    Verify that an identity may drive a container.

    Args:
        container: Container record
        identity: Requester

    Raises:
        AuthorizationError: If the requester is neither owner nor administrator
    """
    if identity.is_admin or container.owner_id == identity.user_id:
        return
    raise AuthorizationError()


def normalize_ports(ports: List[Dict[str, Any]] | None) -> List[Dict[str, Any]]:
    """Fill in container port and protocol defaults."""
    return [
        {
            "container_port": int(port.get("container_port") or DEFAULT_CONTAINER_PORT),
            "protocol": (port.get("protocol") or "tcp").lower(),
        }
        for port in ports or []
    ]


class ContainerManager:
    """Manager for container lifecycle operations on behalf of panel users."""

    def __init__(
        self,
        engine: EngineClient | None = None,
        reconciler: ReconciliationManager | None = None,
    ) -> None:
        """
        Initialize container manager.

        Args:
            engine: Engine client (defaults to one over the global Docker client)
            reconciler: Status reconciler sharing the same engine client
        """
        self.settings = get_settings()
        self.engine = engine or EngineClient()
        self.db_manager = get_db_manager()
        self.reconciler = reconciler or ReconciliationManager(self.engine)
        self.audit_logger = get_audit_logger()
        self.metrics = get_metrics_collector()

    def check_access(self, container: Container, identity: Identity) -> None:
        """Verify ownership, auditing refusals."""
        try:
            check_access(container, identity)
        except AuthorizationError:
            self.audit_logger.log_event(
                AuditEventType.SECURITY_ACCESS_DENIED,
                container_id=container.id,
                user_id=identity.user_id,
            )
            raise

    async def _load(
        self, repo: ContainerRepository, container_id: str, identity: Identity
    ) -> Container:
        container = await repo.get(container_id)
        if not container:
            raise ContainerNotFoundError(container_id)
        self.check_access(container, identity)
        return container

    def is_image_allowed(self, image: str) -> bool:
        """
        Check an image against the allow-list.

        An image matches when it equals an entry or shares its repository
        with one, so any tag of an allowed repository is accepted.
        """
        repository, _ = parse_repository_tag(image)
        return any(
            allowed == image or parse_repository_tag(allowed)[0] == repository
            for allowed in self.settings.allowed_images_list
        )

    async def create_container(
        self,
        identity: Identity,
        name: str,
        image: str,
        cmd: List[str] | None = None,
        env: Dict[str, str] | None = None,
        ports: List[Dict[str, Any]] | None = None,
        resources: Dict[str, Any] | None = None,
    ) -> Container:
        """
        Create a container record and its engine object.

        The record is committed before the engine is called so that a crash
        in between leaves a provisional record for the boot sweep. If the
        engine call or the follow-up update fails, the record is deleted
        again and the original error is re-raised.

        Args:
            identity: Requester, becomes the owner
            name: Container name, unique per owner
            image: Docker image
            cmd: Command override
            env: Environment variables
            ports: Exposed ports as ``{"container_port", "protocol"}`` dicts
            resources: ``{"memory", "cpus"}`` overrides

        Returns:
            Created container

        Raises:
            QuotaExceededError: If a member reached the container limit
            ValidationError: If a member requests an image outside the allow-list
            ContainerAlreadyExistsError: If the owner already has that name
            EngineError: If the engine fails
        """
        cmd = cmd or []
        env = env or {}
        ports = normalize_ports(ports)
        resources = resources or {}
        limits = {
            "memory": resources.get("memory") or self.settings.default_container_memory,
            "cpus": resources.get("cpus") or self.settings.default_container_cpu,
        }

        container_id = f"c_{uuid4()}"

        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)

            if not identity.is_admin:
                count = await repo.count_by_owner(identity.user_id)
                if count >= self.settings.max_containers_per_member:
                    self.metrics.record_container_operation("create", "rejected")
                    raise QuotaExceededError(self.settings.max_containers_per_member)

                if not self.is_image_allowed(image):
                    self.metrics.record_container_operation("create", "rejected")
                    raise ValidationError(
                        f"Image {image} is not allowed. Allowed images: "
                        f"{', '.join(self.settings.allowed_images_list)}"
                    )

            if await repo.get_by_owner_and_name(identity.user_id, name):
                self.metrics.record_container_operation("create", "rejected")
                raise ContainerAlreadyExistsError(name)

            now = datetime.now(timezone.utc)
            await repo.create(
                Container(
                    id=container_id,
                    name=name,
                    image=image,
                    owner_id=identity.user_id,
                    status=ContainerStatus.CREATED.value,
                    resources=limits,
                    ports=ports,
                    environment=env,
                    config={"cmd": cmd, "env": env, "ports": ports},
                    created_at=now,
                    updated_at=now,
                )
            )

        spec = ContainerSpec(
            name=f"panel_{container_id}",
            image=image,
            command=cmd,
            env=[f"{key}={value}" for key, value in env.items()],
            ports=[f"{p['container_port']}/{p['protocol']}" for p in ports],
            working_dir=self.settings.default_working_dir,
            resources=ResourceLimits(memory=limits["memory"], cpus=limits["cpus"]),
            network_mode=self.settings.default_network_mode,
            restart_policy=self.settings.default_restart_policy,
            labels={
                "panel.container.id": container_id,
                "panel.owner.id": identity.user_id,
                "panel.owner.username": identity.username,
            },
        )

        try:
            docker_id = await self.engine.create_container(spec)

            async with self.db_manager.get_session() as session:
                repo = ContainerRepository(session)
                container = await repo.set_docker_id(container_id, docker_id)
                await ContainerLogRepository(session).append(
                    container_id, "CREATE", output=f"Container created from {image}", exit_code=0
                )
        except Exception as e:
            self.metrics.record_container_operation("create", "failure")
            logger.error(
                "Container creation failed, removing provisional record",
                extra={"container_id": container_id, "image": image, "error": str(e)},
            )
            await self._discard_provisional(container_id)
            raise

        logger.info(
            "Container created successfully",
            extra={
                "container_id": container_id,
                "docker_id": docker_id,
                "container_name": name,
                "image": image,
                "user_id": identity.user_id,
            },
        )
        self.metrics.record_container_operation("create", "success")
        self.audit_logger.log_event(
            AuditEventType.CONTAINER_CREATE,
            container_id=container_id,
            user_id=identity.user_id,
            details={"name": name, "image": image, "resources": limits},
        )
        return container

    async def _discard_provisional(self, container_id: str) -> None:
        try:
            async with self.db_manager.get_session() as session:
                repo = ContainerRepository(session)
                container = await repo.get(container_id)
                if container:
                    await repo.delete(container)
        except Exception as cleanup_error:
            logger.error(
                "Failed to clean up container record",
                extra={"container_id": container_id, "error": str(cleanup_error)},
            )

    async def _transition(
        self,
        identity: Identity,
        container_id: str,
        operation: str,
        marker: str,
        new_status: ContainerStatus,
        audit_event: AuditEventType,
        timeout: int | None = None,
    ) -> Container:
        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)
            container = await self._load(repo, container_id, identity)

            if not container.docker_id:
                raise ValidationError("Container has no Docker ID")

            try:
                if operation == "start":
                    await self.engine.start_container(container.docker_id)
                elif operation == "stop":
                    await self.engine.stop_container(container.docker_id, timeout=timeout)
                else:
                    await self.engine.restart_container(container.docker_id, timeout=timeout)
            except EngineError:
                self.metrics.record_container_operation(operation, "failure")
                raise

            container = await repo.update_status(container_id, new_status.value)

            output = f"Container {_PAST_TENSE[operation]}"
            if timeout is not None:
                output = f"{output} (timeout: {timeout}s)"
            await ContainerLogRepository(session).append(
                container_id, marker, output=output, exit_code=0
            )

        logger.info(
            f"Container {_PAST_TENSE[operation]}",
            extra={"container_id": container_id, "user_id": identity.user_id, "timeout": timeout},
        )
        self.metrics.record_container_operation(operation, "success")
        self.audit_logger.log_event(
            audit_event,
            container_id=container_id,
            user_id=identity.user_id,
            details={"timeout": timeout} if timeout is not None else None,
        )
        return container

    async def start_container(self, identity: Identity, container_id: str) -> Container:
        """
        Start a container.

        Args:
            identity: Requester
            container_id: Container ID

        Returns:
            Updated container

        Raises:
            ContainerNotFoundError: If the container does not exist
            AuthorizationError: If the requester may not drive it
            ValidationError: If it has no engine object
            EngineError: If the engine fails
        """
        return await self._transition(
            identity,
            container_id,
            "start",
            "START",
            ContainerStatus.RUNNING,
            AuditEventType.CONTAINER_START,
        )

    async def stop_container(
        self, identity: Identity, container_id: str, timeout: int | None = None
    ) -> Container:
        """
        Stop a container gracefully.

        Args:
            identity: Requester
            container_id: Container ID
            timeout: Seconds before force-killing (defaults to settings)

        Returns:
            Updated container
        """
        return await self._transition(
            identity,
            container_id,
            "stop",
            "STOP",
            ContainerStatus.STOPPED,
            AuditEventType.CONTAINER_STOP,
            timeout=timeout if timeout is not None else self.settings.stop_timeout_s,
        )

    async def restart_container(
        self, identity: Identity, container_id: str, timeout: int | None = None
    ) -> Container:
        """
        Restart a container.

        Args:
            identity: Requester
            container_id: Container ID
            timeout: Seconds before force-killing (defaults to settings)

        Returns:
            Updated container
        """
        return await self._transition(
            identity,
            container_id,
            "restart",
            "RESTART",
            ContainerStatus.RUNNING,
            AuditEventType.CONTAINER_RESTART,
            timeout=timeout if timeout is not None else self.settings.stop_timeout_s,
        )

    async def remove_container(
        self, identity: Identity, container_id: str, force: bool = False
    ) -> None:
        """
        Remove a container.

        Engine removal is best effort; the record and its logs are deleted
        even when the engine refuses or the object is already gone.

        Args:
            identity: Requester
            container_id: Container ID
            force: Force removal of a running container
        """
        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)
            container = await self._load(repo, container_id, identity)

            if container.docker_id:
                try:
                    await self.engine.remove_container(container.docker_id, force=force)
                except EngineError as e:
                    logger.warning(
                        "Failed to remove engine container, deleting record anyway",
                        extra={
                            "container_id": container_id,
                            "docker_id": container.docker_id,
                            "error": str(e),
                        },
                    )

            await ContainerLogRepository(session).delete_by_container(container_id)
            await repo.delete(container)

        logger.info(
            "Container removed",
            extra={"container_id": container_id, "user_id": identity.user_id, "force": force},
        )
        self.metrics.record_container_operation("remove", "success")
        self.audit_logger.log_event(
            AuditEventType.CONTAINER_DELETE,
            container_id=container_id,
            user_id=identity.user_id,
            details={"force": force},
        )

    async def get_container(self, identity: Identity, container_id: str) -> Container:
        """
        Get a container with its status reconciled against the engine.

        Raises:
            ContainerNotFoundError: If the container does not exist
            AuthorizationError: If the requester may not read it
        """
        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)
            container = await self._load(repo, container_id, identity)
            return await self.reconciler.sync_status(container, repo)

    async def list_containers(
        self, identity: Identity, status: str | None = None
    ) -> List[Container]:
        """
        List containers visible to the requester.

        Members see their own containers; administrators see all of them.

        Args:
            identity: Requester
            status: Optional status filter, applied before reconciliation

        Returns:
            List of reconciled containers
        """
        owner_id = None if identity.is_admin else identity.user_id
        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)
            containers = await repo.list_containers(owner_id=owner_id, status=status)
            return [await self.reconciler.sync_status(c, repo) for c in containers]

    async def get_container_stats(self, identity: Identity, container_id: str) -> ContainerStats:
        """
        Take a stats sample of a container.

        Raises:
            ValidationError: If the container has no engine object
        """
        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)
            container = await self._load(repo, container_id, identity)
            docker_id = container.docker_id

        if not docker_id:
            raise ValidationError("Container has no Docker ID")

        return await self.engine.get_container_stats(docker_id)

    async def get_container_logs(
        self, identity: Identity, container_id: str, limit: int = 100
    ) -> List[ContainerLog]:
        """Get the newest log entries of a container."""
        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)
            await self._load(repo, container_id, identity)
            return await ContainerLogRepository(session).list_by_container(container_id, limit)

    async def rename_container(
        self, identity: Identity, container_id: str, new_name: str
    ) -> Container:
        """
        Rename a container.

        Raises:
            ContainerAlreadyExistsError: If the owner already has that name
        """
        async with self.db_manager.get_session() as session:
            repo = ContainerRepository(session)
            container = await self._load(repo, container_id, identity)

            existing = await repo.get_by_owner_and_name(container.owner_id, new_name)
            if existing and existing.id != container_id:
                raise ContainerAlreadyExistsError(new_name)

            old_name = container.name
            container.name = new_name
            container.updated_at = datetime.now(timezone.utc)
            container = await repo.update(container)

        self.audit_logger.log_event(
            AuditEventType.CONTAINER_RENAME,
            container_id=container_id,
            user_id=identity.user_id,
            details={"old_name": old_name, "new_name": new_name},
        )
        return container
