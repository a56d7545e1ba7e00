"""Input and output models of the operator tools."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from panel_orchestrator.models.container_logs import ContainerLog
from panel_orchestrator.models.containers import Container


class PortMapping(BaseModel):
    """Exposed container port."""

    container_port: int = Field(
        default=3000, ge=1, le=65535, description="Port inside the container"
    )
    protocol: str = Field(default="tcp", pattern="^(tcp|udp)$", description="tcp or udp")


class ResourceRequest(BaseModel):
    """Requested resource limits."""

    memory: Optional[str] = Field(None, description="Memory limit, e.g. 512m or 1g")
    cpus: Optional[float] = Field(None, gt=0, le=64, description="CPU share in cores")


class ContainerCreateInput(BaseModel):
    """Input model for container_create tool."""

    user_id: str = Field(..., description="Acting user ID")
    name: str = Field(
        ..., min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9_-]+$", description="Container name"
    )
    image: str = Field(..., min_length=1, description="Docker image reference")
    cmd: List[str] = Field(default_factory=list, description="Command override")
    env: Dict[str, str] = Field(default_factory=dict, description="Environment variables")
    ports: List[PortMapping] = Field(default_factory=list, description="Exposed ports")
    resources: ResourceRequest = Field(
        default_factory=ResourceRequest, description="Resource limits"
    )


class ContainerRefInput(BaseModel):
    """Input model for tools addressing one container."""

    user_id: str = Field(..., description="Acting user ID")
    container_id: str = Field(..., description="Container ID (c_xxx)")


class ContainerStopInput(ContainerRefInput):
    """Input model for container_stop and container_restart tools."""

    timeout: Optional[int] = Field(
        None, ge=0, le=300, description="Seconds before force-killing (defaults to settings)"
    )


class ContainerRemoveInput(ContainerRefInput):
    """Input model for container_remove tool."""

    force: bool = Field(default=False, description="Force removal of a running container")


class ContainerRenameInput(ContainerRefInput):
    """Input model for container_rename tool."""

    name: str = Field(
        ..., min_length=1, max_length=100, pattern=r"^[a-zA-Z0-9_-]+$", description="New name"
    )


class ContainerListInput(BaseModel):
    """Input model for container_list tool."""

    user_id: str = Field(..., description="Acting user ID")
    status: Optional[str] = Field(None, description="Filter by status")


class ContainerLogsInput(ContainerRefInput):
    """Input model for container_logs tool."""

    limit: int = Field(default=100, ge=1, le=1000, description="Maximum number of entries")


class AdminInput(BaseModel):
    """Input model for administrator-only tools."""

    user_id: str = Field(..., description="Acting user ID, must be an administrator")


class ContainerOutput(BaseModel):
    """A container record."""

    id: str
    name: str
    image: str
    owner_id: str
    status: str
    docker_id: Optional[str] = None
    resources: Dict[str, Any] = Field(default_factory=dict)
    ports: List[Dict[str, Any]] = Field(default_factory=list)
    environment: Dict[str, str] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_model(cls, container: Container) -> "ContainerOutput":
        """Build the output from a container record."""
        return cls(
            id=container.id,
            name=container.name,
            image=container.image,
            owner_id=container.owner_id,
            status=container.status,
            docker_id=container.docker_id,
            resources=container.resources or {},
            ports=container.ports or [],
            environment=container.environment or {},
            created_at=container.created_at.isoformat() if container.created_at else None,
            updated_at=container.updated_at.isoformat() if container.updated_at else None,
        )


class ContainerListOutput(BaseModel):
    """Output model for container_list tool."""

    containers: List[ContainerOutput] = Field(..., description="Visible containers")


class ContainerRemoveOutput(BaseModel):
    """Output model for container_remove tool."""

    container_id: str
    status: str = Field(default="removed")


class ContainerStatsOutput(BaseModel):
    """Output model for container_stats tool."""

    container_id: str
    stats: Dict[str, Any] = Field(..., description="Resource usage sample")


class ContainerLogEntry(BaseModel):
    """One container log entry."""

    id: int
    command: str
    output: Optional[str] = None
    exit_code: Optional[int] = None
    timestamp: str

    @classmethod
    def from_model(cls, entry: ContainerLog) -> "ContainerLogEntry":
        """Build the output from a log row."""
        return cls(
            id=entry.id,
            command=entry.command,
            output=entry.output,
            exit_code=entry.exit_code,
            timestamp=entry.timestamp.isoformat(),
        )


class ContainerLogsOutput(BaseModel):
    """Output model for container_logs tool."""

    container_id: str
    logs: List[ContainerLogEntry]


class ReconcileOutput(BaseModel):
    """Output model for reconcile tool."""

    discovered: int = Field(..., description="Managed engine containers found")
    synced: int = Field(..., description="Records reconciled against the engine")
    missing: int = Field(..., description="Records whose engine object is gone")
    untracked: int = Field(..., description="Managed engine containers without record")
    orphaned: int = Field(..., description="Provisional records removed")
    errors: int = Field(..., description="Errors encountered")


class SessionsOutput(BaseModel):
    """Output model for sessions_list tool."""

    sessions: List[Dict[str, Any]] = Field(..., description="Live console and stats sessions")


class MetricsOutput(BaseModel):
    """Output model for metrics tool."""

    metrics: str = Field(..., description="Prometheus-formatted metrics")
