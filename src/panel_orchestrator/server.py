"""Panel orchestrator server: operator tools plus the console WebSocket."""

import sys
from contextlib import asynccontextmanager

import uvicorn
from fastmcp import FastMCP
from fastmcp.server.dependencies import get_http_request
from pydantic import BaseModel
from starlette.applications import Starlette
from starlette.routing import Mount, WebSocketRoute

from panel_orchestrator import __version__
from panel_orchestrator.auth import create_auth_provider
from panel_orchestrator.config import get_settings
from panel_orchestrator.console_gateway import console_endpoint
from panel_orchestrator.identity import Identity, load_identity
from panel_orchestrator.managers.container_manager import ContainerManager
from panel_orchestrator.managers.engine_client import EngineClient
from panel_orchestrator.managers.reconciliation_manager import ReconciliationManager
from panel_orchestrator.managers.session_registry import SessionRegistry
from panel_orchestrator.mcp_tools import (
    AdminInput,
    ContainerCreateInput,
    ContainerListInput,
    ContainerListOutput,
    ContainerLogEntry,
    ContainerLogsInput,
    ContainerLogsOutput,
    ContainerOutput,
    ContainerRefInput,
    ContainerRemoveInput,
    ContainerRemoveOutput,
    ContainerRenameInput,
    ContainerStatsOutput,
    ContainerStopInput,
    MetricsOutput,
    ReconcileOutput,
    SessionsOutput,
)
from panel_orchestrator.models.database import close_db, init_db
from panel_orchestrator.utils import get_logger, setup_logging
from panel_orchestrator.utils.audit_logger import AuditEventType, get_audit_logger
from panel_orchestrator.utils.docker_client import close_docker_client, get_docker_client
from panel_orchestrator.utils.exceptions import AuthorizationError
from panel_orchestrator.utils.metrics_collector import get_metrics_collector


class HealthCheckResponse(BaseModel):
    """Health check response model."""

    status: str
    docker_connected: bool
    database_initialized: bool = True
    active_sessions: int = 0
    version: str = __version__


mcp = FastMCP("Panel Orchestrator")
logger = get_logger(__name__)


async def _require_admin(user_id: str) -> Identity:
    identity = await load_identity(user_id)
    if not identity.is_admin:
        get_audit_logger().log_event(
            AuditEventType.SECURITY_ACCESS_DENIED,
            user_id=user_id,
            details={"reason": "administrator role required"},
        )
        raise AuthorizationError("Administrator role required")
    return identity


def _session_registry() -> SessionRegistry | None:
    """Registry of the running application, None outside of a request."""
    try:
        request = get_http_request()
    except RuntimeError:
        return None
    return getattr(request.app.state, "session_registry", None)


async def startup() -> None:
    """Initialize storage and the engine connection, then reconcile."""
    logger.info("Starting panel orchestrator", extra={"version": __version__})

    try:
        await init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize database", extra={"error": str(e)})
        raise

    try:
        get_docker_client()
        logger.info("Docker client initialized successfully")
    except Exception as e:
        logger.error("Failed to initialize Docker client", extra={"error": str(e)})
        raise

    try:
        stats = await ReconciliationManager().reconcile()
        logger.info("Initial reconciliation completed", extra=stats)
    except Exception as e:
        logger.warning("Initial reconciliation failed", extra={"error": str(e)})

    get_audit_logger().log_event(AuditEventType.SYSTEM_STARTUP, details={"version": __version__})


async def shutdown(registry: SessionRegistry) -> None:
    """Drain live sessions and release storage and engine connections."""
    logger.info("Shutting down panel orchestrator")

    try:
        await registry.shutdown()
    except Exception as e:
        logger.warning("Session registry shutdown failed", extra={"error": str(e)})

    get_audit_logger().log_event(AuditEventType.SYSTEM_SHUTDOWN)

    await close_db()
    close_docker_client()
    logger.info("Panel orchestrator stopped")


def create_app() -> Starlette:
    """
    Build the ASGI application.

    The console WebSocket and the operator tool endpoint share one process
    and one session registry.

    Returns:
        Starlette application
    """
    settings = get_settings()
    registry = SessionRegistry()

    mcp.auth = create_auth_provider()
    mcp_app = mcp.http_app(path=settings.path)

    @asynccontextmanager
    async def lifespan(app: Starlette):
        await startup()
        app.state.container_manager = ContainerManager()
        await registry.start()
        async with mcp_app.lifespan(mcp_app):
            yield
        await shutdown(registry)

    app = Starlette(
        routes=[
            WebSocketRoute(settings.ws_path, console_endpoint),
            Mount("/", app=mcp_app),
        ],
        lifespan=lifespan,
    )
    app.state.session_registry = registry
    mcp_app.state.session_registry = registry
    return app


@mcp.tool()
async def health() -> HealthCheckResponse:
    """
    Health check endpoint to verify server status and Docker connectivity.

    Returns:
        HealthCheckResponse with status and Docker connection info
    """
    try:
        docker_connected = await EngineClient().ping()
    except Exception as e:
        logger.warning("Docker health check failed", extra={"error": str(e)})
        docker_connected = False

    registry = _session_registry()

    return HealthCheckResponse(
        status="healthy" if docker_connected else "degraded",
        docker_connected=docker_connected,
        active_sessions=registry.count() if registry else 0,
    )


@mcp.tool()
async def container_create(input_data: ContainerCreateInput) -> ContainerOutput:
    """
    Create a container for a user.

    Members are limited to their container quota and the allowed images.

    Args:
        input_data: Container name, image, command, environment, ports and resources

    Returns:
        ContainerOutput of the created container (status CREATED)
    """
    logger.info(
        "Creating container",
        extra={
            "user_id": input_data.user_id,
            "container_name": input_data.name,
            "image": input_data.image,
        },
    )

    try:
        identity = await load_identity(input_data.user_id)
        container = await ContainerManager().create_container(
            identity,
            name=input_data.name,
            image=input_data.image,
            cmd=input_data.cmd,
            env=input_data.env,
            ports=[port.model_dump() for port in input_data.ports],
            resources=input_data.resources.model_dump(exclude_none=True),
        )
        return ContainerOutput.from_model(container)

    except Exception as e:
        logger.error("Failed to create container", extra={"error": str(e)})
        raise


@mcp.tool()
async def container_get(input_data: ContainerRefInput) -> ContainerOutput:
    """
    Get a container, with its status reconciled against the engine.

    Args:
        input_data: Acting user and container ID

    Returns:
        ContainerOutput
    """
    identity = await load_identity(input_data.user_id)
    container = await ContainerManager().get_container(identity, input_data.container_id)
    return ContainerOutput.from_model(container)


@mcp.tool()
async def container_list(input_data: ContainerListInput) -> ContainerListOutput:
    """
    List the containers visible to a user.

    Administrators see every container, members only their own.

    Args:
        input_data: Acting user and optional status filter

    Returns:
        ContainerListOutput
    """
    logger.debug("Container list requested", extra={"user_id": input_data.user_id})

    identity = await load_identity(input_data.user_id)
    containers = await ContainerManager().list_containers(identity, status=input_data.status)
    return ContainerListOutput(containers=[ContainerOutput.from_model(c) for c in containers])


@mcp.tool()
async def container_start(input_data: ContainerRefInput) -> ContainerOutput:
    """
    Start a container.

    Args:
        input_data: Acting user and container ID

    Returns:
        ContainerOutput with status RUNNING
    """
    logger.info(
        "Starting container",
        extra={"user_id": input_data.user_id, "container_id": input_data.container_id},
    )

    try:
        identity = await load_identity(input_data.user_id)
        container = await ContainerManager().start_container(identity, input_data.container_id)
        return ContainerOutput.from_model(container)

    except Exception as e:
        logger.error("Failed to start container", extra={"error": str(e)})
        raise


@mcp.tool()
async def container_stop(input_data: ContainerStopInput) -> ContainerOutput:
    """
    Stop a container gracefully.

    Args:
        input_data: Acting user, container ID and optional timeout

    Returns:
        ContainerOutput with status STOPPED
    """
    logger.info(
        "Stopping container",
        extra={"user_id": input_data.user_id, "container_id": input_data.container_id},
    )

    try:
        identity = await load_identity(input_data.user_id)
        container = await ContainerManager().stop_container(
            identity, input_data.container_id, timeout=input_data.timeout
        )
        return ContainerOutput.from_model(container)

    except Exception as e:
        logger.error("Failed to stop container", extra={"error": str(e)})
        raise


@mcp.tool()
async def container_restart(input_data: ContainerStopInput) -> ContainerOutput:
    """
    Restart a container.

    Args:
        input_data: Acting user, container ID and optional timeout

    Returns:
        ContainerOutput with status RUNNING
    """
    logger.info(
        "Restarting container",
        extra={"user_id": input_data.user_id, "container_id": input_data.container_id},
    )

    try:
        identity = await load_identity(input_data.user_id)
        container = await ContainerManager().restart_container(
            identity, input_data.container_id, timeout=input_data.timeout
        )
        return ContainerOutput.from_model(container)

    except Exception as e:
        logger.error("Failed to restart container", extra={"error": str(e)})
        raise


@mcp.tool()
async def container_rename(input_data: ContainerRenameInput) -> ContainerOutput:
    """
    Rename a container.

    Args:
        input_data: Acting user, container ID and new name

    Returns:
        ContainerOutput with the new name
    """
    identity = await load_identity(input_data.user_id)
    container = await ContainerManager().rename_container(
        identity, input_data.container_id, input_data.name
    )
    return ContainerOutput.from_model(container)


@mcp.tool()
async def container_remove(input_data: ContainerRemoveInput) -> ContainerRemoveOutput:
    """
    Remove a container and its log.

    Engine removal is best effort; the record is always deleted.

    Args:
        input_data: Acting user, container ID and force flag

    Returns:
        ContainerRemoveOutput
    """
    logger.info(
        "Removing container",
        extra={
            "user_id": input_data.user_id,
            "container_id": input_data.container_id,
            "force": input_data.force,
        },
    )

    try:
        identity = await load_identity(input_data.user_id)
        await ContainerManager().remove_container(
            identity, input_data.container_id, force=input_data.force
        )
        return ContainerRemoveOutput(container_id=input_data.container_id)

    except Exception as e:
        logger.error("Failed to remove container", extra={"error": str(e)})
        raise


@mcp.tool()
async def container_stats(input_data: ContainerRefInput) -> ContainerStatsOutput:
    """
    Take one resource usage sample of a container.

    Args:
        input_data: Acting user and container ID

    Returns:
        ContainerStatsOutput
    """
    identity = await load_identity(input_data.user_id)
    stats = await ContainerManager().get_container_stats(identity, input_data.container_id)
    return ContainerStatsOutput(container_id=input_data.container_id, stats=stats.to_dict())


@mcp.tool()
async def container_logs(input_data: ContainerLogsInput) -> ContainerLogsOutput:
    """
    Get the newest lifecycle and console log entries of a container.

    Args:
        input_data: Acting user, container ID and limit

    Returns:
        ContainerLogsOutput, newest first
    """
    identity = await load_identity(input_data.user_id)
    entries = await ContainerManager().get_container_logs(
        identity, input_data.container_id, limit=input_data.limit
    )
    return ContainerLogsOutput(
        container_id=input_data.container_id,
        logs=[ContainerLogEntry.from_model(entry) for entry in entries],
    )


@mcp.tool()
async def reconcile(input_data: AdminInput) -> ReconcileOutput:
    """
    Run container reconciliation to sync Docker state with the database.

    This tool performs:
    - Discovery of containers labelled panel.managed=true
    - Status sync of every record with an engine id
    - Removal of provisional records that never got an engine id

    Returns:
        ReconcileOutput with reconciliation statistics
    """
    identity = await _require_admin(input_data.user_id)
    logger.info("Manual reconciliation requested", extra={"user_id": identity.user_id})

    try:
        stats = await ReconciliationManager().reconcile()
        return ReconcileOutput(**stats)

    except Exception as e:
        logger.error("Reconciliation failed", extra={"error": str(e)})
        raise


@mcp.tool()
async def sessions_list(input_data: AdminInput) -> SessionsOutput:
    """
    List live console sessions and stats subscriptions.

    Returns:
        SessionsOutput with one summary per session
    """
    await _require_admin(input_data.user_id)

    registry = _session_registry()
    return SessionsOutput(sessions=registry.active_sessions() if registry else [])


@mcp.tool()
async def metrics() -> MetricsOutput:
    """
    Get Prometheus metrics for monitoring.

    Returns current metrics including:
    - Container operation counts by type and outcome
    - Console command and stats failure counts
    - Engine call durations
    - Active console session and stats subscription gauges

    Returns:
        MetricsOutput with Prometheus-formatted metrics
    """
    logger.debug("Metrics endpoint accessed")

    try:
        metrics_collector = get_metrics_collector()
        metrics_data = metrics_collector.get_metrics().decode("utf-8")

        return MetricsOutput(metrics=metrics_data)

    except Exception as e:
        logger.error("Failed to get metrics", extra={"error": str(e)})
        raise


def main() -> None:
    """Main entry point for the panel orchestrator server."""
    settings = get_settings()

    # Setup logging first so auth initialization can be properly logged
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)

    logger.info(
        "Starting server",
        extra={
            "auth_mode": settings.auth_mode,
            "host": settings.host,
            "port": settings.port,
            "path": settings.path,
            "ws_path": settings.ws_path,
        },
    )

    try:
        app = create_app()
        uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down")
        sys.exit(0)
    except Exception as e:
        logger.error("Server error", extra={"error": str(e)})
        sys.exit(1)


if __name__ == "__main__":
    main()
