"""Unit tests for MCP tool endpoints."""

import logging
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from panel_orchestrator import server
from panel_orchestrator.identity import Identity
from panel_orchestrator.managers.engine_client import ContainerStats
from panel_orchestrator.mcp_tools import (
    AdminInput,
    ContainerCreateInput,
    ContainerListInput,
    ContainerLogsInput,
    ContainerRefInput,
    ContainerRemoveInput,
    ContainerRenameInput,
    ContainerStopInput,
    PortMapping,
)
from panel_orchestrator.models.container_logs import ContainerLog
from panel_orchestrator.models.containers import Container
from panel_orchestrator.models.users import UserRole
from panel_orchestrator.utils.exceptions import AuthorizationError, QuotaExceededError

ALICE = Identity("u_alice", "alice", UserRole.MEMBER)
ADMIN = Identity("u_admin", "admin", UserRole.ADMIN)


def _container(status: str = "CREATED", docker_id: str | None = "e_abc") -> Container:
    now = datetime.now(timezone.utc)
    return Container(
        id="c_test123",
        name="web",
        image="node:18-alpine",
        owner_id="u_alice",
        status=status,
        docker_id=docker_id,
        resources={"memory": "512m", "cpus": 0.5},
        ports=[{"container_port": 3000, "protocol": "tcp"}],
        environment={"NODE_ENV": "production"},
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def manager():
    """ContainerManager mock used by the tools."""
    with patch("panel_orchestrator.server.ContainerManager") as mock_manager_class:
        mock_manager = AsyncMock()
        mock_manager_class.return_value = mock_manager
        yield mock_manager


@pytest.fixture
def as_alice():
    """Resolve every acting user to alice."""
    with patch("panel_orchestrator.server.load_identity", AsyncMock(return_value=ALICE)) as load:
        yield load


@pytest.fixture
def as_admin():
    """Resolve every acting user to the administrator."""
    with patch("panel_orchestrator.server.load_identity", AsyncMock(return_value=ADMIN)) as load:
        yield load


@pytest.mark.asyncio
async def test_container_create_tool(manager, as_alice):
    """Test container_create tool endpoint."""
    manager.create_container.return_value = _container(docker_id="e_new")

    input_data = ContainerCreateInput(
        user_id="u_alice",
        name="web",
        image="node:18-alpine",
        env={"NODE_ENV": "production"},
        ports=[PortMapping(container_port=3000)],
        resources={"memory": "512m"},
    )

    result = await server.container_create.fn(input_data)

    assert result.id == "c_test123"
    assert result.status == "CREATED"
    assert result.docker_id == "e_new"
    assert result.environment == {"NODE_ENV": "production"}
    as_alice.assert_awaited_once_with("u_alice")
    manager.create_container.assert_awaited_once_with(
        ALICE,
        name="web",
        image="node:18-alpine",
        cmd=[],
        env={"NODE_ENV": "production"},
        ports=[{"container_port": 3000, "protocol": "tcp"}],
        resources={"memory": "512m"},
    )


@pytest.mark.asyncio
async def test_container_create_tool_propagates_errors(manager, as_alice):
    """Test that manager errors reach the caller."""
    manager.create_container.side_effect = QuotaExceededError(1)

    with pytest.raises(QuotaExceededError, match="Container limit reached"):
        await server.container_create.fn(
            ContainerCreateInput(user_id="u_alice", name="web", image="node:18-alpine")
        )


@pytest.mark.asyncio
async def test_container_create_tool_with_info_logging(manager, as_alice, caplog):
    """Test that the tool works with INFO logging enabled."""
    caplog.set_level(logging.INFO)
    manager.create_container.return_value = _container(docker_id="e_new")

    result = await server.container_create.fn(
        ContainerCreateInput(user_id="u_alice", name="web", image="node:18-alpine")
    )

    assert result.docker_id == "e_new"
    manager.create_container.assert_awaited_once()
    creating = [r for r in caplog.records if r.getMessage() == "Creating container"]
    assert [r.container_name for r in creating] == ["web"]


@pytest.mark.asyncio
async def test_container_get_tool(manager, as_alice):
    """Test container_get tool endpoint."""
    manager.get_container.return_value = _container(status="RUNNING")

    result = await server.container_get.fn(
        ContainerRefInput(user_id="u_alice", container_id="c_test123")
    )

    assert result.status == "RUNNING"
    manager.get_container.assert_awaited_once_with(ALICE, "c_test123")


@pytest.mark.asyncio
async def test_container_list_tool(manager, as_alice):
    """Test container_list tool endpoint."""
    manager.list_containers.return_value = [_container(status="RUNNING")]

    result = await server.container_list.fn(
        ContainerListInput(user_id="u_alice", status="running")
    )

    assert [c.id for c in result.containers] == ["c_test123"]
    manager.list_containers.assert_awaited_once_with(ALICE, status="running")


@pytest.mark.asyncio
async def test_container_start_tool(manager, as_alice):
    """Test container_start tool endpoint."""
    manager.start_container.return_value = _container(status="RUNNING")

    result = await server.container_start.fn(
        ContainerRefInput(user_id="u_alice", container_id="c_test123")
    )

    assert result.status == "RUNNING"
    manager.start_container.assert_awaited_once_with(ALICE, "c_test123")


@pytest.mark.asyncio
async def test_container_stop_tool(manager, as_alice):
    """Test container_stop tool endpoint."""
    manager.stop_container.return_value = _container(status="STOPPED")

    result = await server.container_stop.fn(
        ContainerStopInput(user_id="u_alice", container_id="c_test123", timeout=5)
    )

    assert result.status == "STOPPED"
    manager.stop_container.assert_awaited_once_with(ALICE, "c_test123", timeout=5)


@pytest.mark.asyncio
async def test_container_restart_tool(manager, as_alice):
    """Test container_restart tool endpoint."""
    manager.restart_container.return_value = _container(status="RUNNING")

    result = await server.container_restart.fn(
        ContainerStopInput(user_id="u_alice", container_id="c_test123")
    )

    assert result.status == "RUNNING"
    manager.restart_container.assert_awaited_once_with(ALICE, "c_test123", timeout=None)


@pytest.mark.asyncio
async def test_container_rename_tool(manager, as_alice):
    """Test container_rename tool endpoint."""
    renamed = _container()
    renamed.name = "api"
    manager.rename_container.return_value = renamed

    result = await server.container_rename.fn(
        ContainerRenameInput(user_id="u_alice", container_id="c_test123", name="api")
    )

    assert result.name == "api"
    manager.rename_container.assert_awaited_once_with(ALICE, "c_test123", "api")


@pytest.mark.asyncio
async def test_container_remove_tool(manager, as_alice):
    """Test container_remove tool endpoint."""
    result = await server.container_remove.fn(
        ContainerRemoveInput(user_id="u_alice", container_id="c_test123", force=True)
    )

    assert result.container_id == "c_test123"
    assert result.status == "removed"
    manager.remove_container.assert_awaited_once_with(ALICE, "c_test123", force=True)


@pytest.mark.asyncio
async def test_container_stats_tool(manager, as_alice):
    """Test container_stats tool endpoint."""
    manager.get_container_stats.return_value = ContainerStats(
        cpu_percent=33.333,
        memory_used_bytes=64 * 1024 * 1024,
        memory_limit_bytes=512 * 1024 * 1024,
        memory_percent=12.5,
    )

    result = await server.container_stats.fn(
        ContainerRefInput(user_id="u_alice", container_id="c_test123")
    )

    assert result.container_id == "c_test123"
    assert result.stats["cpuPercent"] == 33.33
    assert result.stats["memoryUsage"] == "64 MB"
    assert result.stats["memoryLimit"] == "512 MB"


@pytest.mark.asyncio
async def test_container_logs_tool(manager, as_alice):
    """Test container_logs tool endpoint."""
    manager.get_container_logs.return_value = [
        ContainerLog(
            id=2,
            container_id="c_test123",
            command="ls",
            output=None,
            exit_code=None,
            timestamp=datetime(2024, 1, 1, 12, 0, 1),
        ),
        ContainerLog(
            id=1,
            container_id="c_test123",
            command="START",
            output="Container started",
            exit_code=0,
            timestamp=datetime(2024, 1, 1, 12, 0, 0),
        ),
    ]

    result = await server.container_logs.fn(
        ContainerLogsInput(user_id="u_alice", container_id="c_test123", limit=2)
    )

    assert [entry.command for entry in result.logs] == ["ls", "START"]
    assert result.logs[1].exit_code == 0
    assert result.logs[0].timestamp == "2024-01-01T12:00:01"
    manager.get_container_logs.assert_awaited_once_with(ALICE, "c_test123", limit=2)


@pytest.mark.asyncio
async def test_reconcile_tool(as_admin):
    """Test reconcile tool endpoint."""
    stats = {
        "discovered": 2,
        "synced": 2,
        "missing": 0,
        "untracked": 1,
        "orphaned": 0,
        "errors": 0,
    }

    with patch("panel_orchestrator.server.ReconciliationManager") as mock_reconciler_class:
        mock_reconciler_class.return_value.reconcile = AsyncMock(return_value=stats)

        result = await server.reconcile.fn(AdminInput(user_id="u_admin"))

    assert result.discovered == 2
    assert result.untracked == 1


@pytest.mark.asyncio
async def test_reconcile_tool_requires_admin(as_alice):
    """Test that members cannot reconcile."""
    with patch("panel_orchestrator.server.ReconciliationManager") as mock_reconciler_class:
        with pytest.raises(AuthorizationError, match="Administrator role required"):
            await server.reconcile.fn(AdminInput(user_id="u_alice"))

    mock_reconciler_class.assert_not_called()


@pytest.mark.asyncio
async def test_sessions_list_tool_outside_request(as_admin):
    """Test sessions_list without a running application."""
    result = await server.sessions_list.fn(AdminInput(user_id="u_admin"))

    assert result.sessions == []


@pytest.mark.asyncio
async def test_sessions_list_tool(as_admin):
    """Test sessions_list with a registry attached to the request."""
    registry = MagicMock()
    registry.active_sessions.return_value = [
        {"connection_id": "ws_1", "kind": "console", "isActive": True}
    ]

    with patch("panel_orchestrator.server._session_registry", return_value=registry):
        result = await server.sessions_list.fn(AdminInput(user_id="u_admin"))

    assert result.sessions[0]["kind"] == "console"


@pytest.mark.asyncio
async def test_health_tool():
    """Test health tool endpoint."""
    with patch("panel_orchestrator.server.EngineClient") as mock_engine_class:
        mock_engine_class.return_value.ping = AsyncMock(return_value=True)
        healthy = await server.health.fn()

        mock_engine_class.return_value.ping = AsyncMock(side_effect=RuntimeError("down"))
        degraded = await server.health.fn()

    assert healthy.status == "healthy"
    assert healthy.docker_connected is True
    assert degraded.status == "degraded"
    assert degraded.active_sessions == 0


@pytest.mark.asyncio
async def test_metrics_tool():
    """Test metrics tool endpoint."""
    result = await server.metrics.fn()

    assert "panel_container_operations_total" in result.metrics


def test_create_input_validation():
    """Test validation of container_create input."""
    with pytest.raises(PydanticValidationError):
        ContainerCreateInput(user_id="u_alice", name="bad name!", image="node:18-alpine")

    with pytest.raises(PydanticValidationError):
        ContainerCreateInput(user_id="u_alice", name="web", image="")

    with pytest.raises(PydanticValidationError):
        PortMapping(container_port=8080, protocol="sctp")

    with pytest.raises(PydanticValidationError):
        ContainerCreateInput(
            user_id="u_alice", name="web", image="node:18-alpine", resources={"cpus": 0}
        )


def test_logs_input_limit_bounds():
    """Test the log limit bounds."""
    assert ContainerLogsInput(user_id="u", container_id="c").limit == 100

    with pytest.raises(PydanticValidationError):
        ContainerLogsInput(user_id="u", container_id="c", limit=0)
