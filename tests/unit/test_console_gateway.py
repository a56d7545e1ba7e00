"""Unit tests for the real-time console channel."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from starlette.applications import Starlette
from starlette.routing import WebSocketRoute
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from panel_orchestrator.console_gateway import WS_AUTH_FAILED, ConsoleConnection, console_endpoint
from panel_orchestrator.identity import Identity
from panel_orchestrator.managers.session_registry import SessionKind, SessionRegistry
from panel_orchestrator.models.containers import ContainerStatus
from panel_orchestrator.models.users import UserRole
from panel_orchestrator.utils.exceptions import AuthenticationError
from panel_orchestrator.ws_messages import EmptyData


class Outbox:
    """Collects frames sent to the client."""

    def __init__(self) -> None:
        self.frames: list = []

    async def __call__(self, frame: dict) -> None:
        self.frames.append(frame)

    def named(self, event: str) -> list:
        return [f["data"] for f in self.frames if f["event"] == event]


@pytest.fixture
def outbox() -> Outbox:
    """Frames sent to the client."""
    return Outbox()


@pytest.fixture
def connection(users, outbox, registry, container_manager, engine, exec_handle, exec_stream):
    """Connection of alice with an engine ready to hand out a shell."""
    engine.exec_command.return_value = (exec_handle, exec_stream)
    return ConsoleConnection("ws_1", users["alice"], outbox, registry, container_manager)


def _frame(event: str, data: dict | None = None) -> str:
    return json.dumps({"event": event, "data": data or {}})


@pytest.mark.asyncio
async def test_malformed_frame(connection, outbox):
    """Test that unparsable frames are reported."""
    await connection.dispatch("{not json")
    await connection.dispatch(json.dumps({"data": {}}))

    assert outbox.named("error") == [
        {"message": "Malformed message", "code": "VALIDATION_ERROR"},
        {"message": "Malformed message", "code": "VALIDATION_ERROR"},
    ]


@pytest.mark.asyncio
async def test_unknown_event(connection, outbox):
    """Test that unknown events are reported on the matching channel."""
    await connection.dispatch(_frame("console:shout"))
    await connection.dispatch(_frame("ping"))

    assert outbox.named("console:error") == [
        {"message": "Unknown event: console:shout", "code": "VALIDATION_ERROR"}
    ]
    assert outbox.named("error")[0]["message"] == "Unknown event: ping"


@pytest.mark.asyncio
async def test_invalid_payload(connection, outbox):
    """Test payload validation."""
    await connection.dispatch(_frame("console:resize", {"cols": 0, "rows": 24}))
    await connection.dispatch(_frame("stats:subscribe", {}))

    (resize_error,) = outbox.named("console:error")
    assert resize_error["code"] == "VALIDATION_ERROR"
    assert resize_error["message"].startswith("Invalid console:resize payload: cols")
    assert outbox.named("stats:error")[0]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_console_connect_and_command(
    connection, outbox, registry, exec_stream, make_container
):
    """Test opening a console and sending a command."""
    record = await make_container("u_alice")

    await connection.dispatch(_frame("console:connect", {"containerId": record.id}))
    await connection.dispatch(_frame("console:command", {"command": "ls"}))
    await connection.dispatch(_frame("console:input", {"input": "\t"}))

    assert outbox.named("console:connected")[0]["containerId"] == record.id
    assert exec_stream.written == ["ls\n", "\t"]
    assert await registry.get("ws_1", SessionKind.CONSOLE) is not None

    await connection.close()


@pytest.mark.asyncio
async def test_second_console_connect_conflicts(
    connection, outbox, registry, engine, make_container
):
    """Test that a connection holds one console at a time."""
    record = await make_container("u_alice")

    await connection.dispatch(_frame("console:connect", {"containerId": record.id}))
    first = await registry.get("ws_1", SessionKind.CONSOLE)
    await connection.dispatch(_frame("console:connect", {"containerId": record.id}))

    assert outbox.named("console:error") == [
        {"message": "Console session already active for this connection", "code": "CONFLICT"}
    ]
    assert engine.exec_command.await_count == 1
    assert await registry.get("ws_1", SessionKind.CONSOLE) is first

    await connection.close()


@pytest.mark.asyncio
async def test_console_connect_after_disconnect(connection, outbox, registry, make_container):
    """Test that a console can be reopened after disconnecting."""
    record = await make_container("u_alice")

    await connection.dispatch(_frame("console:connect", {"containerId": record.id}))
    await connection.dispatch(_frame("console:disconnect"))
    assert await registry.get("ws_1", SessionKind.CONSOLE) is None

    await connection.dispatch(_frame("console:connect", {"containerId": "c_missing"}))

    assert outbox.named("console:error")[0]["code"] == "NOT_FOUND"
    assert await registry.get("ws_1", SessionKind.CONSOLE) is None


@pytest.mark.asyncio
async def test_command_without_console(connection, outbox):
    """Test commands before console:connect."""
    await connection.dispatch(_frame("console:command", {"command": "ls"}))

    assert outbox.named("console:error") == [{"message": "No active console session"}]


@pytest.mark.asyncio
async def test_console_stats(connection, outbox, make_container):
    """Test the console summary request."""
    await connection.dispatch(_frame("console:stats"))
    record = await make_container("u_alice")
    await connection.dispatch(_frame("console:connect", {"containerId": record.id}))
    await connection.dispatch(_frame("console:stats"))

    empty, summary = outbox.named("console:stats")
    assert empty is None
    assert summary["containerId"] == record.id
    assert summary["isActive"] is True

    await connection.close()


@pytest.mark.asyncio
async def test_stats_subscribe_and_unsubscribe(connection, outbox, registry, make_container):
    """Test the stats subscription lifecycle."""
    record = await make_container("u_alice")

    await connection.dispatch(
        _frame("stats:subscribe", {"containerId": record.id, "interval": 500})
    )
    assert outbox.named("stats:subscribed") == [{"containerId": record.id, "interval": 1000}]
    assert await registry.get("ws_1", SessionKind.STATS) is not None

    await connection.dispatch(_frame("stats:unsubscribe"))
    await connection.dispatch(_frame("stats:unsubscribe"))

    assert outbox.named("stats:unsubscribed") == [{}, {}]
    assert await registry.get("ws_1", SessionKind.STATS) is None


@pytest.mark.asyncio
async def test_stats_subscribe_stopped_container(connection, outbox, registry, make_container):
    """Test that a refused subscription is not kept."""
    record = await make_container("u_alice", status=ContainerStatus.STOPPED)

    await connection.dispatch(_frame("stats:subscribe", {"containerId": record.id}))

    assert outbox.named("stats:error")[0]["message"] == "Container is not running"
    assert await registry.get("ws_1", SessionKind.STATS) is None


@pytest.mark.asyncio
async def test_close_ends_all_sessions(connection, outbox, registry, exec_stream, make_container):
    """Test that closing the connection drains its sessions."""
    record = await make_container("u_alice")
    await connection.dispatch(_frame("console:connect", {"containerId": record.id}))
    await connection.dispatch(_frame("stats:subscribe", {"containerId": record.id}))

    await connection.close()
    await connection.emit("console:output", {"data": "late"})

    assert registry.count() == 0
    assert exec_stream.closed
    assert outbox.named("console:output") == []


@pytest.mark.asyncio
async def test_unexpected_handler_error(connection, outbox):
    """Test that unexpected failures are reported without details."""
    connection._handlers["console:stats"] = (EmptyData, AsyncMock(side_effect=RuntimeError("x")))

    await connection.dispatch(_frame("console:stats"))

    assert outbox.named("console:error") == [
        {"message": "Internal error", "code": "INTERNAL_ERROR"}
    ]


@pytest.mark.asyncio
async def test_emit_stops_after_send_failure(users, registry, container_manager):
    """Test that a failed send marks the connection closed."""
    send = AsyncMock(side_effect=RuntimeError("socket closed"))
    connection = ConsoleConnection("ws_2", users["alice"], send, registry, container_manager)

    await connection.emit("console:output", {"data": "a"})
    await connection.emit("console:output", {"data": "b"})

    assert send.await_count == 1


def _app(registry) -> Starlette:
    app = Starlette(routes=[WebSocketRoute("/ws/console", console_endpoint)])
    app.state.session_registry = registry
    app.state.container_manager = MagicMock()
    return app


def test_endpoint_rejects_unauthenticated():
    """Test that the upgrade is refused without a valid token."""
    app = _app(SessionRegistry())
    failing = AsyncMock(side_effect=AuthenticationError("Authentication token required"))

    with patch("panel_orchestrator.console_gateway.authenticate", failing):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with TestClient(app).websocket_connect("/ws/console"):
                pass

    assert exc_info.value.code == WS_AUTH_FAILED


def test_endpoint_dispatches_frames():
    """Test an authenticated connection end to end."""
    app = _app(SessionRegistry())
    identity = Identity("u_alice", "alice", UserRole.MEMBER)

    with patch("panel_orchestrator.console_gateway.authenticate", AsyncMock(return_value=identity)):
        with TestClient(app).websocket_connect("/ws/console?token=abc") as ws:
            ws.send_text("garbage")
            assert ws.receive_json() == {
                "event": "error",
                "data": {"message": "Malformed message", "code": "VALIDATION_ERROR"},
            }

            ws.send_text(_frame("console:stats"))
            assert ws.receive_json() == {"event": "console:stats", "data": None}


def test_endpoint_accepts_binary_frames():
    """Test that binary frames carry the same envelope as text frames."""
    app = _app(SessionRegistry())
    identity = Identity("u_alice", "alice", UserRole.MEMBER)

    with patch("panel_orchestrator.console_gateway.authenticate", AsyncMock(return_value=identity)):
        with TestClient(app).websocket_connect("/ws/console?token=abc") as ws:
            ws.send_bytes(_frame("console:stats").encode())
            assert ws.receive_json() == {"event": "console:stats", "data": None}

            ws.send_bytes(b"\x80 not json")
            assert ws.receive_json() == {
                "event": "error",
                "data": {"message": "Malformed message", "code": "VALIDATION_ERROR"},
            }

            # The connection keeps serving after a malformed binary frame
            ws.send_text(_frame("console:stats"))
            assert ws.receive_json() == {"event": "console:stats", "data": None}
