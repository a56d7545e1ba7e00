"""Real-time console and stats channel over WebSocket."""

import asyncio
import json
from typing import Any, Awaitable, Callable, Dict, Optional, Type
from uuid import uuid4

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.websockets import WebSocket, WebSocketDisconnect

from panel_orchestrator.auth import authenticate
from panel_orchestrator.identity import Identity
from panel_orchestrator.managers.console_session import ConsoleSession
from panel_orchestrator.managers.container_manager import ContainerManager
from panel_orchestrator.managers.events import error_payload
from panel_orchestrator.managers.session_registry import SessionKind, SessionRegistry
from panel_orchestrator.managers.stats_subscription import StatsSubscription
from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.exceptions import AuthenticationError, OrchestratorError
from panel_orchestrator.ws_messages import (
    ConsoleCommandData,
    ConsoleConnectData,
    ConsoleInputData,
    ConsoleResizeData,
    EmptyData,
    InboundFrame,
    StatsSubscribeData,
)

logger = get_logger(__name__)

# Close code sent when the upgrade request cannot be authenticated
WS_AUTH_FAILED = 4401


class ConsoleConnection:
    """
    Dispatcher for one real-time connection.

    Owns nothing but the connection id; sessions live in the registry so
    that shutdown can drain them.
    """

    def __init__(
        self,
        connection_id: str,
        identity: Identity,
        send: Callable[[Dict[str, Any]], Awaitable[None]],
        registry: SessionRegistry,
        container_manager: ContainerManager,
    ) -> None:
        self.connection_id = connection_id
        self.identity = identity
        self._send = send
        self._send_lock = asyncio.Lock()
        self._closed = False
        self.registry = registry
        self.container_manager = container_manager

        self._handlers: Dict[str, tuple[Type[BaseModel], Callable[[Any], Awaitable[None]]]] = {
            "console:connect": (ConsoleConnectData, self.on_console_connect),
            "console:command": (ConsoleCommandData, self.on_console_command),
            "console:input": (ConsoleInputData, self.on_console_input),
            "console:resize": (ConsoleResizeData, self.on_console_resize),
            "console:stats": (EmptyData, self.on_console_stats),
            "console:disconnect": (EmptyData, self.on_console_disconnect),
            "stats:subscribe": (StatsSubscribeData, self.on_stats_subscribe),
            "stats:unsubscribe": (EmptyData, self.on_stats_unsubscribe),
        }

    async def emit(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Send one message; messages to a closed connection are dropped."""
        if self._closed:
            return
        async with self._send_lock:
            try:
                await self._send({"event": event, "data": data})
            except Exception as e:
                logger.debug(
                    "Dropping message for closed connection",
                    extra={"connection_id": self.connection_id, "event": event, "error": str(e)},
                )
                self._closed = True

    @staticmethod
    def _error_event(event: str) -> str:
        if event.startswith("stats:"):
            return "stats:error"
        if event.startswith("console:"):
            return "console:error"
        return "error"

    async def dispatch(self, raw: str | bytes | Dict[str, Any]) -> None:
        """
        Handle one inbound frame.

        Every failure is reported to the client; nothing is raised.
        """
        try:
            payload = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            frame = InboundFrame.model_validate(payload)
        except (ValueError, PydanticValidationError):
            await self.emit("error", {"message": "Malformed message", "code": "VALIDATION_ERROR"})
            return

        error_event = self._error_event(frame.event)
        handler = self._handlers.get(frame.event)
        if handler is None:
            await self.emit(
                error_event,
                {"message": f"Unknown event: {frame.event}", "code": "VALIDATION_ERROR"},
            )
            return

        model, callback = handler
        try:
            data = model.model_validate(frame.data)
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            message = f"Invalid {frame.event} payload: {field} {first.get('msg', '')}"
            await self.emit(error_event, {"message": message.strip(), "code": "VALIDATION_ERROR"})
            return

        try:
            await callback(data)
        except OrchestratorError as e:
            await self.emit(error_event, error_payload(str(e), e, self.identity))
        except Exception as e:
            logger.exception(
                "Unhandled error in console channel",
                extra={"connection_id": self.connection_id, "event": frame.event},
            )
            await self.emit(error_event, error_payload("Internal error", e, self.identity))

    async def _console(self) -> Optional[ConsoleSession]:
        return await self.registry.get(self.connection_id, SessionKind.CONSOLE)

    async def on_console_connect(self, data: ConsoleConnectData) -> None:
        session = ConsoleSession(
            self.connection_id,
            data.container_id,
            self.identity,
            self.emit,
            self.registry,
            self.container_manager,
        )
        # Raises SessionConflictError while another console is registered
        await self.registry.register(session)
        await session.start()

    async def on_console_command(self, data: ConsoleCommandData) -> None:
        session = await self._console()
        if session is None:
            await self.emit("console:error", {"message": "No active console session"})
            return
        await session.send_command(data.command)

    async def on_console_input(self, data: ConsoleInputData) -> None:
        session = await self._console()
        if session is not None:
            await session.send_input(data.input)

    async def on_console_resize(self, data: ConsoleResizeData) -> None:
        session = await self._console()
        if session is not None:
            await session.resize(data.cols, data.rows)

    async def on_console_stats(self, data: EmptyData) -> None:
        session = await self._console()
        await self.emit("console:stats", session.get_stats() if session else None)

    async def on_console_disconnect(self, data: EmptyData) -> None:
        session = await self._console()
        if session is not None:
            await session.cleanup()

    async def on_stats_subscribe(self, data: StatsSubscribeData) -> None:
        subscription = await self.registry.get(self.connection_id, SessionKind.STATS)
        if subscription is None:
            subscription = StatsSubscription(
                self.connection_id, self.identity, self.emit, self.container_manager
            )
            await self.registry.register(subscription)

        started = await subscription.subscribe(data.container_id, data.interval)
        if not started and not subscription.is_active:
            await self.registry.remove(self.connection_id, SessionKind.STATS, subscription)

    async def on_stats_unsubscribe(self, data: EmptyData) -> None:
        subscription = await self.registry.remove(self.connection_id, SessionKind.STATS)
        if subscription is None:
            await self.emit("stats:unsubscribed", {})
            return
        await subscription.unsubscribe()

    async def close(self) -> None:
        """Tear down every session of the connection."""
        await self.registry.close_connection(self.connection_id)
        self._closed = True


async def console_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint serving console and stats sessions.

    The upgrade is refused unless the request carries a valid client token
    of an active user.
    """
    registry: SessionRegistry = websocket.app.state.session_registry
    container_manager: ContainerManager = websocket.app.state.container_manager

    try:
        identity = await authenticate(websocket)
    except AuthenticationError as e:
        logger.warning("Console connection rejected", extra={"error": str(e)})
        await websocket.close(code=WS_AUTH_FAILED, reason=str(e))
        return

    await websocket.accept()

    connection_id = f"ws_{uuid4().hex}"
    connection = ConsoleConnection(
        connection_id, identity, websocket.send_json, registry, container_manager
    )
    logger.info(
        "Console WebSocket connected",
        extra={
            "connection_id": connection_id,
            "user_id": identity.user_id,
            "username": identity.username,
        },
    )

    close_code: Optional[int] = None
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                close_code = message.get("code")
                break
            # Text and binary frames carry the same JSON envelope
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            if raw is not None:
                await connection.dispatch(raw)
    except WebSocketDisconnect as e:
        close_code = e.code
    finally:
        logger.info(
            "Console WebSocket disconnected",
            extra={
                "connection_id": connection_id,
                "user_id": identity.user_id,
                "code": close_code,
            },
        )
        await connection.close()
