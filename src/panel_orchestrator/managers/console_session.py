"""Interactive shell session attached to a running container."""

import asyncio
import codecs
import contextlib
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, Optional

from panel_orchestrator.config import get_settings
from panel_orchestrator.identity import Identity
from panel_orchestrator.managers.container_manager import ContainerManager
from panel_orchestrator.managers.engine_client import ExecHandle, ExecStream
from panel_orchestrator.managers.events import Emit, error_payload, now_ms
from panel_orchestrator.managers.session_registry import SessionKind, SessionRegistry
from panel_orchestrator.models.containers import ContainerStatus
from panel_orchestrator.repositories.container_logs import ContainerLogRepository
from panel_orchestrator.repositories.containers import ContainerRepository
from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.audit_logger import AuditEventType, get_audit_logger
from panel_orchestrator.utils.exceptions import (
    ContainerNotFoundError,
    EngineError,
    OrchestratorError,
    ValidationError,
)
from panel_orchestrator.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


class ConsoleState(str, Enum):
    """Console session lifecycle states."""

    INITIALIZING = "INITIALIZING"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class ConsoleSession:
    """
    One interactive shell per connection.

    Output of the exec stream is relayed by a reader task in arrival order.
    The session ends on stream end, stream error, explicit disconnect or
    connection close; all of them go through the idempotent cleanup().
    """

    kind = SessionKind.CONSOLE

    def __init__(
        self,
        connection_id: str,
        container_id: str,
        identity: Identity,
        emit: Emit,
        registry: SessionRegistry,
        container_manager: ContainerManager,
    ) -> None:
        """
        Initialize console session.

        Args:
            connection_id: Real-time connection ID
            container_id: Container to attach to
            identity: Requester
            emit: Sends notifications to the client
            registry: Registry the session removes itself from on cleanup
            container_manager: Lifecycle manager providing ownership checks
        """
        self.settings = get_settings()
        self.connection_id = connection_id
        self.container_id = container_id
        self.identity = identity
        self.emit = emit
        self.registry = registry
        self.container_manager = container_manager
        self.engine = container_manager.engine
        self.db_manager = container_manager.db_manager
        self.audit_logger = get_audit_logger()
        self.metrics = get_metrics_collector()

        self.state = ConsoleState.INITIALIZING
        self.start_time = now_ms()
        self._started = time.monotonic()
        self.history: Deque[Dict[str, Any]] = deque(maxlen=self.settings.console_history_limit)

        self.exec_handle: Optional[ExecHandle] = None
        self.stream: Optional[ExecStream] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._cleaned_up = False

    @property
    def is_active(self) -> bool:
        """Whether the session accepts commands."""
        return self.state == ConsoleState.ACTIVE

    async def start(self) -> bool:
        """
        Validate access and attach an interactive shell.

        Failures are reported to the client as ``console:error`` and close
        the session; nothing is raised.

        Returns:
            True if the session became active
        """
        try:
            async with self.db_manager.get_session() as session:
                container = await ContainerRepository(session).get(self.container_id)
                if not container:
                    raise ContainerNotFoundError(self.container_id)

                self.container_manager.check_access(container, self.identity)

                if not container.docker_id:
                    raise ValidationError("Container has no Docker ID")
                if container.status != ContainerStatus.RUNNING.value:
                    raise ValidationError("Container is not running")

                docker_id = container.docker_id

            exec_handle, stream = await self.engine.exec_command(
                docker_id, [self.settings.console_shell], tty=True, stdin=True
            )

            if self._cleaned_up:
                # Connection went away while the exec was being set up
                stream.close()
                return False

            self.exec_handle = exec_handle
            self.stream = stream
            self.state = ConsoleState.ACTIVE
            self._reader_task = asyncio.create_task(self._relay_output(stream))

            await self.emit(
                "console:connected",
                {
                    "message": "Console connected successfully",
                    "containerId": self.container_id,
                    "timestamp": now_ms(),
                },
            )

            async with self.db_manager.get_session() as session:
                await ContainerLogRepository(session).append(
                    self.container_id,
                    "CONSOLE_CONNECT",
                    output="Console session started",
                    exit_code=0,
                )

            logger.info(
                "Console session started",
                extra={
                    "container_id": self.container_id,
                    "user_id": self.identity.user_id,
                    "connection_id": self.connection_id,
                },
            )
            self.audit_logger.log_event(
                AuditEventType.CONSOLE_CONNECT,
                container_id=self.container_id,
                user_id=self.identity.user_id,
                connection_id=self.connection_id,
            )
            return True

        except OrchestratorError as e:
            logger.warning(
                "Failed to start console session",
                extra={
                    "container_id": self.container_id,
                    "user_id": self.identity.user_id,
                    "error": str(e),
                },
            )
            await self.emit(
                "console:error", error_payload("Failed to start console session", e, self.identity)
            )
        except Exception as e:
            logger.exception(
                "Unexpected error starting console session",
                extra={"container_id": self.container_id},
            )
            await self.emit(
                "console:error", error_payload("Failed to start console session", e, self.identity)
            )

        await self.cleanup()
        return False

    async def _relay_output(self, stream: ExecStream) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await stream.read()
                if not chunk:
                    break
                data = decoder.decode(chunk)
                if data:
                    await self.emit("console:output", {"data": data, "timestamp": now_ms()})
        except Exception as e:
            if self._cleaned_up:
                return
            logger.error(
                "Console stream error",
                extra={"container_id": self.container_id, "error": str(e)},
            )
            error = e if isinstance(e, EngineError) else EngineError(str(e), e)
            await self.emit(
                "console:error", error_payload("Stream error occurred", error, self.identity)
            )
            await self.cleanup()
            return

        if self._cleaned_up:
            return

        logger.info(
            "Console stream ended",
            extra={"container_id": self.container_id, "user_id": self.identity.user_id},
        )
        await self.emit("console:disconnected", {"message": "Console session ended"})
        await self.cleanup()

    async def send_command(self, command: str) -> None:
        """
        Send one line to the shell.

        Args:
            command: Command text, a newline is appended
        """
        if not self.is_active or not self.stream:
            await self.emit("console:error", {"message": "Console session not active"})
            return

        try:
            self.history.append({"command": command, "timestamp": now_ms()})
            await self.stream.write(command + "\n")

            async with self.db_manager.get_session() as session:
                await ContainerLogRepository(session).append(
                    self.container_id,
                    command[: self.settings.console_command_log_limit],
                    output=None,
                    exit_code=None,
                )

            self.metrics.record_console_command()
            self.audit_logger.log_event(
                AuditEventType.CONSOLE_COMMAND,
                container_id=self.container_id,
                user_id=self.identity.user_id,
                connection_id=self.connection_id,
                details={"command": command[:100]},
            )
        except Exception as e:
            logger.error(
                "Failed to send command",
                extra={"container_id": self.container_id, "error": str(e)},
            )
            await self.emit(
                "console:error", error_payload("Failed to send command", e, self.identity)
            )

    async def send_input(self, data: str) -> None:
        """Pass raw keystrokes to the shell."""
        if not self.is_active or not self.stream:
            return

        try:
            await self.stream.write(data)
        except Exception as e:
            logger.error(
                "Failed to send input",
                extra={"container_id": self.container_id, "error": str(e)},
            )
            await self.emit(
                "console:error", error_payload("Failed to send input", e, self.identity)
            )

    async def resize(self, cols: int, rows: int) -> None:
        """Resize the pseudo-terminal; failures are only logged."""
        if not self.is_active or not self.exec_handle:
            return

        try:
            await self.exec_handle.resize(cols, rows)
        except Exception as e:
            logger.warning(
                "Failed to resize console",
                extra={
                    "container_id": self.container_id,
                    "cols": cols,
                    "rows": rows,
                    "error": str(e),
                },
            )

    def get_stats(self) -> Dict[str, Any]:
        """Summary of the session."""
        return {
            "containerId": self.container_id,
            "userId": self.identity.user_id,
            "isActive": self.is_active,
            "state": self.state.value,
            "startTime": self.start_time,
            "uptime": now_ms() - self.start_time,
            "commandCount": len(self.history),
            "lastCommand": self.history[-1] if self.history else None,
        }

    async def cleanup(self) -> None:
        """Close the session; safe to call any number of times."""
        if self._cleaned_up:
            return
        self._cleaned_up = True

        was_active = self.state == ConsoleState.ACTIVE
        self.state = ConsoleState.CLOSED

        if self.stream:
            try:
                self.stream.close()
            except Exception as e:
                logger.error("Error closing console stream", extra={"error": str(e)})
            self.stream = None
        self.exec_handle = None

        task = self._reader_task
        self._reader_task = None
        if task and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self.registry.remove(self.connection_id, SessionKind.CONSOLE, self)

        if not was_active:
            return

        duration_ms = int((time.monotonic() - self._started) * 1000)
        try:
            async with self.db_manager.get_session() as session:
                await ContainerLogRepository(session).append(
                    self.container_id,
                    "CONSOLE_DISCONNECT",
                    output=(
                        f"Console session ended. Duration: {duration_ms}ms, "
                        f"commands: {len(self.history)}"
                    ),
                    exit_code=0,
                )
        except Exception as e:
            logger.error(
                "Failed to log console session end",
                extra={"container_id": self.container_id, "error": str(e)},
            )

        logger.info(
            "Console session ended",
            extra={
                "container_id": self.container_id,
                "connection_id": self.connection_id,
                "duration_ms": duration_ms,
                "command_count": len(self.history),
                "ended_at": datetime.now(timezone.utc).isoformat(),
            },
        )
        self.audit_logger.log_event(
            AuditEventType.CONSOLE_DISCONNECT,
            container_id=self.container_id,
            user_id=self.identity.user_id,
            connection_id=self.connection_id,
            details={"duration_ms": duration_ms, "command_count": len(self.history)},
        )

    async def close(self) -> None:
        """Registry hook, same as cleanup()."""
        await self.cleanup()
