"""Periodic resource stats pushed to a connection."""

import asyncio
import contextlib
from typing import Any, Dict, Optional

from panel_orchestrator.config import get_settings
from panel_orchestrator.identity import Identity
from panel_orchestrator.managers.container_manager import ContainerManager
from panel_orchestrator.managers.events import Emit, error_payload, now_ms
from panel_orchestrator.managers.session_registry import SessionKind
from panel_orchestrator.models.containers import ContainerStatus
from panel_orchestrator.repositories.containers import ContainerRepository
from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.audit_logger import AuditEventType, get_audit_logger
from panel_orchestrator.utils.exceptions import (
    ContainerNotFoundError,
    OrchestratorError,
    ValidationError,
)
from panel_orchestrator.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


def clamp_interval(interval_ms: int | None) -> int:
    """
    Clamp a requested polling interval to the configured bounds.

    Args:
        interval_ms: Requested interval, None for the default

    Returns:
        Interval in milliseconds
    """
    settings = get_settings()
    if interval_ms is None:
        interval_ms = settings.stats_default_interval_ms
    interval_ms = min(settings.stats_max_interval_ms, int(interval_ms))
    return max(settings.stats_min_interval_ms, interval_ms)


class StatsSubscription:
    """
    The stats subscription of one connection.

    At most one timer runs per subscription; subscribing again replaces the
    previous target and interval.
    """

    kind = SessionKind.STATS

    def __init__(
        self,
        connection_id: str,
        identity: Identity,
        emit: Emit,
        container_manager: ContainerManager,
    ) -> None:
        """
        Initialize stats subscription.

        Args:
            connection_id: Real-time connection ID
            identity: Requester
            emit: Sends notifications to the client
            container_manager: Lifecycle manager used for every fetch
        """
        self.connection_id = connection_id
        self.identity = identity
        self.emit = emit
        self.container_manager = container_manager
        self.db_manager = container_manager.db_manager
        self.audit_logger = get_audit_logger()
        self.metrics = get_metrics_collector()

        self.container_id: Optional[str] = None
        self.interval_ms: Optional[int] = None
        self.subscribed_at: Optional[int] = None
        self.ticks = 0
        self.failures = 0
        self._timer: Optional[asyncio.Task] = None

    @property
    def is_active(self) -> bool:
        """Whether a timer is running."""
        return self._timer is not None and not self._timer.done()

    async def subscribe(self, container_id: str, interval_ms: int | None = None) -> bool:
        """
        Start pushing stats for a container.

        Access, engine id and RUNNING status are verified first; on failure
        a ``stats:error`` is sent and no timer is started.

        Args:
            container_id: Container ID
            interval_ms: Requested interval, clamped to the configured bounds

        Returns:
            True if the timer was started
        """
        try:
            async with self.db_manager.get_session() as session:
                container = await ContainerRepository(session).get(container_id)
                if not container:
                    raise ContainerNotFoundError(container_id)

                self.container_manager.check_access(container, self.identity)

                if not container.docker_id or container.status != ContainerStatus.RUNNING.value:
                    raise ValidationError("Container is not running")
        except OrchestratorError as e:
            await self.emit(
                "stats:error", error_payload("Failed to subscribe to stats", e, self.identity)
            )
            return False

        interval = clamp_interval(interval_ms)

        await self._cancel_timer()
        self.container_id = container_id
        self.interval_ms = interval
        self.subscribed_at = now_ms()
        self._timer = asyncio.create_task(self._run(container_id, interval))

        await self.emit("stats:subscribed", {"containerId": container_id, "interval": interval})

        logger.info(
            "Stats subscription started",
            extra={
                "container_id": container_id,
                "connection_id": self.connection_id,
                "interval_ms": interval,
            },
        )
        self.audit_logger.log_event(
            AuditEventType.STATS_SUBSCRIBE,
            container_id=container_id,
            user_id=self.identity.user_id,
            connection_id=self.connection_id,
            details={"interval_ms": interval},
        )
        return True

    async def _run(self, container_id: str, interval_ms: int) -> None:
        while True:
            await asyncio.sleep(interval_ms / 1000)
            await self.tick(container_id)

    async def tick(self, container_id: str) -> None:
        """
        Fetch and push one stats sample.

        A failure is reported as ``stats:error`` and does not stop the timer.
        """
        try:
            stats = await self.container_manager.get_container_stats(self.identity, container_id)
        except Exception as e:
            self.failures += 1
            self.metrics.record_stats_failure()
            logger.warning(
                "Failed to get container stats",
                extra={"container_id": container_id, "error": str(e)},
            )
            await self.emit(
                "stats:error", error_payload("Failed to get container stats", e, self.identity)
            )
            return

        self.ticks += 1
        await self.emit(
            "stats:data",
            {"containerId": container_id, "stats": stats.to_dict(), "timestamp": now_ms()},
        )

    async def _cancel_timer(self) -> bool:
        timer = self._timer
        self._timer = None
        if timer is None or timer.done():
            return False
        timer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await timer
        return True

    async def unsubscribe(self) -> None:
        """Stop the timer and acknowledge; idempotent."""
        was_active = await self._cancel_timer()
        await self.emit("stats:unsubscribed", {})

        if was_active:
            logger.info(
                "Stats subscription stopped",
                extra={"container_id": self.container_id, "connection_id": self.connection_id},
            )
            self.audit_logger.log_event(
                AuditEventType.STATS_UNSUBSCRIBE,
                container_id=self.container_id,
                user_id=self.identity.user_id,
                connection_id=self.connection_id,
            )

    async def close(self) -> None:
        """Stop the timer silently; idempotent."""
        await self._cancel_timer()

    def get_stats(self) -> Dict[str, Any]:
        """Summary of the subscription."""
        return {
            "containerId": self.container_id,
            "userId": self.identity.user_id,
            "isActive": self.is_active,
            "interval": self.interval_ms,
            "subscribedAt": self.subscribed_at,
            "ticks": self.ticks,
            "failures": self.failures,
        }
