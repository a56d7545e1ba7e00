"""Registry of live console sessions and stats subscriptions per connection."""

import asyncio
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.exceptions import SessionConflictError, ValidationError
from panel_orchestrator.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


class SessionKind(str, Enum):
    """Kinds of session a connection may hold, at most one of each."""

    CONSOLE = "console"
    STATS = "stats"


class ManagedSession(Protocol):
    """Interface the registry needs from a session."""

    kind: SessionKind
    connection_id: str

    async def close(self) -> None: ...

    def get_stats(self) -> Dict[str, Any]: ...


class SessionRegistry:
    """
    Concurrency-safe map from connection id to its sessions.

    The lock only guards the map itself; sessions are closed outside of it so
    a session removing itself during close never deadlocks.
    """

    def __init__(self) -> None:
        """Initialize session registry."""
        self._sessions: Dict[str, Dict[SessionKind, ManagedSession]] = {}
        self._lock = asyncio.Lock()
        self._running = False
        self.metrics = get_metrics_collector()

    @property
    def is_running(self) -> bool:
        """Whether the registry accepts new sessions."""
        return self._running

    async def start(self) -> None:
        """Start accepting sessions."""
        async with self._lock:
            self._running = True
        logger.info("Session registry started")

    async def register(self, session: ManagedSession) -> None:
        """
        Register a session for its connection.

        Args:
            session: Session to register

        Raises:
            SessionConflictError: If the connection already has a session of that kind
            ValidationError: If the registry is shut down
        """
        async with self._lock:
            if not self._running:
                raise ValidationError("Session registry is not running")

            sessions = self._sessions.setdefault(session.connection_id, {})
            if session.kind in sessions:
                raise SessionConflictError(session.connection_id, session.kind.value)

            sessions[session.kind] = session
            self._update_gauges()

        logger.debug(
            "Session registered",
            extra={"connection_id": session.connection_id, "kind": session.kind.value},
        )

    async def get(self, connection_id: str, kind: SessionKind) -> Optional[ManagedSession]:
        """
        Get the session of a kind held by a connection.

        Returns:
            Session or None
        """
        async with self._lock:
            return self._sessions.get(connection_id, {}).get(kind)

    async def remove(
        self,
        connection_id: str,
        kind: SessionKind,
        session: Optional[ManagedSession] = None,
    ) -> Optional[ManagedSession]:
        """
        Remove a session; removing an absent session is a no-op.

        Args:
            connection_id: Connection ID
            kind: Session kind
            session: Only remove if this exact session is the registered one

        Returns:
            Removed session or None
        """
        async with self._lock:
            sessions = self._sessions.get(connection_id)
            if not sessions:
                return None

            current = sessions.get(kind)
            if current is None or (session is not None and current is not session):
                return None

            del sessions[kind]
            if not sessions:
                del self._sessions[connection_id]
            self._update_gauges()

        logger.debug(
            "Session removed", extra={"connection_id": connection_id, "kind": kind.value}
        )
        return current

    async def close_connection(self, connection_id: str) -> None:
        """Close every session held by a connection."""
        async with self._lock:
            sessions = list(self._sessions.get(connection_id, {}).values())

        for session in sessions:
            await self._close_session(session)

        async with self._lock:
            self._sessions.pop(connection_id, None)
            self._update_gauges()

    def active_sessions(self) -> List[Dict[str, Any]]:
        """
        Summaries of all registered sessions.

        Returns:
            List of session summaries tagged with connection id and kind
        """
        summaries = []
        for connection_id, sessions in list(self._sessions.items()):
            for kind, session in list(sessions.items()):
                summaries.append(
                    {"connection_id": connection_id, "kind": kind.value, **session.get_stats()}
                )
        return summaries

    def count(self, kind: SessionKind | None = None) -> int:
        """Number of registered sessions, optionally of one kind."""
        return sum(
            1
            for sessions in self._sessions.values()
            for session_kind in sessions
            if kind is None or session_kind == kind
        )

    async def shutdown(self) -> None:
        """Stop accepting sessions and close every registered one."""
        async with self._lock:
            self._running = False
            sessions = [
                session for per_conn in self._sessions.values() for session in per_conn.values()
            ]

        logger.info("Draining session registry", extra={"session_count": len(sessions)})

        for session in sessions:
            await self._close_session(session)

        async with self._lock:
            self._sessions.clear()
            self._update_gauges()

        logger.info("Session registry shut down")

    async def _close_session(self, session: ManagedSession) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.error(
                "Error closing session",
                extra={
                    "connection_id": session.connection_id,
                    "kind": session.kind.value,
                    "error": str(e),
                },
            )

    def _update_gauges(self) -> None:
        self.metrics.set_active_console_sessions(self.count(SessionKind.CONSOLE))
        self.metrics.set_active_stats_subscriptions(self.count(SessionKind.STATS))
