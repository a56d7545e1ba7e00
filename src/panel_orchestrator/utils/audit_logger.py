"""Audit trail of container lifecycle, console and stats activity."""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from panel_orchestrator.utils.logging import get_logger

REDACTED = "***REDACTED***"

SENSITIVE_WORDS = frozenset(
    {"password", "passwd", "token", "secret", "key", "auth", "credentials", "private"}
)

# NAME=value assignments typed into a console, e.g. ``export API_TOKEN=abc``
_INLINE_ASSIGNMENT = re.compile(
    r"\b(\w*(?:PASSWORD|PASSWD|TOKEN|SECRET|KEY)\w*=)(\"[^\"]*\"|'[^']*'|\S+)", re.IGNORECASE
)


class AuditEventType(str, Enum):
    """Types of audit events."""

    # Container lifecycle
    CONTAINER_CREATE = "container_create"
    CONTAINER_START = "container_start"
    CONTAINER_STOP = "container_stop"
    CONTAINER_RESTART = "container_restart"
    CONTAINER_RENAME = "container_rename"
    CONTAINER_DELETE = "container_delete"
    CONTAINER_STATE_CHANGE = "container_state_change"

    # Console sessions
    CONSOLE_CONNECT = "console_connect"
    CONSOLE_COMMAND = "console_command"
    CONSOLE_DISCONNECT = "console_disconnect"

    # Stats subscriptions
    STATS_SUBSCRIBE = "stats_subscribe"
    STATS_UNSUBSCRIBE = "stats_unsubscribe"

    SECURITY_ACCESS_DENIED = "security_access_denied"

    SYSTEM_STARTUP = "system_startup"
    SYSTEM_SHUTDOWN = "system_shutdown"
    SYSTEM_RECONCILE = "system_reconcile"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(word in lowered for word in SENSITIVE_WORDS)


def mask_command(command: str) -> str:
    """
    Mask values assigned to secret-looking variables in a shell command.

    Args:
        command: Command text as typed by the user

    Returns:
        Command with the assigned values replaced
    """
    return _INLINE_ASSIGNMENT.sub(lambda m: m.group(1) + REDACTED, command)


class AuditLogger:
    """
    Emits one ``audit_event`` record per audited action.

    Events go to the ``audit`` logger at INFO so they are kept even when the
    application runs at WARNING.
    """

    def __init__(self):
        self._logger = get_logger("audit")
        self._logger.setLevel(logging.INFO)

    def log_event(
        self,
        event_type: AuditEventType,
        container_id: Optional[str] = None,
        user_id: Optional[str] = None,
        connection_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of event being logged
            container_id: Container ID if relevant
            user_id: ID of the user performing the action
            connection_id: Real-time connection ID for console and stats events
            details: Additional event-specific details, redacted before logging
        """
        event: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
        }
        context = {
            "container_id": container_id,
            "user_id": user_id,
            "connection_id": connection_id,
        }
        event.update({name: value for name, value in context.items() if value})

        sanitized = self._sanitize_details(details or {})
        if sanitized:
            event["details"] = sanitized

        self._logger.info("audit_event", extra=event)

    def _sanitize_details(self, details: dict[str, Any]) -> dict[str, Any]:
        """
        Redact secrets from event details.

        Values under secret-looking keys are replaced, nested mappings and
        lists of mappings are walked, and console command text is masked.
        """
        sanitized: dict[str, Any] = {}
        for key, value in details.items():
            if _is_sensitive(key):
                sanitized[key] = REDACTED
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_details(value)
            elif isinstance(value, list):
                sanitized[key] = [
                    self._sanitize_details(item) if isinstance(item, dict) else item
                    for item in value
                ]
            elif key == "command" and isinstance(value, str):
                sanitized[key] = mask_command(value)
            else:
                sanitized[key] = value
        return sanitized


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Process-wide audit logger."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
