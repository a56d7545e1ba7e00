"""Outbound notification helpers shared by console and stats sessions."""

import time
from typing import Any, Awaitable, Callable, Dict, Optional

from panel_orchestrator.identity import Identity
from panel_orchestrator.utils.exceptions import EngineError, OrchestratorError

# Sends one named message to the connection's client
Emit = Callable[[str, Optional[Dict[str, Any]]], Awaitable[None]]


def now_ms() -> int:
    """Current wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def error_payload(message: str, error: BaseException, identity: Identity) -> Dict[str, Any]:
    """
    Build the data of an error notification.

    Orchestrator errors raised before the engine is reached carry a safe
    message and replace ``message``. Engine failures keep the caller's
    message; only administrators also receive the engine reason.

    Args:
        message: Message used for engine and unexpected failures
        error: The failure
        identity: Recipient of the notification

    Returns:
        Notification data
    """
    if isinstance(error, EngineError):
        payload: Dict[str, Any] = {"message": message, "code": error.code}
        if identity.is_admin:
            payload["error"] = error.reason or str(error)
        return payload

    if isinstance(error, OrchestratorError):
        return {"message": str(error), "code": error.code}

    return {"message": message, "code": "INTERNAL_ERROR"}
