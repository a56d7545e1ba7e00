"""Manager modules for business logic."""

from .console_session import ConsoleSession, ConsoleState
from .container_manager import ContainerManager, check_access
from .engine_client import (
    ContainerSpec,
    ContainerStats,
    EngineClient,
    ExecHandle,
    ExecStream,
    NetworkCounters,
)
from .reconciliation_manager import ReconciliationManager, map_engine_state
from .resource_limits import ResourceLimits, cpu_quota, parse_memory
from .session_registry import SessionKind, SessionRegistry
from .stats_subscription import StatsSubscription, clamp_interval

__all__ = [
    "ConsoleSession",
    "ConsoleState",
    "ContainerManager",
    "ContainerSpec",
    "ContainerStats",
    "EngineClient",
    "ExecHandle",
    "ExecStream",
    "NetworkCounters",
    "ReconciliationManager",
    "ResourceLimits",
    "SessionKind",
    "SessionRegistry",
    "StatsSubscription",
    "check_access",
    "clamp_interval",
    "cpu_quota",
    "map_engine_state",
    "parse_memory",
]
