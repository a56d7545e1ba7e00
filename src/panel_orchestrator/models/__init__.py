"""SQLAlchemy models for the panel orchestrator."""

from .base import Base
from .container_logs import ContainerLog
from .containers import Container, ContainerStatus
from .users import User, UserRole

__all__ = ["Base", "Container", "ContainerLog", "ContainerStatus", "User", "UserRole"]
