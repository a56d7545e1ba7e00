"""Repository pattern implementations for data access."""

from .base import BaseRepository
from .container_logs import ContainerLogRepository
from .containers import ContainerRepository
from .users import UserRepository

__all__ = [
    "BaseRepository",
    "ContainerLogRepository",
    "ContainerRepository",
    "UserRepository",
]
