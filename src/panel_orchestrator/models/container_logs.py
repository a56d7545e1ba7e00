"""Append-only audit trail of commands and lifecycle markers per container."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ContainerLog(Base):
    """Model for container log entries."""

    __tablename__ = "container_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    container_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("containers.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Command text or lifecycle marker (START, CONSOLE_CONNECT, ...)
    command: Mapped[str] = mapped_column(String(1000), nullable=False)
    output: Mapped[str | None] = mapped_column(Text, nullable=True)
    exit_code: Mapped[int | None] = mapped_column(Integer, nullable=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """String representation of ContainerLog."""
        return (
            f"<ContainerLog(id={self.id}, container_id={self.container_id}, "
            f"command={self.command}, exit_code={self.exit_code})>"
        )
