"""Container model for tracking Docker containers owned by panel users."""

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from .base import Base


class ContainerStatus(str, Enum):
    """Persisted container status."""

    CREATED = "CREATED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


class Container(Base):
    """Model for containers provisioned through the panel."""

    __tablename__ = "containers"
    __table_args__ = (UniqueConstraint("owner_id", "name", name="uq_containers_owner_name"),)

    # Primary key - opaque ID in format "c_{uuid}"
    id: Mapped[str] = mapped_column(String(50), primary_key=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    image: Mapped[str] = mapped_column(String(500), nullable=False)

    owner_id: Mapped[str] = mapped_column(String(50), ForeignKey("users.id"), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContainerStatus.CREATED.value
    )

    # Set only once the engine object exists
    docker_id: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)

    # {"memory": "512m", "cpus": 0.5}
    resources: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    # [{"container_port": 3000, "protocol": "tcp"}]
    ports: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    environment: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """String representation of Container."""
        return (
            f"<Container(id={self.id}, name={self.name}, "
            f"image={self.image}, status={self.status})>"
        )
