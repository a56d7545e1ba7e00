"""Settings and configuration management for the panel orchestrator."""

from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PANEL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # State database configuration
    state_db: str = Field(
        default="./panel.db",
        description="Path or URL of the SQLite state database",
    )

    # Docker configuration
    docker_host: str | None = Field(
        default=None,
        description="Docker daemon URL (defaults to DOCKER_HOST, the local socket or named pipe)",
    )

    docker_timeout_s: int = Field(
        default=60,
        description="Timeout in seconds for Docker API calls",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    log_format: str = Field(
        default="json",
        description="Log format (json or text)",
    )

    # Server configuration
    host: str = Field(
        default="0.0.0.0",
        description="Server host to bind to",
    )

    port: int = Field(
        default=8000,
        description="Server port to bind to",
    )

    path: str = Field(
        default="/mcp",
        description="Path of the operator tool endpoint",
    )

    ws_path: str = Field(
        default="/ws/console",
        description="Path of the real-time console and stats endpoint",
    )

    # Operator tool authentication
    auth_mode: Literal["none", "bearer"] = Field(
        default="none",
        description="Authentication mode for the operator tool surface (none or bearer)",
    )

    bearer_token: str | None = Field(
        default=None,
        description="Bearer token for bearer authentication mode",
    )

    # WebSocket client authentication
    jwt_secret: str = Field(
        default="change-me",
        description="Shared secret used to verify client JWTs",
    )

    jwt_algorithm: str = Field(
        default="HS256",
        description="Algorithm used to verify client JWTs",
    )

    # Container provisioning
    max_containers_per_member: int = Field(
        default=1,
        description="Maximum number of containers a non-admin user may own",
    )

    allowed_images: str = Field(
        default="node:18-alpine,node:16-alpine,python:3.11-alpine,python:3.9-alpine,"
        "nginx:alpine,ubuntu:22.04",
        description="Comma-separated list of images members may use",
    )

    default_container_memory: str = Field(
        default="512m",
        description="Default memory limit (b, k, m or g suffix)",
    )

    default_container_cpu: float = Field(
        default=0.5,
        description="Default CPU share in cores",
    )

    default_working_dir: str = Field(
        default="/app",
        description="Default working directory for new containers",
    )

    default_restart_policy: str = Field(
        default="unless-stopped",
        description="Default restart policy for new containers",
    )

    default_network_mode: str = Field(
        default="bridge",
        description="Default network mode for new containers",
    )

    stop_timeout_s: int = Field(
        default=10,
        description="Grace period in seconds before stop/restart force-kills",
    )

    # Console sessions
    console_shell: str = Field(
        default="/bin/sh",
        description="Shell started for interactive console sessions",
    )

    console_history_limit: int = Field(
        default=100,
        description="Number of commands kept in a console session history",
    )

    console_command_log_limit: int = Field(
        default=1000,
        description="Maximum number of command characters persisted per log entry",
    )

    console_read_chunk: int = Field(
        default=4096,
        description="Maximum number of bytes read from an exec stream at once",
    )

    # Stats subscriptions
    stats_default_interval_ms: int = Field(
        default=2000,
        description="Stats polling interval used when the client sends none",
    )

    stats_min_interval_ms: int = Field(
        default=1000,
        description="Lower bound for the stats polling interval",
    )

    stats_max_interval_ms: int = Field(
        default=10000,
        description="Upper bound for the stats polling interval",
    )

    # Reconciliation
    orphan_grace_s: int = Field(
        default=3600,
        description="Age in seconds after which provisional records without engine id are removed",
    )

    @property
    def allowed_images_list(self) -> List[str]:
        """Parse allowed images into a list."""
        return [i.strip() for i in self.allowed_images.split(",") if i.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
