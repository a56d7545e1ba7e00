"""Docker client utilities for the panel orchestrator."""

import sys

import docker
from docker import DockerClient
from docker.errors import DockerException

from panel_orchestrator.config import get_settings
from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.exceptions import EngineUnreachableError

logger = get_logger(__name__)

WINDOWS_PIPE_URL = "npipe:////./pipe/docker_engine"


class DockerClientManager:
    """Manages the Docker client connection."""

    def __init__(self) -> None:
        """Initialize Docker client manager."""
        self._client: DockerClient | None = None
        self.settings = get_settings()

    def _base_url(self) -> str | None:
        if self.settings.docker_host:
            return self.settings.docker_host
        if sys.platform == "win32":
            return WINDOWS_PIPE_URL
        return None

    def get_client(self) -> DockerClient:
        """
        Get or create Docker client instance.

        Returns:
            DockerClient instance

        Raises:
            EngineUnreachableError: If unable to connect to Docker daemon
        """
        if self._client is None:
            try:
                base_url = self._base_url()
                if base_url:
                    client = docker.DockerClient(
                        base_url=base_url, timeout=self.settings.docker_timeout_s
                    )
                else:
                    client = docker.from_env(timeout=self.settings.docker_timeout_s)

                # Test connection
                client.ping()
                info = client.info()
                logger.info(
                    "Successfully connected to Docker daemon",
                    extra={
                        "docker_version": info.get("ServerVersion"),
                        "containers": info.get("Containers"),
                        "images": info.get("Images"),
                    },
                )
                self._client = client
            except DockerException as e:
                logger.error("Failed to connect to Docker daemon", extra={"error": str(e)})
                raise EngineUnreachableError(f"Docker daemon is unreachable: {e}", e)

        return self._client

    def close(self) -> None:
        """Close Docker client connection."""
        if self._client:
            self._client.close()
            self._client = None
            logger.info("Docker client connection closed")


# Global instance
_docker_manager: DockerClientManager | None = None


def get_docker_client() -> DockerClient:
    """
    Get global Docker client instance.

    Returns:
        DockerClient instance
    """
    global _docker_manager
    if _docker_manager is None:
        _docker_manager = DockerClientManager()
    return _docker_manager.get_client()


def close_docker_client() -> None:
    """Close global Docker client connection."""
    global _docker_manager
    if _docker_manager:
        _docker_manager.close()
        _docker_manager = None
