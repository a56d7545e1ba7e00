"""Async adapter over the Docker engine API.

The adapter owns no state beyond the Docker client handle. Every method is a
single request/response (or a stream) against the daemon; docker-py is
blocking, so calls run in a worker thread and the event loop never waits on
the socket. Docker failures are converted to ``EngineError`` and friends but
are otherwise not interpreted here.
"""

import asyncio
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import requests
from docker import DockerClient
from docker.errors import DockerException, NotFound
from docker.utils import parse_repository_tag

from panel_orchestrator.config import get_settings
from panel_orchestrator.managers.resource_limits import ResourceLimits
from panel_orchestrator.utils import get_logger
from panel_orchestrator.utils.docker_client import get_docker_client
from panel_orchestrator.utils.exceptions import (
    EngineError,
    EngineNotFoundError,
    EngineUnreachableError,
    ImagePullError,
)
from panel_orchestrator.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)

MANAGED_LABEL = "panel.managed"


@dataclass
class ContainerSpec:
    """Everything needed to create an engine container."""

    name: str
    image: str
    command: List[str] = field(default_factory=list)
    env: List[str] = field(default_factory=list)  # ["KEY=value"]
    ports: List[str] = field(default_factory=list)  # ["3000/tcp"]
    volumes: List[str] = field(default_factory=list)  # ["/host:/container:rw"]
    working_dir: str = "/app"
    resources: ResourceLimits = field(default_factory=ResourceLimits)
    network_mode: str = "bridge"
    restart_policy: str = "unless-stopped"
    labels: Dict[str, str] = field(default_factory=dict)


@dataclass
class NetworkCounters:
    """Cumulative traffic counters of one container interface."""

    rx_bytes: int = 0
    tx_bytes: int = 0
    rx_packets: int = 0
    tx_packets: int = 0

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "rxBytes": self.rx_bytes,
            "txBytes": self.tx_bytes,
            "rxPackets": self.rx_packets,
            "txPackets": self.tx_packets,
        }


@dataclass
class ContainerStats:
    """One resource usage sample of a container."""

    cpu_percent: float
    memory_used_bytes: int
    memory_limit_bytes: int
    memory_percent: float
    online_cpus: int = 1
    networks: Dict[str, NetworkCounters] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict:
        """Convert to dictionary for serialization."""
        return {
            "cpuPercent": round(self.cpu_percent, 2),
            "onlineCpus": self.online_cpus,
            "memoryUsedBytes": self.memory_used_bytes,
            "memoryLimitBytes": self.memory_limit_bytes,
            "memoryPercent": round(self.memory_percent, 2),
            "memoryUsage": format_bytes(self.memory_used_bytes),
            "memoryLimit": format_bytes(self.memory_limit_bytes),
            "networks": {name: counters.to_dict() for name, counters in self.networks.items()},
            "timestamp": self.timestamp.isoformat(),
        }


def format_bytes(num_bytes: int) -> str:
    """Render a byte count with a binary unit, e.g. ``1.5 MB``."""
    if num_bytes <= 0:
        return "0 B"
    sizes = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(sizes) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {sizes[i]}"


def calculate_cpu_percent(cpu_delta: float, system_delta: float, online_cpus: int) -> float:
    """
    CPU usage between two samples as a percentage of one core.

    Saturating all cores of a multi-core container reports more than 100%.
    A non-positive system delta reports 0.0.
    """
    if system_delta <= 0:
        return 0.0
    return (cpu_delta / system_delta) * online_cpus * 100.0


def calculate_memory_percent(usage: int, limit: int) -> float:
    """Memory usage as a percentage of the limit, 0.0 without a limit."""
    if limit <= 0:
        return 0.0
    return usage / limit * 100.0


def compute_stats(raw: Dict[str, Any]) -> ContainerStats:
    """
    Build a ContainerStats sample from a raw Docker stats document.

    Args:
        raw: Non-streaming ``/containers/{id}/stats`` response

    Returns:
        ContainerStats
    """
    cpu_stats = raw.get("cpu_stats") or {}
    precpu_stats = raw.get("precpu_stats") or {}
    cpu_usage = cpu_stats.get("cpu_usage") or {}
    precpu_usage = precpu_stats.get("cpu_usage") or {}

    cpu_delta = (cpu_usage.get("total_usage") or 0) - (precpu_usage.get("total_usage") or 0)
    system_delta = (cpu_stats.get("system_cpu_usage") or 0) - (
        precpu_stats.get("system_cpu_usage") or 0
    )
    online_cpus = (
        cpu_stats.get("online_cpus") or len(cpu_usage.get("percpu_usage") or []) or 1
    )

    memory_stats = raw.get("memory_stats") or {}
    memory_usage = memory_stats.get("usage") or 0
    memory_limit = memory_stats.get("limit") or 0

    networks = {
        name: NetworkCounters(
            rx_bytes=counters.get("rx_bytes", 0),
            tx_bytes=counters.get("tx_bytes", 0),
            rx_packets=counters.get("rx_packets", 0),
            tx_packets=counters.get("tx_packets", 0),
        )
        for name, counters in (raw.get("networks") or {}).items()
    }

    return ContainerStats(
        cpu_percent=calculate_cpu_percent(cpu_delta, system_delta, online_cpus),
        memory_used_bytes=memory_usage,
        memory_limit_bytes=memory_limit,
        memory_percent=calculate_memory_percent(memory_usage, memory_limit),
        online_cpus=online_cpus,
        networks=networks,
    )


class ExecStream:
    """
    Duplex byte stream attached to an exec instance.

    Wraps the hijacked socket returned by ``exec_start(socket=True)``. With a
    TTY the bytes are the raw terminal output; without one they carry
    Docker's multiplexed frame headers.
    """

    def __init__(self, sock: Any, chunk_size: int = 4096) -> None:
        self._io = sock
        # docker-py hands out a SocketIO wrapper on unix sockets
        self._sock = getattr(sock, "_sock", sock)
        self.chunk_size = chunk_size
        self._closed = False

    @property
    def closed(self) -> bool:
        """Whether close() was called."""
        return self._closed

    async def read(self) -> bytes:
        """
        Read the next chunk of output.

        Returns:
            Bytes read; empty bytes once the stream has ended
        """
        if self._closed:
            return b""
        return await asyncio.to_thread(self._sock.recv, self.chunk_size)

    async def write(self, data: Union[bytes, str]) -> None:
        """
        Write to the exec's stdin.

        Args:
            data: Bytes, or text encoded as UTF-8
        """
        if self._closed:
            raise EngineError("Exec stream is closed")
        if isinstance(data, str):
            data = data.encode("utf-8")
        await asyncio.to_thread(self._sock.sendall, data)

    def close(self) -> None:
        """Close the stream; a blocked read returns or fails promptly."""
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except (OSError, AttributeError):
            pass
        try:
            self._io.close()
        except OSError as e:
            logger.debug("Error closing exec stream", extra={"error": str(e)})


class ExecHandle:
    """Handle on a started exec instance."""

    def __init__(self, engine: "EngineClient", exec_id: str) -> None:
        self.engine = engine
        self.exec_id = exec_id

    async def resize(self, cols: int, rows: int) -> None:
        """Resize the exec's pseudo-terminal."""
        await self.engine._run(
            "exec_resize",
            self.engine.api.exec_resize,
            self.exec_id,
            height=rows,
            width=cols,
            target=self.exec_id,
        )

    async def inspect(self) -> Dict:
        """Inspect the exec instance."""
        return await self.engine._run(
            "exec_inspect", self.engine.api.exec_inspect, self.exec_id, target=self.exec_id
        )

    async def exit_code(self) -> Optional[int]:
        """Exit code of the exec, None while it is still running."""
        info = await self.inspect()
        if info.get("Running"):
            return None
        return info.get("ExitCode")


class EngineClient:
    """Capability-typed façade over the Docker engine API."""

    def __init__(self, docker_client: DockerClient | None = None) -> None:
        """
        Initialize the engine client.

        Args:
            docker_client: Docker client to use (defaults to the global client)
        """
        self.settings = get_settings()
        self.docker_client: DockerClient = docker_client or get_docker_client()
        self.metrics = get_metrics_collector()

    @property
    def api(self):
        """Low-level docker-py API client."""
        return self.docker_client.api

    async def _run(
        self,
        operation: str,
        func: Callable,
        *args: Any,
        target: str | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Run a blocking docker-py call in a worker thread.

        Raises:
            EngineNotFoundError: If the target object does not exist
            EngineUnreachableError: If the daemon cannot be reached
            EngineError: For any other Docker failure
        """
        started = time.monotonic()
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except NotFound as e:
            raise EngineNotFoundError(target or "unknown", e)
        except requests.exceptions.ConnectionError as e:
            logger.error("Docker daemon unreachable", extra={"operation": operation})
            raise EngineUnreachableError(original_error=e)
        except (DockerException, requests.exceptions.RequestException) as e:
            reason = getattr(e, "explanation", None) or str(e)
            logger.error(
                "Docker API error",
                extra={"operation": operation, "target": target, "error": str(e)},
            )
            raise EngineError(f"Failed to {operation.replace('_', ' ')}: {reason}", e)
        finally:
            self.metrics.record_engine_call(operation, time.monotonic() - started)

    async def ping(self) -> bool:
        """Check that the daemon answers."""
        return bool(await self._run("ping", self.docker_client.ping))

    async def info(self) -> Dict:
        """Get daemon information."""
        return await self._run("info", self.docker_client.info)

    async def pull_image(self, image: str) -> None:
        """
        Pull an image, following progress until completion.

        Args:
            image: Image reference

        Raises:
            ImagePullError: If the pull fails
        """
        repository, tag = parse_repository_tag(image)
        logger.info("Pulling image", extra={"image": image})

        def _pull() -> None:
            for event in self.api.pull(repository, tag=tag or "latest", stream=True, decode=True):
                if "error" in event:
                    raise ImagePullError(image, event["error"])
                if event.get("status"):
                    logger.debug(
                        "Image pull progress",
                        extra={
                            "image": image,
                            "status": event["status"],
                            "layer": event.get("id"),
                            "progress": event.get("progress"),
                        },
                    )

        try:
            await self._run("pull_image", _pull, target=image)
        except EngineError as e:
            if isinstance(e, ImagePullError):
                raise
            raise ImagePullError(image, e.reason or str(e), e.original_error)

        logger.info("Image pulled successfully", extra={"image": image})

    async def ensure_image(self, image: str) -> None:
        """Pull an image unless it is already present locally."""
        try:
            await self._run("inspect_image", self.api.inspect_image, image, target=image)
        except EngineNotFoundError:
            await self.pull_image(image)

    async def create_container(self, spec: ContainerSpec) -> str:
        """
        Create an engine container.

        Args:
            spec: Container specification

        Returns:
            Engine-assigned container ID

        Raises:
            EngineError: If the image or container cannot be created
        """
        await self.ensure_image(spec.image)

        labels = {
            MANAGED_LABEL: "true",
            "panel.created": datetime.now(timezone.utc).isoformat(),
            **spec.labels,
        }

        container = await self._run(
            "create_container",
            self.docker_client.containers.create,
            image=spec.image,
            name=spec.name,
            command=spec.command or None,
            environment=spec.env,
            ports={port: None for port in spec.ports},
            working_dir=spec.working_dir,
            labels=labels,
            restart_policy={"Name": spec.restart_policy},
            network_mode=spec.network_mode,
            volumes=spec.volumes or None,
            detach=True,
            target=spec.name,
            **spec.resources.to_host_config(),
        )

        logger.info(
            "Docker container created",
            extra={"docker_id": container.id, "container_name": spec.name, "image": spec.image},
        )
        return container.id

    async def start_container(self, engine_id: str) -> None:
        """Start a container."""
        await self._run("start_container", self.api.start, engine_id, target=engine_id)
        logger.info("Docker container started", extra={"docker_id": engine_id})

    async def stop_container(self, engine_id: str, timeout: int = 10) -> None:
        """Stop a container, force-killing it after ``timeout`` seconds."""
        await self._run(
            "stop_container", self.api.stop, engine_id, timeout=timeout, target=engine_id
        )
        logger.info("Docker container stopped", extra={"docker_id": engine_id, "timeout": timeout})

    async def restart_container(self, engine_id: str, timeout: int = 10) -> None:
        """Restart a container, force-killing it after ``timeout`` seconds."""
        await self._run(
            "restart_container", self.api.restart, engine_id, timeout=timeout, target=engine_id
        )
        logger.info(
            "Docker container restarted", extra={"docker_id": engine_id, "timeout": timeout}
        )

    async def remove_container(self, engine_id: str, force: bool = False) -> None:
        """Remove a container."""
        await self._run(
            "remove_container",
            self.api.remove_container,
            engine_id,
            force=force,
            target=engine_id,
        )
        logger.info("Docker container removed", extra={"docker_id": engine_id, "force": force})

    async def get_container_info(self, engine_id: str) -> Dict:
        """Inspect a container."""
        return await self._run(
            "inspect_container", self.api.inspect_container, engine_id, target=engine_id
        )

    async def get_container_stats(self, engine_id: str) -> ContainerStats:
        """Take a single, non-streaming stats sample."""
        raw = await self._run(
            "container_stats", self.api.stats, engine_id, stream=False, target=engine_id
        )
        return compute_stats(raw)

    async def list_containers(
        self, all: bool = False, filters: Optional[Dict] = None
    ) -> List[Dict]:
        """List containers known to the engine."""
        return await self._run(
            "list_containers", self.api.containers, all=all, filters=filters or {}
        )

    async def exec_command(
        self,
        engine_id: str,
        cmd: Union[str, List[str]],
        tty: bool = False,
        stdin: bool = True,
        workdir: Optional[str] = None,
        environment: Optional[Dict[str, str]] = None,
    ) -> Tuple[ExecHandle, ExecStream]:
        """
        Create and start an exec instance attached to stdio.

        Args:
            engine_id: Engine container ID
            cmd: Command list, or a string run through ``/bin/sh -c``
            tty: Allocate a pseudo-terminal
            stdin: Attach stdin
            workdir: Working directory inside the container
            environment: Extra environment variables

        Returns:
            Tuple of (exec handle, live duplex stream)
        """
        command = cmd if isinstance(cmd, list) else ["/bin/sh", "-c", cmd]

        created = await self._run(
            "exec_create",
            self.api.exec_create,
            engine_id,
            command,
            stdout=True,
            stderr=True,
            stdin=stdin,
            tty=tty,
            workdir=workdir,
            environment=environment,
            target=engine_id,
        )
        exec_id = created["Id"]

        sock = await self._run(
            "exec_start", self.api.exec_start, exec_id, socket=True, tty=tty, target=engine_id
        )

        logger.info(
            "Exec started",
            extra={"docker_id": engine_id, "exec_id": exec_id, "cmd": command, "tty": tty},
        )
        return ExecHandle(self, exec_id), ExecStream(sock, self.settings.console_read_chunk)

    async def put_archive(self, engine_id: str, path: str, data: bytes) -> bool:
        """Upload a tar archive and extract it at ``path`` inside the container."""
        return await self._run(
            "put_archive", self.api.put_archive, engine_id, path, data, target=engine_id
        )

    async def get_archive(self, engine_id: str, path: str) -> bytes:
        """Download ``path`` from the container as a tar archive."""

        def _get() -> bytes:
            stream, _stat = self.api.get_archive(engine_id, path)
            return b"".join(stream)

        return await self._run("get_archive", _get, target=engine_id)
