"""Test configuration and fixtures."""

import asyncio
from datetime import datetime, timezone
from typing import AsyncGenerator
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from panel_orchestrator.config import Settings
from panel_orchestrator.identity import Identity
from panel_orchestrator.managers.container_manager import ContainerManager
from panel_orchestrator.managers.engine_client import ContainerStats, EngineClient, ExecHandle
from panel_orchestrator.managers.session_registry import SessionRegistry
from panel_orchestrator.models.containers import Container, ContainerStatus
from panel_orchestrator.models.database import DatabaseManager
from panel_orchestrator.models.users import User, UserRole


class FakeExecStream:
    """In-memory stand-in for an exec stream."""

    def __init__(self) -> None:
        self._chunks: asyncio.Queue = asyncio.Queue()
        self.written: list = []
        self.closed = False

    def feed(self, data: bytes) -> None:
        self._chunks.put_nowait(data)

    def end(self) -> None:
        self._chunks.put_nowait(b"")

    def fail(self, error: Exception) -> None:
        self._chunks.put_nowait(error)

    async def read(self) -> bytes:
        if self.closed:
            return b""
        item = await self._chunks.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def write(self, data) -> None:
        self.written.append(data)

    def close(self) -> None:
        self.closed = True
        self._chunks.put_nowait(b"")


class EventRecorder:
    """Collects notifications sent to a client."""

    def __init__(self) -> None:
        self.events: list = []

    async def __call__(self, event, data=None) -> None:
        self.events.append((event, data))

    def named(self, event: str) -> list:
        return [data for name, data in self.events if name == event]

    @property
    def names(self) -> list:
        return [name for name, _ in self.events]


@pytest.fixture
async def db_manager(tmp_path) -> AsyncGenerator[DatabaseManager, None]:
    """Database manager over a throwaway SQLite file."""
    manager = DatabaseManager()
    manager.settings = Settings(state_db=str(tmp_path / "panel.db"))
    await manager.create_tables()

    yield manager

    await manager.close()


@pytest.fixture
async def db_session(db_manager) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
async def users(db_manager) -> dict:
    """Seed an administrator and two members."""
    async with db_manager.get_session() as session:
        session.add_all(
            [
                User(id="u_admin", username="admin", role=UserRole.ADMIN.value, is_active=True),
                User(id="u_alice", username="alice", role=UserRole.MEMBER.value, is_active=True),
                User(id="u_bob", username="bob", role=UserRole.MEMBER.value, is_active=True),
                User(id="u_gone", username="gone", role=UserRole.MEMBER.value, is_active=False),
            ]
        )

    return {
        "admin": Identity("u_admin", "admin", UserRole.ADMIN),
        "alice": Identity("u_alice", "alice", UserRole.MEMBER),
        "bob": Identity("u_bob", "bob", UserRole.MEMBER),
    }


@pytest.fixture
def make_container(db_manager):
    """Factory inserting container records."""

    async def _make(
        owner_id: str,
        status: ContainerStatus = ContainerStatus.RUNNING,
        docker_id: str | None = "e1",
        name: str | None = None,
    ) -> Container:
        now = datetime.now(timezone.utc)
        container = Container(
            id=f"c_{uuid4()}",
            name=name or f"box-{uuid4().hex[:8]}",
            image="node:18-alpine",
            owner_id=owner_id,
            status=status.value,
            docker_id=docker_id,
            resources={"memory": "512m", "cpus": 0.5},
            ports=[],
            environment={},
            config={},
            created_at=now,
            updated_at=now,
        )
        async with db_manager.get_session() as session:
            session.add(container)
        return container

    return _make


@pytest.fixture
def engine():
    """Engine client mock; async methods are AsyncMocks."""
    engine = MagicMock(spec=EngineClient)
    engine.get_container_info.return_value = {"State": {"Status": "running"}}
    engine.create_container.return_value = "e_new"
    engine.get_container_stats.return_value = ContainerStats(
        cpu_percent=12.5,
        memory_used_bytes=64 * 1024 * 1024,
        memory_limit_bytes=512 * 1024 * 1024,
        memory_percent=12.5,
    )
    engine.list_containers.return_value = []
    return engine


@pytest.fixture
def container_manager(engine, db_manager):
    """ContainerManager bound to the test database and engine mock."""
    manager = ContainerManager(engine=engine)
    manager.db_manager = db_manager
    manager.reconciler.db_manager = db_manager
    return manager


@pytest.fixture
async def registry() -> AsyncGenerator[SessionRegistry, None]:
    """Started session registry, drained afterwards."""
    registry = SessionRegistry()
    await registry.start()

    yield registry

    await registry.shutdown()


@pytest.fixture
def recorder() -> EventRecorder:
    """Captures outbound notifications."""
    return EventRecorder()


@pytest.fixture
def exec_stream() -> FakeExecStream:
    """Exec stream the engine mock hands out for console sessions."""
    return FakeExecStream()


@pytest.fixture
def exec_handle():
    """Exec handle mock; resize and exit_code are AsyncMocks."""
    return MagicMock(spec=ExecHandle)


@pytest.fixture
def eventually():
    """Wait until a condition holds while background tasks make progress."""

    async def _eventually(condition, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not condition():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return _eventually
