"""Async engine and session lifecycle of the state database."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from panel_orchestrator.config import get_settings
from panel_orchestrator.models.base import Base
from panel_orchestrator.utils import get_logger

logger = get_logger(__name__)


def database_url(state_db: str) -> str:
    """
    Turn the configured state database into an async SQLAlchemy URL.

    A plain path names a SQLite file; ``sqlite://`` URLs get the aiosqlite
    driver; any other URL is used as given.

    Args:
        state_db: File path or database URL

    Returns:
        Database URL with an async driver
    """
    if "://" not in state_db:
        return f"sqlite+aiosqlite:///{state_db}"

    url = make_url(state_db)
    if url.drivername == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")
    return url.render_as_string(hide_password=False)


def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite only cascades log deletion when foreign keys are enforced
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Owns the engine and hands out transactional sessions."""

    def __init__(self) -> None:
        """Initialize database manager."""
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None
        self.settings = get_settings()

    def get_engine(self) -> AsyncEngine:
        """
        Get the async engine, creating it on first use.

        Returns:
            AsyncEngine instance
        """
        if self._engine is not None:
            return self._engine

        url = database_url(self.settings.state_db)
        parsed = make_url(url)
        is_sqlite = parsed.get_backend_name() == "sqlite"
        if is_sqlite and parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)

        self._engine = create_async_engine(url, echo=False)
        if is_sqlite:
            event.listen(self._engine.sync_engine, "connect", _enable_foreign_keys)

        logger.info(
            "Database engine created",
            extra={"db_url": parsed.render_as_string(hide_password=True)},
        )
        return self._engine

    def get_session_maker(self) -> async_sessionmaker[AsyncSession]:
        """Session factory bound to the engine; loaded rows survive commit."""
        if self._session_maker is None:
            self._session_maker = async_sessionmaker(
                self.get_engine(), class_=AsyncSession, expire_on_commit=False
            )
        return self._session_maker

    async def create_tables(self) -> None:
        """Create missing tables of every model."""
        async with self.get_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def close(self) -> None:
        """Dispose of the engine; the next use creates a new one."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_maker = None
        logger.info("Database engine closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Open a unit of work.

        The session commits when the block exits normally and rolls back
        when it raises.

        Yields:
            AsyncSession instance
        """
        async with self.get_session_maker()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise


_db_manager: DatabaseManager | None = None


def get_db_manager() -> DatabaseManager:
    """Process-wide database manager."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
    return _db_manager


async def init_db() -> None:
    """Create the schema of the state database."""
    await get_db_manager().create_tables()


async def close_db() -> None:
    """Release the state database."""
    global _db_manager
    if _db_manager is not None:
        await _db_manager.close()
        _db_manager = None
