"""Async engine and unit-of-work sessions for the ledger store.

PostgreSQL (asyncpg) is the production backend; SQLite (aiosqlite) serves
development and the test suite. One DatabaseManager is shared by the
ledger service, the wallet directory and the detection engine.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from usdc_flow_tracker.storage.models import Base

logger = logging.getLogger(__name__)

_SYNC_POSTGRES_PREFIX = "postgresql://"
_ASYNC_POSTGRES_PREFIX = "postgresql+asyncpg://"


def to_async_url(database_url: str) -> str:
    """Swap a plain postgresql:// URL for the asyncpg driver."""
    if database_url.startswith(_SYNC_POSTGRES_PREFIX):
        return _ASYNC_POSTGRES_PREFIX + database_url[len(_SYNC_POSTGRES_PREFIX) :]
    return database_url


class DatabaseManager:
    """Lazily creates the async engine and hands out transactional sessions.

    Example:
        ```python
        db = DatabaseManager("sqlite+aiosqlite:///./usdc_flow_tracker.db")
        async with db.get_async_session() as session:
            await TransactionRepository(session).exists("0xabc")
        await db.dispose_async()
        ```
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        """Initialize database manager.

        Args:
            database_url: PostgreSQL or sqlite+aiosqlite connection URL.
            pool_size: Connection pool size (PostgreSQL only).
            max_overflow: Connections allowed beyond the pool (PostgreSQL only).
            echo: Log every SQL statement.
        """
        self.database_url = to_async_url(database_url)
        self._pool_size = pool_size
        self._max_overflow = max_overflow
        self._echo = echo

        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _engine_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"echo": self._echo}
        if not self.is_sqlite:
            # SQLite's aiosqlite dialect picks its own pool
            options.update(
                pool_size=self._pool_size,
                max_overflow=self._max_overflow,
                pool_pre_ping=True,
            )
        return options

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._engine_options())
            logger.debug("Created async engine (%s)", "sqlite" if self.is_sqlite else "postgresql")
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """One unit of work: committed on normal exit, rolled back if the body raises."""
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self.engine, expire_on_commit=False)
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_schema_async(self) -> None:
        """Create missing tables from the ORM metadata."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Ledger schema initialized")

    async def dispose_async(self) -> None:
        """Close pooled connections; the next session recreates the engine."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.info("Database connections disposed")
