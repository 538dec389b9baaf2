"""
PostgreSQL connection management for the hashtag store.

The crawler talks to PostgreSQL once per region, when the sealed reports
are published, so the asyncpg pool stays small (DB_POOL_MIN_SIZE to
DB_POOL_MAX_SIZE connections).
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import asyncpg

from src.config.settings import get_settings

logger = logging.getLogger(__name__)


class Database:
    """
    Async PostgreSQL connection pool.

    Usage:
        async with Database() as db:
            repo = HashtagRepository(db, country_code="VN")
            await repo.create_tables()
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float = 60,
    ):
        """
        Configure the pool. Nothing connects until connect().

        Args:
            database_url: PostgreSQL DSN (default: DATABASE_URL)
            min_size: Connections opened up front
            max_size: Upper bound on pooled connections
            command_timeout: Per-statement timeout in seconds
        """
        settings = get_settings()

        self._dsn = database_url or str(settings.database_url)
        self._pool_bounds = (
            min_size or settings.db_pool_min_size,
            max_size or settings.db_pool_max_size,
        )
        self._command_timeout = command_timeout
        self._pool: asyncpg.Pool | None = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """Open the pool; a no-op when already connected."""
        if self.is_connected:
            return

        min_size, max_size = self._pool_bounds
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=min_size,
                max_size=max_size,
                command_timeout=self._command_timeout,
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Could not open PostgreSQL pool: {e}")
            raise

        logger.info(f"PostgreSQL pool open ({min_size}-{max_size} connections)")

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        logger.info("PostgreSQL pool closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Borrow a connection with an open transaction.

        Statements run on the yielded connection commit together when the
        block exits, and roll back if it raises.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """Run one statement; returns the status tag (e.g. "INSERT 0 3")."""
        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """Return True when `SELECT 1` answers."""
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            logger.warning(f"PostgreSQL health check failed: {e}")
            return False
