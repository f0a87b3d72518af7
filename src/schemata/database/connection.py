"""
Database connection management for schemata.

Provides an async PostgreSQL connection pool for the postgres store
backend, with lifecycle management and transactional acquisition.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import asyncpg

from ..config import DatabaseConnection, StorageConfig
from ..exceptions import StoreConfigurationError, StoreConnectionError


logger = logging.getLogger(__name__)


def connection_from_url(url: str) -> DatabaseConnection:
    """Create connection settings from a postgresql:// URL."""
    parsed = urlparse(url)

    if parsed.scheme not in ("postgresql", "postgres"):
        raise StoreConfigurationError(f"Invalid database URL scheme: {parsed.scheme}")

    if not parsed.path or parsed.path == "/":
        raise StoreConfigurationError("Database name is required")

    query_params = parse_qs(parsed.query) if parsed.query else {}

    return DatabaseConnection(
        host=parsed.hostname or "localhost",
        port=parsed.port or 5432,
        database=parsed.path.lstrip("/"),
        user=parsed.username or "",
        password=parsed.password or "",
        ssl_mode=query_params.get("sslmode", ["prefer"])[0],
    )


class ConnectionPool:
    """Async PostgreSQL connection pool wrapper."""

    def __init__(
        self,
        connection: DatabaseConnection,
        min_size: int = 2,
        max_size: int = 10,
    ):
        self.connection = connection
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_storage_config(cls, config: StorageConfig) -> "ConnectionPool":
        if config.connection is None:
            raise StoreConfigurationError(
                "Storage backend 'postgres' requires a connection section"
            )
        return cls(
            config.connection,
            min_size=config.min_pool_size,
            max_size=config.max_pool_size,
        )

    async def initialize(self) -> None:
        """Initialize the connection pool."""
        async with self._lock:
            if self._pool is not None:
                return

            try:
                logger.info(
                    f"Initializing connection pool to {self.connection.host}:"
                    f"{self.connection.port}/{self.connection.database} "
                    f"(min={self.min_size}, max={self.max_size})"
                )

                self._pool = await asyncpg.create_pool(
                    dsn=self.connection.to_dsn(),
                    min_size=self.min_size,
                    max_size=self.max_size,
                    timeout=self.connection.connect_timeout,
                    command_timeout=self.connection.command_timeout,
                    server_settings={"application_name": "schemata"},
                )

                logger.info("Connection pool initialized successfully")

            except (OSError, asyncpg.PostgresError) as e:
                logger.error(f"Failed to initialize connection pool: {e}")
                raise StoreConnectionError(
                    f"Failed to initialize connection pool: {e}", cause=e
                ) from e

    async def close(self) -> None:
        """Close the connection pool."""
        async with self._lock:
            if self._pool is not None:
                logger.info("Closing connection pool")
                await self._pool.close()
                self._pool = None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection from the pool."""
        if self._pool is None:
            raise StoreConnectionError("Pool is not connected")

        async with self._pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection inside a database transaction."""
        async with self.acquire() as connection:
            async with connection.transaction():
                yield connection

    async def execute(self, query: str, *args) -> str:
        """Execute a query and return status."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """Fetch all results from a query."""
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """Fetch a single row from a query."""
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args, column: int = 0) -> Any:
        """Fetch a single value from a query."""
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    def get_stats(self) -> Dict[str, Any]:
        """Get connection pool statistics."""
        if self._pool is None:
            return {"size": 0, "free": 0, "acquired": 0, "initialized": False}

        return {
            "size": self._pool.get_size(),
            "free": self._pool.get_idle_size(),
            "acquired": self._pool.get_size() - self._pool.get_idle_size(),
            "initialized": True,
        }

    @property
    def is_initialized(self) -> bool:
        return self._pool is not None

    async def __aenter__(self) -> "ConnectionPool":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
