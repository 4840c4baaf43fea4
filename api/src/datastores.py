"""
Clients for the service's external datastores.

- ``Database``: asyncpg connection pool against PostgreSQL
- ``Cache``: redis-py asyncio client against Redis

Both are created unconnected; the application lifespan calls ``connect()``
on startup and ``close()`` on shutdown.
"""

from typing import Optional, Tuple

import asyncpg
import structlog
from redis import asyncio as aioredis

from api.src.config import Settings
from shared.utils.retry import RetryConfig, retry_with_backoff

logger = structlog.get_logger(__name__)


class DatastoreUnavailableError(RuntimeError):
    """Raised when a datastore is used before connect() or after close()."""


class Database:
    """PostgreSQL connection pool."""

    name = "database"

    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        """
        Create the connection pool.

        Retries with exponential backoff so the service can start while the
        database container is still coming up.
        """
        if self.pool is not None:
            return

        settings = self.settings

        @retry_with_backoff(
            RetryConfig(max_attempts=settings.database_connect_retries, initial_delay=0.5, max_delay=10.0),
            retryable_exceptions=(OSError, asyncpg.CannotConnectNowError),
        )
        async def create_pool() -> asyncpg.Pool:
            return await asyncpg.create_pool(
                settings.database_dsn,
                min_size=settings.database_pool_size // 2 or 1,
                max_size=settings.database_pool_size + settings.database_max_overflow,
                command_timeout=settings.database_pool_timeout,
            )

        logger.info(
            "initializing_database_pool",
            host=settings.database_host,
            port=settings.database_port,
            database=settings.database_name,
            max_size=settings.database_pool_size + settings.database_max_overflow,
        )
        self.pool = await create_pool()

        async with self.pool.acquire() as conn:
            version = await conn.fetchval("SELECT version()")
            logger.info("database_connected", postgres_version=version)

    async def close(self) -> None:
        """Close the pool if it is open."""
        if self.pool is not None:
            logger.info("closing_database_pool")
            await self.pool.close()
            self.pool = None
            logger.info("database_pool_closed")

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise DatastoreUnavailableError("Database pool not initialized")
        return self.pool

    async def ping(self) -> None:
        """Round-trip a trivial query."""
        async with self._require_pool().acquire() as conn:
            await conn.fetchval("SELECT 1")

    def pool_stats(self) -> Tuple[int, int]:
        """Return (size, idle) of the pool; (0, 0) when not connected."""
        if self.pool is None:
            return 0, 0
        return self.pool.get_size(), self.pool.get_idle_size()


class Cache:
    """Redis client."""

    name = "cache"

    def __init__(self, settings: Settings):
        self.settings = settings
        self.client: Optional[aioredis.Redis] = None

    async def connect(self) -> None:
        """
        Create the client and verify the server answers.

        An unreachable cache is only fatal when ``cache_required`` is set;
        otherwise the service starts and reports itself degraded.
        """
        if self.client is not None:
            return

        logger.info(
            "initializing_cache",
            host=self.settings.redis_host,
            port=self.settings.redis_port,
            db=self.settings.redis_db,
        )
        self.client = aioredis.Redis.from_url(
            self.settings.redis_url,
            socket_connect_timeout=self.settings.health_check_timeout,
            socket_timeout=self.settings.health_check_timeout,
        )

        try:
            await self.client.ping()
            logger.info("cache_connected")
        except (aioredis.RedisError, OSError) as e:
            if self.settings.cache_required:
                logger.error("cache_connect_failed", error=str(e))
                raise
            logger.warning("cache_unreachable_at_startup", error=str(e))

    async def close(self) -> None:
        """Close the client if it is open."""
        if self.client is not None:
            await self.client.aclose()
            self.client = None
            logger.info("cache_closed")

    async def ping(self) -> None:
        """PING the server."""
        if self.client is None:
            raise DatastoreUnavailableError("Cache client not initialized")
        await self.client.ping()
