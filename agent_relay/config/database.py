"""
Database Configuration
=====================

Redis connection management for the conversation store.
Provides the connection pool and async Redis clients.
"""

from typing import Optional
import redis.asyncio as redis  # type: ignore[import-untyped]
from redis.asyncio import ConnectionPool  # type: ignore[import-untyped]

from .settings import get_settings
from .logging import get_logger

logger = get_logger(__name__)


class DatabaseManager:
    """Connection manager for Redis."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self._redis_pool: Optional[ConnectionPool] = None  # type: ignore[type-arg]

    @property
    def initialized(self) -> bool:
        return self._redis_pool is not None

    async def initialize(self) -> None:
        """Initialize database connections."""
        await self._setup_redis()
        logger.info("Database connections initialized")

    async def close(self) -> None:
        """Close database connections."""
        if self._redis_pool:  # type: ignore[misc]
            await self._redis_pool.disconnect()  # type: ignore[attr-defined]
            self._redis_pool = None
            logger.info("Redis connection closed")

    async def _setup_redis(self) -> None:
        """Setup Redis connection pool."""
        try:
            self._redis_pool = ConnectionPool.from_url(  # type: ignore[attr-defined]
                self.settings.redis_url,
                max_connections=self.settings.redis_max_connections,
                retry_on_timeout=True,
                decode_responses=True,
            )

            # Test connection
            async with redis.Redis(connection_pool=self._redis_pool) as client:  # type: ignore[attr-defined]
                await client.ping()  # type: ignore[attr-defined]

            logger.info("Redis connection established", url=self.settings.redis_url)
        except Exception as e:
            logger.error("Failed to connect to Redis", error=str(e))
            raise

    def get_redis_client(self) -> redis.Redis:  # type: ignore[type-arg]
        """Get Redis client instance."""
        if not self._redis_pool:  # type: ignore[misc]
            raise RuntimeError("Redis not initialized")
        return redis.Redis(connection_pool=self._redis_pool)  # type: ignore[attr-defined]


# Global database manager instance
db_manager = DatabaseManager()


def get_redis_client() -> redis.Redis:  # type: ignore[type-arg]
    """
    Get Redis client instance.

    Returns:
        Redis client
    """
    return db_manager.get_redis_client()  # type: ignore[misc]


async def initialize_databases() -> None:
    """Initialize all database connections."""
    await db_manager.initialize()


async def close_databases() -> None:
    """Close all database connections."""
    await db_manager.close()


async def check_redis_health() -> bool:
    """Check Redis connection health."""
    if not db_manager.initialized:
        return False
    try:
        await get_redis_client().ping()  # type: ignore[attr-defined]
        return True
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        return False
