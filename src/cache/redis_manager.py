# coding: utf-8
"""
Redis Manager for distributed per-user locks

Provides async Redis client with connection pooling and graceful degradation:
when Redis is disabled or unreachable, callers fall back to in-process locks.
"""
from typing import Optional

from redis.asyncio import Redis, ConnectionPool
from redis.asyncio.lock import Lock
from redis.exceptions import ConnectionError as RedisConnectionError
from loguru import logger

from config.config import REDIS_URL, REDIS_LOCKS_ENABLED


REDIS_MAX_CONNECTIONS = 20
REDIS_SOCKET_TIMEOUT = 5.0
REDIS_SOCKET_CONNECT_TIMEOUT = 5.0


class RedisManager:
    """
    Redis connection manager with connection pooling

    Features:
    - Async Redis client
    - Connection pooling
    - Graceful degradation (works without Redis)
    - Named locks with expiry

    Usage:
        >>> redis_mgr = RedisManager()
        >>> await redis_mgr.initialize()
        >>> async with redis_mgr.lock("ntl:lock:user:1", timeout=30, blocking_timeout=5):
        ...     ...
        >>> await redis_mgr.close()
    """

    def __init__(self, url: str = REDIS_URL, enabled: bool = REDIS_LOCKS_ENABLED):
        """Initialize Redis manager"""
        self._url = url
        self._enabled = enabled
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_available = False

    async def initialize(self) -> bool:
        """
        Initialize Redis connection pool

        Returns:
            True if Redis is available, False otherwise

        Note:
            Failures are gracefully handled - the API works without Redis
        """
        if not self._enabled:
            logger.info("Redis locks are disabled in configuration")
            return False

        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=REDIS_MAX_CONNECTIONS,
                decode_responses=True,
                socket_connect_timeout=REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=REDIS_SOCKET_TIMEOUT,
            )
            self._client = Redis(connection_pool=self._pool)

            # Test connection
            await self._client.ping()

            self._is_available = True
            logger.info(f"Redis initialized successfully (max_connections={REDIS_MAX_CONNECTIONS})")
            return True

        except RedisConnectionError as e:
            logger.warning(f"Redis connection failed: {e}. Falling back to in-process locks.")
            self._is_available = False
            return False

        except Exception as e:
            logger.error(f"Unexpected error initializing Redis: {e}")
            self._is_available = False
            return False

    async def close(self):
        """Close Redis connections gracefully"""
        if self._client:
            try:
                await self._client.aclose()
                logger.info("Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis connection: {e}")

        if self._pool:
            try:
                await self._pool.aclose()
                logger.debug("Redis connection pool closed")
            except Exception as e:
                logger.error(f"Error closing Redis pool: {e}")

        self._client = None
        self._pool = None
        self._is_available = False

    def lock(self, name: str, timeout: float, blocking_timeout: float) -> Lock:
        """
        Create a named Redis lock

        Args:
            name: Lock key
            timeout: Lock expiry in seconds (released automatically if holder dies)
            blocking_timeout: Max seconds to wait for acquisition

        Returns:
            redis.asyncio Lock (use as async context manager)
        """
        if not self._client:
            raise RuntimeError("Redis is not initialized")
        return self._client.lock(name, timeout=timeout, blocking_timeout=blocking_timeout)

    def is_available(self) -> bool:
        """Check if Redis is available"""
        return self._is_available


# Global Redis manager instance
_redis_manager: Optional[RedisManager] = None


def get_redis_manager() -> RedisManager:
    """
    Get global Redis manager instance (singleton)

    Returns:
        RedisManager instance
    """
    global _redis_manager
    if _redis_manager is None:
        _redis_manager = RedisManager()
    return _redis_manager
