# coding: utf-8
"""
Per-user mutual exclusion for the credit gate

Only the requesting user's lock is held; requests of other users never wait.
Two backends share one interface:
- UserLockManager: asyncio.Lock per user id (single API process)
- RedisUserLockManager: Redis lock per user id (several workers), degrading to
  the in-process backend when Redis is unavailable
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from loguru import logger
from redis.exceptions import LockError, RedisError

from config.config import GENERATION_LOCK_TIMEOUT
from src.cache.redis_manager import RedisManager, get_redis_manager
from src.core.exceptions import ConcurrencyConflict


class UserLockManager:
    """
    In-process lock registry keyed by user id

    Entries are dropped once no coroutine holds or waits for them.
    """

    def __init__(self, timeout: float = GENERATION_LOCK_TIMEOUT):
        self.timeout = timeout
        self._locks: Dict[int, asyncio.Lock] = {}
        self._refs: Dict[int, int] = {}

    @asynccontextmanager
    async def acquire(self, user_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._refs[user_id] = self._refs.get(user_id, 0) + 1
        try:
            try:
                async with asyncio.timeout(self.timeout):
                    await lock.acquire()
            except TimeoutError:
                logger.warning(f"[LOCK] Timeout waiting for user {user_id} lock ({self.timeout}s)")
                raise ConcurrencyConflict(
                    "Another signal request is still being processed, please retry"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            self._refs[user_id] -= 1
            if self._refs[user_id] == 0:
                del self._refs[user_id]
                self._locks.pop(user_id, None)

    def active_locks(self) -> int:
        """Number of users with a held or awaited lock"""
        return len(self._locks)


class RedisUserLockManager:
    """
    Redis lock per user id, shared by all API workers

    Falls back to in-process locks when Redis is not available.
    """

    KEY_PREFIX = "ntl:lock:signal-generation:user"

    def __init__(
        self,
        redis_manager: Optional[RedisManager] = None,
        timeout: float = GENERATION_LOCK_TIMEOUT,
        lock_ttl: Optional[float] = None,
    ):
        self.redis_manager = redis_manager or get_redis_manager()
        self.timeout = timeout
        # Expiry must outlive a slow generation call
        self.lock_ttl = lock_ttl or timeout * 4
        self._fallback = UserLockManager(timeout=timeout)

    @asynccontextmanager
    async def acquire(self, user_id: int) -> AsyncIterator[None]:
        if not self.redis_manager.is_available():
            async with self._fallback.acquire(user_id):
                yield
            return

        lock = self.redis_manager.lock(
            f"{self.KEY_PREFIX}:{user_id}",
            timeout=self.lock_ttl,
            blocking_timeout=self.timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error(f"[LOCK] Redis error acquiring lock for user {user_id}: {e}")
            raise ConcurrencyConflict("Lock backend unavailable, please retry") from e

        if not acquired:
            logger.warning(f"[LOCK] Timeout waiting for user {user_id} redis lock ({self.timeout}s)")
            raise ConcurrencyConflict(
                "Another signal request is still being processed, please retry"
            )

        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Expired while held; nothing left to release
                logger.warning(f"[LOCK] Lock for user {user_id} expired before release: {e}")


def create_lock_manager(redis_manager: Optional[RedisManager] = None):
    """
    Pick lock backend for the current configuration

    Returns:
        RedisUserLockManager when Redis is enabled and reachable, else UserLockManager
    """
    redis_manager = redis_manager or get_redis_manager()
    if redis_manager.is_available():
        logger.info("[LOCK] Using Redis per-user locks")
        return RedisUserLockManager(redis_manager)

    logger.info("[LOCK] Using in-process per-user locks")
    return UserLockManager()
