# coding: utf-8
"""
Cache module for Redis integration

Provides the Redis connection and per-user locks for signal generation.
"""

from src.cache.redis_manager import RedisManager, get_redis_manager
from src.cache.user_locks import UserLockManager, RedisUserLockManager, create_lock_manager

__all__ = [
    "RedisManager",
    "get_redis_manager",
    "UserLockManager",
    "RedisUserLockManager",
    "create_lock_manager",
]
