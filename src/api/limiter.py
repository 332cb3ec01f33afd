# coding: utf-8
"""
Per-IP request throttling (slowapi)

The default limit applies to every endpoint through SlowAPIMiddleware;
routes may add stricter limits with @limiter.limit(...).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from config.config import API_RATE_LIMIT


# In-memory storage: limits are per API process
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[API_RATE_LIMIT],
    storage_uri="memory://",
)
