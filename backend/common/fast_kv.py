"""
Redis-backed key-value cache with per-key expiry.

Used for OTP fast-path codes and session-token pinning. Every call goes
through a client configured with socket timeouts, and Redis I/O failures are
surfaced as TransientStoreError rather than being mistaken for a miss.
"""

import logging
from datetime import timedelta
from typing import Optional, Union

import redis
from django.conf import settings

from .exceptions import translate_store_errors

logger = logging.getLogger(__name__)

Ttl = Union[int, float, timedelta]


# ---------------------- Redis Connection ----------------------

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> redis.Redis:
    """Get the shared Redis client (one connection pool per process)."""
    global _redis_client
    if _redis_client is None:
        timeout = getattr(settings, "REDIS_SOCKET_TIMEOUT", 2.0)
        _redis_client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
    return _redis_client


def _ttl_seconds(ttl: Ttl) -> int:
    if isinstance(ttl, timedelta):
        ttl = ttl.total_seconds()
    seconds = int(ttl)
    if seconds <= 0:
        raise ValueError("ttl must be positive")
    return seconds


class FastKV:
    """Thin set/get/delete wrapper over Redis strings."""

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self._redis = redis_client or get_redis_client()

    @translate_store_errors("fast kv set")
    def set(self, key: str, value: str, ttl: Ttl) -> None:
        self._redis.set(key, value, ex=_ttl_seconds(ttl))

    @translate_store_errors("fast kv get")
    def get(self, key: str) -> Optional[str]:
        return self._redis.get(key)

    @translate_store_errors("fast kv delete")
    def delete(self, key: str) -> bool:
        """Delete a key. Returns True only for the caller that removed it."""
        return bool(self._redis.delete(key))
