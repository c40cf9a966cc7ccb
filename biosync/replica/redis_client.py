"""
Redis client with graceful "unavailable" signalling.

Connection management:
- Lazy initialization (connects on first use)
- Auto-reconnect on connection loss
- After a failed connect, retries at most every RETRY_AFTER_SECONDS so a
  sync tick never hammers a dead server

Environment variables:
- BIOSYNC_REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)
- BIOSYNC_REDIS_ENABLED: Set to "0" to disable Redis entirely
"""

from __future__ import annotations

import os
import time
from typing import Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from biosync.logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
RETRY_AFTER_SECONDS = 5.0

_redis_client: Optional[Any] = None
_unavailable_since: Optional[float] = None


def _redis_enabled() -> bool:
    return os.getenv("BIOSYNC_REDIS_ENABLED", "1").lower() not in ("0", "false", "no")


async def get_redis() -> Optional[Any]:
    """
    Get async Redis client instance.

    Returns:
        Redis client if reachable, None if Redis is disabled or unavailable.
    """
    global _redis_client, _unavailable_since

    if not _redis_enabled():
        return None

    # Recently failed: don't retry yet
    if _unavailable_since is not None and time.monotonic() - _unavailable_since < RETRY_AFTER_SECONDS:
        return None

    if _redis_client is not None:
        try:
            await _redis_client.ping()
            return _redis_client
        except (RedisError, OSError):
            # Connection lost, try to reconnect
            _redis_client = None

    redis_url = os.getenv("BIOSYNC_REDIS_URL", DEFAULT_REDIS_URL)
    try:
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2.0,
            socket_timeout=2.0,
        )
        await client.ping()
    except (RedisError, OSError) as e:
        logger.warning(f"Redis unavailable ({redis_url}): {e}")
        _unavailable_since = time.monotonic()
        _redis_client = None
        return None

    _redis_client = client
    _unavailable_since = None
    logger.info(f"Redis connected: {redis_url}")
    return _redis_client


def is_redis_available() -> bool:
    """
    Cached availability status (non-blocking). Optimistic until a connect
    attempt has failed.
    """
    if not _redis_enabled():
        return False
    return _unavailable_since is None


async def close_redis() -> None:
    """Close Redis connection (call on shutdown)."""
    global _redis_client
    if _redis_client is not None:
        try:
            await _redis_client.aclose()
        except (RedisError, OSError) as e:
            logger.debug(f"Redis close failed: {e}")
        _redis_client = None


def reset_redis_state() -> None:
    """Reset Redis state (for testing)."""
    global _redis_client, _unavailable_since
    _redis_client = None
    _unavailable_since = None
