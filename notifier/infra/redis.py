"""
Redis Document Access

JSON documents kept under ``notifier:v1:`` keys. The Redis credential
backend stores the pairing blob here and the readiness check pings the
same client.

The client is built lazily and connects on first command; connection
errors surface as ``RedisError`` to the caller.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from notifier.config import get_settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "notifier:v1:"

_client: Optional[redis.Redis] = None


def namespaced(key: str) -> str:
    """Prefix a key with the application namespace."""
    return f"{KEY_PREFIX}{key}"


def get_redis() -> redis.Redis:
    """Return the shared client, creating it on first use."""
    global _client
    if _client is None:
        _client = redis.from_url(
            get_settings().redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5.0,
            socket_timeout=5.0,
            retry=Retry(ExponentialBackoff(cap=2.0), retries=3),
            retry_on_error=[ConnectionError, TimeoutError],
        )
    return _client


async def read_json(key: str) -> Optional[Any]:
    """Load the document stored under ``key``.

    Returns:
        Decoded value, or None when the key is absent

    Raises:
        RedisError: Redis unreachable or command failed
        ValueError: Stored value is not valid JSON
    """
    data = await get_redis().get(namespaced(key))
    if not data:
        return None
    return json.loads(data)


async def write_json(key: str, value: Any) -> None:
    """Store ``value`` as JSON under ``key``, replacing any previous value."""
    await get_redis().set(namespaced(key), json.dumps(value))


async def delete_key(key: str) -> bool:
    """Delete ``key``. Returns True if something was removed."""
    removed = await get_redis().delete(namespaced(key))
    return bool(removed)


async def check_redis_health() -> bool:
    """Ping Redis for readiness checks."""
    try:
        return bool(await get_redis().ping())
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False


async def close_redis() -> None:
    """Close the shared client if it was created."""
    global _client
    client, _client = _client, None
    if client is None:
        return
    try:
        await client.aclose()
        logger.info("Redis connection closed")
    except RedisError as e:
        logger.error(f"Error closing Redis connection: {e}")
