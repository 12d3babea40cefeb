"""Redis client for the applied-event hint cache

The cache only short-circuits redeliveries of events already applied; the
``payment_events`` table stays the source of truth, so every failure here is
logged and treated as a cache miss.
"""
import logging
from typing import Optional

import redis

from paddock.core.config import settings

logger = logging.getLogger(__name__)

# Lazy initialization - no connection at import time
_client = None

APPLIED_EVENT_PREFIX = "paddock:applied_event:"


def get_redis_client() -> Optional[redis.Redis]:
    """Get or create Redis client (lazy initialization)

    Returns None when REDIS_URL is empty, which disables the cache.
    """
    global _client
    if not settings.REDIS_URL:
        return None
    if _client is None:
        _client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.STORE_TIMEOUT_SECONDS,
            socket_connect_timeout=settings.STORE_TIMEOUT_SECONDS,
        )
    return _client


def is_event_cached_as_applied(event_id: str) -> bool:
    client = get_redis_client()
    if client is None:
        return False
    try:
        return client.exists(f"{APPLIED_EVENT_PREFIX}{event_id}") == 1
    except redis.RedisError as e:
        logger.warning(f"Applied-event cache lookup failed for {event_id}: {e}")
        return False


def cache_event_as_applied(event_id: str) -> None:
    client = get_redis_client()
    if client is None:
        return
    try:
        client.setex(f"{APPLIED_EVENT_PREFIX}{event_id}", settings.APPLIED_EVENT_CACHE_TTL, "1")
    except redis.RedisError as e:
        logger.warning(f"Applied-event cache write failed for {event_id}: {e}")


def ping() -> bool:
    client = get_redis_client()
    if client is None:
        return False
    try:
        return bool(client.ping())
    except redis.RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return False
