"""
Redis caching service for trip search results.

CACHING STRATEGY
================

What we cache:
  - Trip search responses (JSON-serialized)
  - Cache key pattern: "trips:search:{from}|{to}|{date}|{passengers}"

Invalidation strategy:
  - Every seat-count change (booking, cancellation, payment failure, hold
    expiry) and every trip created by an admin deletes all search keys
  - TTL-based expiry as safety net

What we never cache:
  - Trip detail / seat maps and anything read by the booking transaction;
    those always hit the database so a stale cache can never oversell

Redis is advisory: every failure is logged and the caller falls back to the
database.
"""

import json
from typing import Optional

import redis.asyncio as redis

from saharam.core.config import get_settings
from saharam.core.logging import get_logger
from saharam.core.metrics import record_cache_operation

logger = get_logger(__name__)
settings = get_settings()

SEARCH_KEY_PREFIX = "trips:search:"

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def make_search_key(from_city: str, to_city: str, date: str, passengers: int) -> str:
    return f"{SEARCH_KEY_PREFIX}{from_city.lower()}|{to_city.lower()}|{date}|{passengers}"


async def get_cached_search(key: str) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    try:
        data = await client.get(key)
        record_cache_operation("get", hit=bool(data))
        if data:
            return json.loads(data)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_search(key: str, data: dict) -> None:
    client = await get_redis()
    if not client:
        return

    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        record_cache_operation("set", hit=True)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_trip_cache() -> None:
    """Drop every cached search result; seat counts have changed."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{SEARCH_KEY_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.debug("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Get Redis cache statistics for monitoring."""
    client = await get_redis()
    if not client:
        return {"status": "disabled"}

    try:
        info = await client.info("stats")
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        return {
            "status": "connected",
            "hits": hits,
            "misses": misses,
            "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
        }
    except Exception as e:
        return {"status": "error", "error": str(e)}
