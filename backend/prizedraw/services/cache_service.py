"""
Redis connection and caching for competition listings.

CACHING STRATEGY
================

What we cache:
  - Competition listing responses (paginated, JSON-serialized)
  - Cache key pattern: "competitions:list:page={page}&size={size}&status={status}"

Invalidation strategy:
  - On competition creation or status change: delete all listing keys
  - TTL-based expiry as safety net (REDIS_CACHE_TTL)

  All listing keys share the "competitions:list:" prefix so they can be
  found with SCAN and deleted.

Why NOT cache ticket availability:
  - Availability changes on every reservation and expiry
  - Reservation status must reflect the Ticket Pool, not a stale copy

The same client is shared with RedisReservationStore.
"""

import json
from typing import Optional

import redis.asyncio as redis
from prizedraw.core.config import get_settings
from prizedraw.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None

LIST_KEY_PREFIX = "competitions:list:"


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or unreachable."""
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


def _make_list_key(page: int, page_size: int, status: Optional[str]) -> str:
    return f"{LIST_KEY_PREFIX}page={page}&size={page_size}&status={status or 'all'}"


async def get_cached_competitions(page: int, page_size: int, status: Optional[str]) -> Optional[dict]:
    client = await get_redis()
    if not client:
        return None

    key = _make_list_key(page, page_size, status)
    try:
        data = await client.get(key)
        if data:
            logger.debug("cache_hit", key=key)
            return json.loads(data)
        logger.debug("cache_miss", key=key)
    except Exception as e:
        logger.error("cache_get_error", key=key, error=str(e))

    return None


async def set_cached_competitions(
    page: int,
    page_size: int,
    status: Optional[str],
    data: dict,
) -> None:
    client = await get_redis()
    if not client:
        return

    key = _make_list_key(page, page_size, status)
    try:
        await client.setex(key, settings.REDIS_CACHE_TTL, json.dumps(data, default=str))
        logger.debug("cache_set", key=key, ttl=settings.REDIS_CACHE_TTL)
    except Exception as e:
        logger.error("cache_set_error", key=key, error=str(e))


async def invalidate_competition_cache() -> None:
    """Drop every cached competition listing page."""
    client = await get_redis()
    if not client:
        return

    try:
        deleted = 0
        async for key in client.scan_iter(match=f"{LIST_KEY_PREFIX}*", count=100):
            await client.delete(key)
            deleted += 1
        logger.info("cache_invalidated", keys_deleted=deleted)
    except Exception as e:
        logger.error("cache_invalidation_error", error=str(e))


async def get_cache_stats() -> dict:
    """Redis statistics for the health endpoint."""
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
