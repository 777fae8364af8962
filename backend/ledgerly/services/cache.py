"""Lightweight Redis JSON cache.

Usage guidelines:
- Cache only data that is safe to share (category lookups, reference data)
  or namespace keys with the user id.
- Every call is best-effort: when Redis is down the caller simply falls
  back to the database.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from redis import asyncio as aioredis

from ledgerly.core.config import settings

logger = logging.getLogger(__name__)

_redis_client = None
_lock = asyncio.Lock()


async def get_redis():
    """Return a singleton async Redis client or None if unavailable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    async with _lock:
        if _redis_client is not None:
            return _redis_client
        try:
            _redis_client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis client unavailable: %s", exc)
            _redis_client = None
    return _redis_client


def set_redis(client) -> None:
    """Swap the shared client (tests pass a fake, ``None`` resets it)."""
    global _redis_client
    _redis_client = client


async def cache_get_json(key: str) -> Optional[Any]:
    client = await get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is None:
            return None
        return json.loads(raw)
    except Exception as exc:
        logger.debug("cache get %s failed: %s", key, exc)
        return None


async def cache_set_json(key: str, value: Any, ttl: int) -> None:
    client = await get_redis()
    if not client:
        return
    try:
        await client.set(key, json.dumps(value, default=str), ex=ttl)
    except Exception as exc:
        logger.debug("cache set %s failed: %s", key, exc)


async def cache_delete(key: str) -> None:
    client = await get_redis()
    if not client:
        return
    try:
        await client.delete(key)
    except Exception as exc:
        logger.debug("cache delete %s failed: %s", key, exc)


CATEGORY_CACHE_KEY = "ledgerly:categories:v1"
