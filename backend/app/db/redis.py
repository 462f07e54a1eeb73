"""
Redis-backed JSON cache for geo lookups.

Only JSON documents are stored, always with a TTL. Errors propagate; the geo
service treats them as cache misses.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis

from app.core.config import settings


class RedisClient:
    """Lazily connected JSON cache."""

    def __init__(self, url: Optional[str] = None):
        self._url = url
        self._client: Optional[aioredis.Redis] = None

    def _connection(self) -> aioredis.Redis:
        if self._client is None:
            # Short socket timeouts keep a dead cache from eating the request deadline
            self._client = aioredis.from_url(
                self._url or settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._client

    async def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        raw = await self._connection().get(key)
        return json.loads(raw) if raw else None

    async def set_json(self, key: str, value: Dict[str, Any], ex: int) -> None:
        await self._connection().set(key, json.dumps(value), ex=ex)

    async def ping(self) -> bool:
        """True when the cache answers; used by the health check."""
        try:
            return bool(await self._connection().ping())
        except Exception:
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Singleton instance
redis_client = RedisClient()
