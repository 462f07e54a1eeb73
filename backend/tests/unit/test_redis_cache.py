"""
Tests for the Redis JSON cache used by geo enrichment.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.db.redis import RedisClient


@pytest.fixture
def connection():
    conn = MagicMock()
    conn.get = AsyncMock(return_value=None)
    conn.set = AsyncMock()
    conn.ping = AsyncMock(return_value=True)
    conn.aclose = AsyncMock()
    with patch("app.db.redis.aioredis.from_url", return_value=conn) as from_url:
        conn.from_url = from_url
        yield conn


class TestRedisClient:
    """Test cases for RedisClient."""

    @pytest.mark.asyncio
    async def test_set_json_serializes_with_ttl(self, connection):
        cache = RedisClient("redis://cache.test:6379/0")

        await cache.set_json("geo:ip:8.8.8.8", {"country": "United States", "city": None}, ex=3600)

        connection.set.assert_awaited_once_with(
            "geo:ip:8.8.8.8", '{"country": "United States", "city": null}', ex=3600
        )
        connection.from_url.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_json_miss_and_hit(self, connection):
        cache = RedisClient("redis://cache.test:6379/0")

        assert await cache.get_json("geo:ip:1.1.1.1") is None

        connection.get.return_value = '{"country": "Australia", "city": "Sydney"}'
        assert await cache.get_json("geo:ip:1.1.1.1") == {"country": "Australia", "city": "Sydney"}
        # One lazily created connection for both calls
        assert connection.from_url.call_count == 1

    @pytest.mark.asyncio
    async def test_ping_failure_is_false(self, connection):
        connection.ping.side_effect = ConnectionError("refused")

        assert await RedisClient("redis://cache.test:6379/0").ping() is False

    @pytest.mark.asyncio
    async def test_close_resets_connection(self, connection):
        cache = RedisClient("redis://cache.test:6379/0")
        await cache.ping()

        await cache.close()
        await cache.ping()

        connection.aclose.assert_awaited_once()
        assert connection.from_url.call_count == 2
