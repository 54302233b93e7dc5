"""
TaskCache 单元测试
"""
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

# 确保项目根目录在 sys.path 中
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))


class TestFingerprint:
    """测试缓存指纹"""

    def test_deterministic(self):
        from task_engine import fingerprint
        assert fingerprint("locate", "login", "sig") == fingerprint("locate", "login", "sig")

    def test_inputs_change_key(self):
        from task_engine import fingerprint
        base = fingerprint("locate", "login", "sig")
        assert fingerprint("plan", "login", "sig") != base
        assert fingerprint("locate", "logout", "sig") != base
        assert fingerprint("locate", "login", "other") != base
        assert fingerprint("locate", "login", "sig", {"deepThink": True}) != base
        assert fingerprint("locate", "login", "sig", {}) == base

    def test_snapshot_signature(self):
        from task_engine import PageSnapshot
        a = PageSnapshot(url="u", content="c", elements=[{"id": "x", "center": [1, 2]}])
        assert a.signature() == PageSnapshot(url="u", content="c", elements=[{"center": [1, 2], "id": "x"}]).signature()
        assert a.signature() != PageSnapshot(url="u", content="changed", elements=a.elements).signature()
        assert a.signature() != PageSnapshot(url="u", content="c", elements=[{"id": "x", "center": [9, 9]}]).signature()


class TestFallbackMode:
    """测试 Redis 未配置时的内存存储"""

    @pytest.mark.asyncio
    async def test_get_put(self, test_settings):
        from task_engine import TaskCache
        cache = TaskCache(test_settings)
        assert await cache.get("fp") is None
        await cache.put("fp", {"element": {"id": "a"}})
        assert await cache.get("fp") == {"element": {"id": "a"}}

    @pytest.mark.asyncio
    async def test_stored_value_is_copy(self, test_settings):
        from task_engine import TaskCache
        cache = TaskCache(test_settings)
        value = {"actions": []}
        await cache.put("fp", value)
        value["actions"].append("mutated")
        assert await cache.get("fp") == {"actions": []}

    @pytest.mark.asyncio
    async def test_health_check(self, test_settings):
        from task_engine import TaskCache
        cache = TaskCache(test_settings)
        await cache.put("fp", {})
        status = await cache.health_check()
        assert status["mode"] == "fallback"
        assert status["redis_available"] is False
        assert status["fallback_count"] == 1

    @pytest.mark.asyncio
    async def test_clear(self, test_settings):
        from task_engine import TaskCache
        cache = TaskCache(test_settings)
        await cache.put("fp", {"a": 1})
        await cache.clear()
        assert await cache.get("fp") is None

    def test_create_disabled(self, test_settings):
        from task_engine import create_task_cache
        settings = test_settings.model_copy(update={"task_cache_enabled": False})
        assert create_task_cache(settings) is None

    def test_create_enabled(self, test_settings):
        from task_engine import TaskCache, create_task_cache
        assert isinstance(create_task_cache(test_settings), TaskCache)


class TestRedisMode:
    """测试 Redis 模式（mock redis.asyncio 客户端）"""

    def _cache(self, test_settings, client):
        from task_engine import TaskCache
        settings = test_settings.model_copy(update={"redis_url": "redis://localhost:6379/0"})
        with patch("task_engine.cache.aioredis.from_url", return_value=client):
            return TaskCache(settings)

    @pytest.mark.asyncio
    async def test_put_uses_ttl_and_prefix(self, test_settings):
        client = MagicMock()
        client.setex = AsyncMock()
        cache = self._cache(test_settings, client)
        await cache.put("abc", {"x": 1})
        client.setex.assert_awaited_once_with("task_cache:abc", 86400, '{"x": 1}')

    @pytest.mark.asyncio
    async def test_get_hit(self, test_settings):
        client = MagicMock()
        client.get = AsyncMock(return_value='{"x": 1}')
        cache = self._cache(test_settings, client)
        assert await cache.get("abc") == {"x": 1}

    @pytest.mark.asyncio
    async def test_redis_errors_degrade_to_fallback(self, test_settings):
        client = MagicMock()
        client.setex = AsyncMock(side_effect=ConnectionError("redis down"))
        client.get = AsyncMock(side_effect=ConnectionError("redis down"))
        cache = self._cache(test_settings, client)

        await cache.put("abc", {"x": 1})
        assert await cache.get("abc") == {"x": 1}

    @pytest.mark.asyncio
    async def test_health_check_redis(self, test_settings):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        cache = self._cache(test_settings, client)
        status = await cache.health_check()
        assert status["mode"] == "redis"
        assert status["redis_available"] is True
