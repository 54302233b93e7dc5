"""
子操作结果缓存
将规划（Planning）和元素定位（Locate）的推理结果按指纹缓存到 Redis，
相同指令 + 相同页面状态时跳过推理调用
Redis 不可用时降级到内存存储
"""
import hashlib
import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
from loguru import logger

from config import Settings, get_settings


def fingerprint(
    kind: str,
    prompt: str,
    env_signature: str,
    options: Optional[Dict[str, Any]] = None,
) -> str:
    """
    计算缓存指纹

    Args:
        kind: 子操作类别（"plan" / "locate"）
        prompt: 指令或定位描述
        env_signature: 页面状态签名
        options: 影响推理结果的附加选项（如 deepThink）

    Returns:
        sha256 十六进制串，相同输入恒定
    """
    canonical = json.dumps(
        {"kind": kind, "prompt": prompt, "env": env_signature, "options": options or {}},
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class TaskCache:
    """
    子操作结果缓存

    值为推理结果的 to_dict()，命中后由调用方用 from_dict() 还原，
    保证命中与未命中返回相同的类型。
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.ttl = self.settings.task_cache_ttl
        self.key_prefix = self.settings.task_cache_key_prefix
        self._redis: Optional[aioredis.Redis] = None
        self._fallback: Dict[str, Dict[str, Any]] = {}
        self._init_redis()

    def _init_redis(self):
        """初始化 Redis 客户端（连接在首次使用时建立）"""
        if self.settings.redis_url:
            try:
                self._redis = aioredis.from_url(
                    self.settings.redis_url,
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                )
                logger.info("💾 [TaskCache] Redis client created")
            except Exception as e:
                logger.warning(f"⚠️ [TaskCache] Redis init failed: {e}, using fallback mode")
                self._redis = None
        else:
            logger.debug("💾 [TaskCache] redis_url not configured, using fallback mode")

    def _key(self, fp: str) -> str:
        return f"{self.key_prefix}:{fp}"

    async def get(self, fp: str) -> Optional[Dict[str, Any]]:
        """
        读取缓存

        Returns:
            缓存的结果字典，未命中返回 None
        """
        key = self._key(fp)

        if self._redis:
            try:
                data = await self._redis.get(key)
                if data:
                    logger.debug(f"💾 [TaskCache] HIT: {fp[:12]}")
                    return json.loads(data)
                logger.debug(f"💾 [TaskCache] MISS: {fp[:12]}")
                return None
            except Exception as e:
                logger.error(f"❌ [TaskCache] Redis get error: {e}")
                return self._fallback.get(key)

        value = self._fallback.get(key)
        logger.debug(f"💾 [TaskCache] {'HIT' if value is not None else 'MISS'}: {fp[:12]}")
        return value

    async def put(self, fp: str, value: Dict[str, Any]) -> None:
        key = self._key(fp)
        data = json.dumps(value, ensure_ascii=False)

        if self._redis:
            try:
                await self._redis.setex(key, self.ttl, data)
                return
            except Exception as e:
                logger.error(f"❌ [TaskCache] Redis set error: {e}")
        # 存储 JSON 往返后的副本，与 Redis 模式返回的值一致
        self._fallback[key] = json.loads(data)

    async def clear(self) -> None:
        """清空内存存储（Redis 中的条目依赖 TTL 过期）"""
        self._fallback.clear()

    async def health_check(self) -> dict:
        """健康检查"""
        status = {
            "redis_available": False,
            "mode": "fallback",
            "fallback_count": len(self._fallback),
        }

        if self._redis:
            try:
                await self._redis.ping()
                status["redis_available"] = True
                status["mode"] = "redis"
            except Exception as e:
                status["error"] = str(e)

        return status

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()


def create_task_cache(settings: Optional[Settings] = None) -> Optional[TaskCache]:
    """按配置创建缓存；task_cache_enabled 为 False 时返回 None"""
    settings = settings or get_settings()
    if not settings.task_cache_enabled:
        logger.debug("💾 [TaskCache] task_cache_enabled=False，不使用缓存")
        return None
    return TaskCache(settings)
