"""Redis缓存实现"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from redis import asyncio as aioredis

from core.config import settings


def _json_dumps(value: Any) -> str:
    """将任意对象序列化为JSON字符串"""
    return json.dumps(value, default=str)


def _json_loads(value: Optional[str]) -> Any:
    """将JSON字符串反序列化为对象"""
    if value is None:
        return None
    return json.loads(value)


class RedisCache:
    """基于Redis的命名空间 JSON 缓存"""

    def __init__(self, client: aioredis.Redis, namespace: str = "") -> None:
        self._client = client
        self._namespace = namespace.strip(":")

    def _format_key(self, key: str) -> str:
        if not self._namespace:
            return key
        return f"{self._namespace}:{key}"

    async def get(self, key: str) -> Any:
        value = await self._client.get(self._format_key(key))
        if value is None:
            return None
        return _json_loads(value)

    async def set_if_absent(self, key: str, value: Any, ttl: int) -> bool:
        """SET NX EX：键不存在时写入并返回 True（原子操作）"""
        result = await self._client.set(self._format_key(key), _json_dumps(value), ex=ttl, nx=True)
        return bool(result)

    async def replace(self, key: str, value: Any, ttl: int) -> bool:
        """SET XX EX：只覆盖已存在的键，并重设过期时间"""
        result = await self._client.set(self._format_key(key), _json_dumps(value), ex=ttl, xx=True)
        return bool(result)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self._format_key(key)))


_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisCache] = None
_lock = asyncio.Lock()


async def init_redis_cache(namespace: Optional[str] = None) -> RedisCache:
    """初始化Redis缓存实例"""
    global _redis_client, _cache_instance

    if _cache_instance is not None:
        return _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance

        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis缓存")

        client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
        )

        _redis_client = client
        _cache_instance = RedisCache(
            client=client,
            namespace=namespace or settings.redis.namespace,
        )
        return _cache_instance


async def get_redis_cache() -> RedisCache:
    """获取全局Redis缓存实例"""
    if _cache_instance is None:
        return await init_redis_cache()
    return _cache_instance


async def shutdown_redis_cache() -> None:
    """关闭Redis连接"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        _cache_instance = None
