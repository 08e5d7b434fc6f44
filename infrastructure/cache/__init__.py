"""Redis 支撑的共享状态：幂等记录缓存"""
from .redis_cache import RedisCache, get_redis_cache, init_redis_cache, shutdown_redis_cache
from .idempotency_store import RedisIdempotencyStore

__all__ = [
    "RedisCache",
    "RedisIdempotencyStore",
    "get_redis_cache",
    "init_redis_cache",
    "shutdown_redis_cache",
]
