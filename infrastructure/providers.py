"""
基础设施装配：API 依赖与 Celery 任务共用的构造函数
"""
from __future__ import annotations

from typing import Callable

from application.ports.notifier import NullNotifier, WebhookNotifier
from core.config import settings
from core.logging_config import get_logger
from domain.idempotency.store import IdempotencyStore
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.idempotency_repository import SQLAlchemyIdempotencyStore
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


logger = get_logger(__name__)


def uow_factory(**kwargs) -> SQLAlchemyUnitOfWork:
    return SQLAlchemyUnitOfWork(session_factory=AsyncSessionLocal, **kwargs)


async def build_idempotency_store(session_factory: Callable = AsyncSessionLocal) -> IdempotencyStore:
    """根据 IDEMPOTENCY__BACKEND 选择实现"""
    backend = settings.idempotency.backend.lower()
    if backend == "redis":
        from infrastructure.cache.idempotency_store import RedisIdempotencyStore
        from infrastructure.cache.redis_cache import get_redis_cache

        return RedisIdempotencyStore(await get_redis_cache())
    if backend != "database":
        raise ValueError(f"Unknown idempotency backend: {settings.idempotency.backend}")
    return SQLAlchemyIdempotencyStore(session_factory)


def build_notifier() -> WebhookNotifier:
    """配置了 Celery broker 时立即调度投递，否则仅依赖定时 drain"""
    if settings.celery.broker_url or settings.redis.url:
        from infrastructure.tasks.utils.dispatcher import CeleryWebhookNotifier

        return CeleryWebhookNotifier()
    logger.info("webhook_notifier_disabled", reason="no broker configured")
    return NullNotifier()
