"""
基于 Redis 的幂等存储（IDEMPOTENCY__BACKEND=redis）

SET NX EX 原子占用；过期由 Redis 自身完成。pending 记录的 TTL 为租约时长，
执行方崩溃后租约到期即可被重新占用。
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from core.logging_config import get_logger
from domain.idempotency.entity import IdempotencyRecord, IdempotencyState
from domain.idempotency.store import IdempotencyStore
from .redis_cache import RedisCache


logger = get_logger(__name__)

KEY_PREFIX = "idempotency"


class RedisIdempotencyStore(IdempotencyStore):

    def __init__(self, cache: RedisCache):
        self._cache = cache

    @staticmethod
    def _key(key: str) -> str:
        return f"{KEY_PREFIX}:{key}"

    async def claim(
        self,
        key: str,
        fingerprint: str,
        ttl_seconds: int,
        lease_seconds: Optional[int] = None,
    ) -> bool:
        now = datetime.now(timezone.utc)
        record = {
            "key": key,
            "fingerprint": fingerprint,
            "state": IdempotencyState.PENDING.value,
            "created_at": now.isoformat(),
            "expires_at": (now + timedelta(seconds=ttl_seconds)).isoformat(),
        }
        # pending 记录只存活一个租约；complete 时再把过期时间延长到 expires_at
        lease = min(lease_seconds, ttl_seconds) if lease_seconds else ttl_seconds
        return await self._cache.set_if_absent(self._key(key), record, lease)

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        data = await self._cache.get(self._key(key))
        if not data:
            return None
        record = IdempotencyRecord(
            key=data["key"],
            fingerprint=data["fingerprint"],
            state=IdempotencyState(data["state"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            flow_id=data.get("flow_id"),
            status_code=data.get("status_code"),
            response_body=data.get("response_body"),
        )
        return None if record.is_expired() else record

    async def complete(
        self,
        key: str,
        *,
        status_code: int,
        response_body: str,
        flow_id: Optional[str] = None,
    ) -> None:
        data = await self._cache.get(self._key(key))
        if not data:
            logger.warning("idempotency_complete_missing", key=key)
            return
        remaining = datetime.fromisoformat(data["expires_at"]) - datetime.now(timezone.utc)
        data.update(
            state=IdempotencyState.COMPLETED.value,
            status_code=status_code,
            response_body=response_body,
            flow_id=flow_id,
        )
        await self._cache.replace(self._key(key), data, ttl=max(int(remaining.total_seconds()), 1))

    async def release(self, key: str) -> None:
        await self._cache.delete(self._key(key))

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        return 0
