"""
幂等存储接口

所有实现必须保证 claim 是原子的"不存在则插入"：同一 key 上并发的两个
claim 只有一个返回 True。
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from .entity import IdempotencyRecord


class IdempotencyStore(ABC):

    @abstractmethod
    async def claim(
        self,
        key: str,
        fingerprint: str,
        ttl_seconds: int,
        lease_seconds: Optional[int] = None,
    ) -> bool:
        """
        原子占用 key（写入 pending 记录）；已被占用（且未过期）时返回 False

        lease_seconds: pending 记录的租约。超过租约仍未完成的占用视为已失效
        （执行方已崩溃），可以被新的请求接管；None 表示租约与 ttl 相同。
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        """读取未过期的记录；已过期的记录视为不存在"""
        pass

    @abstractmethod
    async def complete(
        self,
        key: str,
        *,
        status_code: int,
        response_body: str,
        flow_id: Optional[str] = None,
    ) -> None:
        """保存执行结果，记录转为 completed"""
        pass

    @abstractmethod
    async def release(self, key: str) -> None:
        """放弃占用（执行失败时），允许后续重试重新执行"""
        pass

    @abstractmethod
    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """删除过期记录，返回删除条数"""
        pass
