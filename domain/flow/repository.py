"""
支付流仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import PaymentFlow


class FlowRepository(ABC):
    """支付流仓储抽象接口"""

    @abstractmethod
    async def add(self, flow: PaymentFlow) -> PaymentFlow:
        """新增支付流"""
        pass

    @abstractmethod
    async def get(self, flow_id: str) -> Optional[PaymentFlow]:
        """按 flow_id 读取（总是返回数据库最新状态）"""
        pass

    @abstractmethod
    async def save(self, flow: PaymentFlow) -> PaymentFlow:
        """
        以 version 做比较并交换写回

        当前版本与 flow.version 不一致时抛出 ConcurrentFlowUpdateException；
        成功后 flow.version 自增。
        """
        pass

    @abstractmethod
    async def list_expired_holds(self, now: datetime, limit: int = 100) -> List[PaymentFlow]:
        """列出 expires_at 已过但仍处于 HELD 的支付流"""
        pass

    @abstractmethod
    async def list_by_merchant(
        self,
        merchant_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> List[PaymentFlow]:
        pass
