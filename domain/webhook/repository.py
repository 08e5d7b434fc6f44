"""
Webhook outbox 仓储接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import WebhookMessage


class WebhookOutboxRepository(ABC):

    @abstractmethod
    async def add(self, message: WebhookMessage) -> WebhookMessage:
        pass

    @abstractmethod
    async def claim_due(
        self,
        now: datetime,
        limit: int = 50,
        lease_until: Optional[datetime] = None,
    ) -> List[WebhookMessage]:
        """取出到期的 pending 消息（并发 worker 之间互不重复），可选地把它们租出到 lease_until"""
        pass

    @abstractmethod
    async def update(self, message: WebhookMessage) -> WebhookMessage:
        pass

    @abstractmethod
    async def list_by_flow(self, flow_id: str) -> List[WebhookMessage]:
        pass
