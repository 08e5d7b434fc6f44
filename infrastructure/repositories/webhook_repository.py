"""
Webhook outbox 仓储实现
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.webhook.entity import OutboxStatus, WebhookMessage
from domain.webhook.repository import WebhookOutboxRepository
from infrastructure.models.webhook import WebhookOutboxModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyWebhookOutboxRepository(WebhookOutboxRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: WebhookOutboxModel) -> WebhookMessage:
        return WebhookMessage(
            id=model.id,
            event_id=model.event_id,
            flow_id=model.flow_id,
            event_type=model.event_type,
            url=model.url,
            payload=dict(model.payload or {}),
            status=OutboxStatus(model.status),
            attempts=model.attempts,
            next_attempt_at=model.next_attempt_at,
            last_error=model.last_error,
            created_at=model.created_at,
            delivered_at=model.delivered_at,
        )

    async def add(self, message: WebhookMessage) -> WebhookMessage:
        model = WebhookOutboxModel(
            event_id=message.event_id,
            flow_id=message.flow_id,
            event_type=message.event_type,
            url=message.url,
            payload=message.payload,
            status=message.status.value,
            attempts=message.attempts,
            next_attempt_at=message.next_attempt_at,
            created_at=message.created_at,
        )
        self.session.add(model)
        await self.session.flush()
        message.id = model.id
        logger.info(
            "webhook_enqueued",
            outbox_id=model.id,
            flow_id=message.flow_id,
            event_type=message.event_type,
        )
        return message

    async def claim_due(
        self,
        now: datetime,
        limit: int = 50,
        lease_until: Optional[datetime] = None,
    ) -> List[WebhookMessage]:
        """
        SKIP LOCKED 让多个 worker 并发抽取互不重叠（SQLite 下忽略该子句）

        lease_until: 把取出的消息的 next_attempt_at 推迟到该时间，提交后即可在事务外投递；
        投递方崩溃时消息在租约到期后重新可见。
        """
        result = await self.session.execute(
            select(WebhookOutboxModel)
            .where(
                WebhookOutboxModel.status == OutboxStatus.PENDING.value,
                WebhookOutboxModel.next_attempt_at <= now,
            )
            .order_by(WebhookOutboxModel.next_attempt_at.asc(), WebhookOutboxModel.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        messages = [self._to_entity(m) for m in result.scalars().all()]
        if messages and lease_until is not None:
            await self.session.execute(
                update(WebhookOutboxModel)
                .where(WebhookOutboxModel.id.in_([m.id for m in messages]))
                .values(next_attempt_at=lease_until)
                .execution_options(synchronize_session=False)
            )
        return messages

    async def update(self, message: WebhookMessage) -> WebhookMessage:
        await self.session.execute(
            update(WebhookOutboxModel)
            .where(WebhookOutboxModel.id == message.id)
            .values(
                status=message.status.value,
                attempts=message.attempts,
                next_attempt_at=message.next_attempt_at,
                last_error=message.last_error,
                delivered_at=message.delivered_at,
            )
            .execution_options(synchronize_session=False)
        )
        return message

    async def list_by_flow(self, flow_id: str) -> List[WebhookMessage]:
        result = await self.session.execute(
            select(WebhookOutboxModel)
            .where(WebhookOutboxModel.flow_id == flow_id)
            .order_by(WebhookOutboxModel.id.asc())
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
