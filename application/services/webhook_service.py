"""
Outbox drain: deliver pending merchant webhooks with retry/backoff.

Delivery outcomes only touch the outbox row; they never affect the flow.
No database transaction is held open across an HTTP call.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from application.ports.notifier import WebhookSender
from core.config import WebhookSettings, settings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.webhook.entity import OutboxStatus, WebhookMessage


logger = get_logger(__name__)

# 租约在最坏投递耗时之外额外保留的时间
IN_FLIGHT_GRACE_SECONDS = 60


@dataclass
class DrainReport:
    delivered: int = 0
    retrying: int = 0
    dead: int = 0

    @property
    def total(self) -> int:
        return self.delivered + self.retrying + self.dead


class WebhookDeliveryService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        sender: WebhookSender,
        config: Optional[WebhookSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._sender = sender
        self._config = config or settings.webhook

    @property
    def _in_flight_seconds(self) -> float:
        """一条消息最长的投递耗时（含内联重试）"""
        return self._config.timeout_seconds * (self._config.inline_retries + 1)

    async def drain(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> DrainReport:
        """
        Deliver every due message once; failed ones are rescheduled or dead-lettered.

        Messages are leased in one short transaction and sent outside it;
        each outcome is then committed on its own.
        """
        now = now or datetime.now(timezone.utc)
        limit = limit or self._config.batch_size
        lease_until = now + timedelta(seconds=self._in_flight_seconds * limit + IN_FLIGHT_GRACE_SECONDS)
        async with self._uow_factory() as uow:
            messages = await uow.outbox.claim_due(now, limit, lease_until)

        report = DrainReport()
        for message in messages:
            await self._deliver(message, now)
            async with self._uow_factory() as uow:
                await uow.outbox.update(message)
            if message.status == OutboxStatus.DELIVERED:
                report.delivered += 1
            elif message.status == OutboxStatus.DEAD:
                report.dead += 1
            else:
                report.retrying += 1
        if report.total:
            logger.info(
                "webhook_drain_done",
                delivered=report.delivered,
                retrying=report.retrying,
                dead=report.dead,
            )
        return report

    async def _deliver(self, message: WebhookMessage, now: datetime) -> None:
        try:
            attempt = await self._sender.send(message)
        except Exception as exc:
            logger.warning("webhook_sender_error", outbox_id=message.id, error=str(exc))
            ok, error = False, f"{type(exc).__name__}: {exc}"
        else:
            ok = attempt.ok
            error = attempt.error or f"HTTP {attempt.status_code}"

        if ok:
            message.mark_delivered(now)
            logger.info(
                "webhook_delivered",
                outbox_id=message.id,
                flow_id=message.flow_id,
                event_type=message.event_type,
                attempts=message.attempts,
            )
            return

        message.mark_failed(
            error,
            max_attempts=self._config.max_attempts,
            base_seconds=self._config.backoff_base_seconds,
            max_seconds=self._config.backoff_max_seconds,
            now=now,
        )
        if message.status == OutboxStatus.DEAD:
            logger.error(
                "webhook_dead_lettered",
                outbox_id=message.id,
                flow_id=message.flow_id,
                event_type=message.event_type,
                attempts=message.attempts,
                error=error,
            )
        else:
            logger.warning(
                "webhook_delivery_failed",
                outbox_id=message.id,
                flow_id=message.flow_id,
                attempts=message.attempts,
                next_attempt_at=message.next_attempt_at.isoformat(),
                error=error,
            )
