"""NovaPay background jobs: webhook outbox drain, expiry sweep, idempotency purge."""
from __future__ import annotations

import asyncio

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger

logger = get_logger(__name__)


async def _drain_webhooks() -> dict:
    from application.services.webhook_service import WebhookDeliveryService
    from infrastructure.database import engine
    from infrastructure.external.webhooks import HttpWebhookSender
    from infrastructure.providers import uow_factory

    sender = HttpWebhookSender()
    try:
        report = await WebhookDeliveryService(uow_factory, sender).drain()
    finally:
        await sender.aclose()
        await engine.dispose()
    return {"delivered": report.delivered, "retrying": report.retrying, "dead": report.dead}


async def _expire_overdue() -> int:
    from application.services.flow_service import FlowService
    from infrastructure.database import engine
    from infrastructure.providers import build_notifier, uow_factory

    try:
        return await FlowService(uow_factory, build_notifier()).expire_overdue()
    finally:
        await engine.dispose()


async def _purge_idempotency() -> int:
    from application.services.idempotency_service import IdempotencyService
    from infrastructure.database import engine
    from infrastructure.providers import build_idempotency_store

    try:
        return await IdempotencyService(await build_idempotency_store()).purge_expired()
    finally:
        await engine.dispose()


@shared_task(name="novapay.webhooks.deliver", bind=True, base=BaseTask)
def deliver_webhooks(self, flow_id: str | None = None) -> dict:
    """Deliver due outbox messages. Failed deliveries are rescheduled on the row itself."""
    logger.info("webhook_drain_started", flow_id=flow_id)
    return asyncio.run(_drain_webhooks())


@shared_task(
    name="novapay.flows.expire_overdue",
    bind=True,
    base=BaseTask,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": 3},
)
def expire_held_flows(self) -> int:
    """Expire HELD flows past their hold window and release the funds."""
    return asyncio.run(_expire_overdue())


@shared_task(name="novapay.idempotency.purge", bind=True, base=BaseTask)
def purge_idempotency(self) -> int:
    return asyncio.run(_purge_idempotency())
