"""Celery beat schedule configuration.

Periodic reconciliation jobs; intervals come from ``settings.celery``.
"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    # Retry due webhook messages left in the outbox
    "novapay-webhook-drain": {
        "task": "novapay.webhooks.deliver",
        "schedule": settings.celery.drain_interval_seconds,
    },
    # Expire HELD flows past expires_at and release their funds
    "novapay-expiry-sweep": {
        "task": "novapay.flows.expire_overdue",
        "schedule": settings.celery.expiry_sweep_interval_seconds,
    },
    "novapay-idempotency-purge": {
        "task": "novapay.idempotency.purge",
        "schedule": settings.celery.idempotency_purge_interval_seconds,
    },
}
