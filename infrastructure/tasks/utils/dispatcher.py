"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Dict

from ..config.celery import celery_app


DELIVER_WEBHOOKS_TASK = "novapay.webhooks.deliver"


class TaskDispatcher:
    """Internal facade used by application layer to schedule tasks."""

    def deliver_webhooks(self, flow_id: str | None = None) -> None:
        """Fire-and-forget drain of the webhook outbox."""
        celery_app.send_task(DELIVER_WEBHOOKS_TASK, kwargs={"flow_id": flow_id})

    def enqueue(self, task_name: str, *, args: tuple | None = None, kwargs: Dict[str, Any] | None = None) -> None:
        """Generic escape hatch for scheduling arbitrary tasks by name."""
        celery_app.send_task(task_name, args=args or (), kwargs=kwargs or {})


class CeleryWebhookNotifier:
    """WebhookNotifier backed by Celery."""

    def __init__(self, dispatcher: TaskDispatcher | None = None) -> None:
        self._dispatcher = dispatcher or TaskDispatcher()

    def notify(self, flow_id: str) -> None:
        self._dispatcher.deliver_webhooks(flow_id)
