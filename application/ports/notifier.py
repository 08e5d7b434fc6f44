"""
Webhook ports (contracts-first).

WebhookNotifier schedules delivery of outbox messages after a transition has
committed; WebhookSender performs one HTTP delivery attempt. Implementations
live in infrastructure and are injected from the composition root.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from domain.webhook.entity import WebhookMessage


class WebhookNotifier(Protocol):
    def notify(self, flow_id: str) -> None:
        """Fire-and-forget: ask the background worker to drain pending messages."""
        ...


@dataclass
class DeliveryAttempt:
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


class WebhookSender(Protocol):
    async def send(self, message: WebhookMessage) -> DeliveryAttempt:
        ...

    async def aclose(self) -> None:
        ...


class NullNotifier:
    """No background worker configured; the periodic drain picks messages up."""

    def notify(self, flow_id: str) -> None:
        return None
