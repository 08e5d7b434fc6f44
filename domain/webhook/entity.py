"""
Webhook outbox 消息实体
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from domain.flow.events import FlowEvent


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    DEAD = "dead"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def backoff_delay(attempts: int, base_seconds: float, max_seconds: float) -> timedelta:
    """第 n 次失败后的等待时间：min(base * 2^(n-1), max)"""
    exponent = max(attempts - 1, 0)
    return timedelta(seconds=min(base_seconds * (2 ** exponent), max_seconds))


@dataclass
class WebhookMessage:
    """
    与状态转换在同一事务中写入的待投递通知

    投递结果只影响本消息，不影响支付流。
    """

    id: Optional[int]
    event_id: str
    flow_id: str
    event_type: str
    url: str
    payload: dict
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    delivered_at: Optional[datetime] = None

    def __post_init__(self):
        if not isinstance(self.status, OutboxStatus):
            self.status = OutboxStatus(self.status)
        self.created_at = _ensure_utc(self.created_at)
        self.next_attempt_at = _ensure_utc(self.next_attempt_at)
        self.delivered_at = _ensure_utc(self.delivered_at)
        if self.next_attempt_at is None:
            self.next_attempt_at = self.created_at

    @classmethod
    def from_event(cls, event: FlowEvent) -> "WebhookMessage":
        return cls(
            id=None,
            event_id=event.event_id,
            flow_id=event.flow_id,
            event_type=event.event_type,
            url=event.notify_url or "",
            payload=event.to_payload(),
            created_at=event.occurred_at,
        )

    def mark_delivered(self, now: Optional[datetime] = None) -> None:
        self.status = OutboxStatus.DELIVERED
        self.attempts += 1
        self.delivered_at = now or datetime.now(timezone.utc)
        self.last_error = None

    def mark_failed(
        self,
        error: str,
        *,
        max_attempts: int,
        base_seconds: float,
        max_seconds: float,
        now: Optional[datetime] = None,
    ) -> None:
        """记录一次失败；达到最大次数后进入 dead"""
        now = now or datetime.now(timezone.utc)
        self.attempts += 1
        self.last_error = error[:1000]
        if self.attempts >= max_attempts:
            self.status = OutboxStatus.DEAD
            return
        self.next_attempt_at = now + backoff_delay(self.attempts, base_seconds, max_seconds)
