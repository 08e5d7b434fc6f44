"""
Webhook outbox 数据库模型
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index
from datetime import datetime, timezone

from .base import Base


class WebhookOutboxModel(Base):
    __tablename__ = "webhook_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(64), unique=True, nullable=False, comment="事件ID（接收方去重用）")
    flow_id = Column(String(40), nullable=False, index=True)
    event_type = Column(String(32), nullable=False)
    url = Column(String(500), nullable=False)
    payload = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default="pending", comment="pending/delivered/dead")
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime(timezone=True), nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_webhook_outbox_status_next", "status", "next_attempt_at"),
    )

    def __repr__(self):
        return (
            f"<WebhookOutboxModel(id={self.id}, event_type='{self.event_type}', "
            f"status='{self.status}', attempts={self.attempts})>"
        )
