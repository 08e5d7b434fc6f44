"""
支付流领域事件

每个事件是一次状态转换的快照，应用层将其写入 webhook outbox。
领域层不依赖任何基础设施。
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, Optional

from domain.common.money import format_amount
from .entity import PaymentFlow


@dataclass
class FlowEvent:
    event_type: ClassVar[str] = "flow.updated"

    flow_id: str
    state: str
    amount: str
    currency: str
    merchant_id: str
    merchant_ref: Optional[str] = None
    merchant_data: Optional[dict] = None
    notify_url: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_flow(cls, flow: PaymentFlow) -> "FlowEvent":
        return cls(
            flow_id=flow.flow_id,
            state=flow.state.value,
            amount=format_amount(flow.amount, flow.currency),
            currency=flow.currency,
            merchant_id=flow.merchant_id,
            merchant_ref=flow.merchant_ref,
            merchant_data=dict(flow.merchant_data) if flow.merchant_data else None,
            notify_url=flow.notify_url,
        )

    def to_payload(self) -> dict:
        """商户回调的 JSON 负载"""
        return {
            "eventId": self.event_id,
            "eventType": self.event_type,
            "flowId": self.flow_id,
            "merchantRef": self.merchant_ref,
            "state": self.state,
            "amount": self.amount,
            "currency": self.currency,
            "timestamp": self.occurred_at.isoformat().replace("+00:00", "Z"),
            "data": self.merchant_data or {},
        }


@dataclass
class FlowHeld(FlowEvent):
    event_type: ClassVar[str] = "flow.held"


@dataclass
class FlowDenied(FlowEvent):
    event_type: ClassVar[str] = "flow.denied"


@dataclass
class FlowSettled(FlowEvent):
    event_type: ClassVar[str] = "flow.settled"


@dataclass
class FlowVoided(FlowEvent):
    event_type: ClassVar[str] = "flow.voided"


@dataclass
class FlowReturned(FlowEvent):
    event_type: ClassVar[str] = "flow.returned"


@dataclass
class FlowExpired(FlowEvent):
    event_type: ClassVar[str] = "flow.expired"
