"""
NovaPay DTOs (Pydantic v2) used at application boundaries.

Wire format is camelCase; money leaves the service as decimal strings at the
currency exponent (e.g. "97.50", JPY "1200").
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from domain.common.money import format_amount
from domain.flow.entity import PaymentFlow


def iso_z(ts: Optional[datetime]) -> Optional[str]:
    """UTC ISO8601，统一使用 Z 结尾"""
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


# ---- requests ----

class ReserveRequest(CamelModel):
    amount: Decimal
    currency: str
    memo: str
    merchant_ref: Optional[str] = Field(default=None, max_length=200)
    merchant_data: Optional[dict[str, Any]] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    on_complete: Optional[str] = None
    on_cancel: Optional[str] = None
    notify_url: Optional[str] = None


class AuthorizeRequest(CamelModel):
    flow_id: str
    card_number: str
    expiry_month: str
    expiry_year: str
    security_code: str
    cardholder_email: str


class ChargeRequest(CamelModel):
    flow_id: str
    amount: Optional[Decimal] = None


class VoidRequest(CamelModel):
    flow_id: str


class RefundRequest(CamelModel):
    flow_id: str
    amount: Optional[Decimal] = None
    reason: Optional[str] = Field(default=None, max_length=500)


# ---- response data ----

class ReserveData(CamelModel):
    flow_id: str
    checkout_url: str
    state: str
    expires_at: Optional[str]


class AuthorizeData(CamelModel):
    flow_id: str
    state: str
    redirect_url: Optional[str] = None
    on_complete: Optional[str] = None
    on_cancel: Optional[str] = None


class ChargeData(CamelModel):
    flow_id: str
    state: str
    settled_amount: str
    net_amount: str
    fee: str


class VoidData(CamelModel):
    flow_id: str
    state: str
    released_amount: str


class RefundData(CamelModel):
    flow_id: str
    state: str
    refunded_amount: str
    total_refunded: str


class FlowSnapshot(CamelModel):
    """lookup 返回的完整快照"""

    flow_id: str
    state: str
    result_code: int
    amount: str
    currency: str
    memo: str
    merchant_ref: Optional[str] = None
    held_amount: str
    settled_amount: str
    returned_amount: str
    created_at: Optional[str] = None
    held_at: Optional[str] = None
    settled_at: Optional[str] = None
    voided_at: Optional[str] = None
    returned_at: Optional[str] = None
    expired_at: Optional[str] = None
    expires_at: Optional[str] = None

    @classmethod
    def from_flow(cls, flow: PaymentFlow) -> "FlowSnapshot":
        c = flow.currency
        return cls(
            flow_id=flow.flow_id,
            state=flow.state.value,
            result_code=int(flow.result_code),
            amount=format_amount(flow.amount, c),
            currency=c,
            memo=flow.memo,
            merchant_ref=flow.merchant_ref,
            held_amount=format_amount(flow.held_amount, c),
            settled_amount=format_amount(flow.settled_amount, c),
            returned_amount=format_amount(flow.returned_amount, c),
            created_at=iso_z(flow.created_at),
            held_at=iso_z(flow.held_at),
            settled_at=iso_z(flow.settled_at),
            voided_at=iso_z(flow.voided_at),
            returned_at=iso_z(flow.returned_at),
            expired_at=iso_z(flow.expired_at),
            expires_at=iso_z(flow.expires_at),
        )


class CheckoutView(CamelModel):
    """付款页展示用的支付流信息（不含敏感数据）"""

    flow_id: str
    amount: str
    currency: str
    memo: str
    state: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    on_complete: Optional[str] = None
    on_cancel: Optional[str] = None
    expires_at: Optional[str] = None

    @classmethod
    def from_flow(cls, flow: PaymentFlow) -> "CheckoutView":
        return cls(
            flow_id=flow.flow_id,
            amount=format_amount(flow.amount, flow.currency),
            currency=flow.currency,
            memo=flow.memo,
            state=flow.state.value,
            customer_email=flow.customer_email,
            customer_name=flow.customer_name,
            on_complete=flow.on_complete,
            on_cancel=flow.on_cancel,
            expires_at=iso_z(flow.expires_at),
        )
