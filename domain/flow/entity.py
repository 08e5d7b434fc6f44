"""
支付流实体 - NovaPay 聚合根
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional

from domain.common.exceptions import (
    InvalidAmountException,
    InvalidStateTransitionException,
    RefundExceedsOriginalException,
)
from domain.common.money import ZERO, quantize
from shared.codes import ResultCode


FLOW_ID_PREFIX = "npf_"


class FlowState(str, Enum):
    """支付流状态枚举"""
    CREATED = "CREATED"     # 已创建，等待付款方授权
    HELD = "HELD"           # 资金已冻结
    SETTLED = "SETTLED"     # 已扣款入账
    VOIDED = "VOIDED"       # 冻结已撤销
    RETURNED = "RETURNED"   # 已（部分）退款，可继续退款
    DENIED = "DENIED"       # 授权被拒
    EXPIRED = "EXPIRED"     # 冻结过期


TERMINAL_STATES = frozenset(
    {FlowState.SETTLED, FlowState.VOIDED, FlowState.RETURNED, FlowState.DENIED, FlowState.EXPIRED}
)


def new_flow_id() -> str:
    return f"{FLOW_ID_PREFIX}{uuid.uuid4().hex}"


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentFlow:
    """
    支付流聚合根

    业务规则：
    1. 只能由 CREATED 开始，状态转换必须遵循状态机
    2. 进入终态后不可再变更，RETURNED 例外（可多次部分退款）
    3. returned_amount 永远不超过 settled_amount
    4. 每次写入都以 version 做比较并交换
    """

    flow_id: str
    merchant_id: str
    api_key_id: str
    amount: Decimal
    currency: str
    memo: str
    state: FlowState = FlowState.CREATED
    result_code: ResultCode = ResultCode.APPROVED

    merchant_ref: Optional[str] = None
    merchant_data: Optional[dict] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None

    # 金额记账
    held_amount: Decimal = ZERO
    settled_amount: Decimal = ZERO
    returned_amount: Decimal = ZERO

    # 付款方绑定（授权后才有）
    card_id: Optional[str] = None
    payer_id: Optional[str] = None
    hold_id: Optional[str] = None

    # 回调
    on_complete: Optional[str] = None
    on_cancel: Optional[str] = None
    notify_url: Optional[str] = None

    decline_reason: Optional[str] = None

    # 时间戳
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    held_at: Optional[datetime] = None
    settled_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None

    # 账本关联
    charge_transaction_id: Optional[str] = None
    refund_transaction_ids: List[str] = field(default_factory=list)

    version: int = 0

    def __post_init__(self):
        if not isinstance(self.state, FlowState):
            self.state = FlowState(self.state)
        self.result_code = ResultCode(self.result_code)
        if self.refund_transaction_ids is None:
            self.refund_transaction_ids = []
        for name in (
            "created_at", "updated_at", "expires_at", "held_at",
            "settled_at", "voided_at", "returned_at", "expired_at",
        ):
            setattr(self, name, _ensure_utc(getattr(self, name)))

    @classmethod
    def reserve(
        cls,
        *,
        merchant_id: str,
        api_key_id: str,
        amount: Decimal,
        currency: str,
        memo: str,
        hold_expiry: timedelta,
        now: Optional[datetime] = None,
        **optional,
    ) -> "PaymentFlow":
        """创建一条 CREATED 状态的支付流"""
        now = now or _now()
        return cls(
            flow_id=new_flow_id(),
            merchant_id=merchant_id,
            api_key_id=api_key_id,
            amount=amount,
            currency=currency,
            memo=memo,
            created_at=now,
            updated_at=now,
            expires_at=now + hold_expiry,
            **optional,
        )

    # ---- 查询 ----

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def refundable_amount(self) -> Decimal:
        return self.settled_amount - self.returned_amount

    def is_past_expiry(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and (now or _now()) > self.expires_at

    def _require(self, allowed: Iterable[FlowState], action: str) -> None:
        if self.state not in allowed:
            raise InvalidStateTransitionException(self.flow_id, self.state.value, action)

    def _touch(self, now: Optional[datetime]) -> datetime:
        now = now or _now()
        self.updated_at = now
        return now

    # ---- 状态转换 ----

    def mark_held(
        self,
        *,
        card_id: str,
        payer_id: str,
        hold_id: str,
        cardholder_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        """CREATED -> HELD"""
        self._require((FlowState.CREATED,), "authorize")
        now = self._touch(now)
        self.state = FlowState.HELD
        self.result_code = ResultCode.HOLD_CREATED
        self.card_id = card_id
        self.payer_id = payer_id
        self.hold_id = hold_id
        self.held_amount = self.amount
        self.held_at = now
        if cardholder_email:
            self.customer_email = cardholder_email

    def mark_denied(self, code: ResultCode, reason: str, now: Optional[datetime] = None) -> None:
        """CREATED -> DENIED（终态，不可在同一 flow_id 上重试）"""
        self._require((FlowState.CREATED,), "authorize")
        self._touch(now)
        self.state = FlowState.DENIED
        self.result_code = code
        self.decline_reason = reason

    def mark_settled(
        self,
        amount: Decimal,
        charge_transaction_id: str,
        now: Optional[datetime] = None,
    ) -> Decimal:
        """
        HELD -> SETTLED

        返回未扣款、需要退回付款方的剩余冻结金额。
        """
        self._require((FlowState.HELD,), "charge")
        if amount <= 0 or amount > self.held_amount:
            raise InvalidAmountException(
                amount, f"Charge amount must be between 0 and {self.held_amount}"
            )
        now = self._touch(now)
        remainder = self.held_amount - amount
        self.state = FlowState.SETTLED
        self.result_code = ResultCode.CHARGE_COMPLETE
        self.settled_amount = amount
        self.held_amount = quantize(ZERO, self.currency)
        self.settled_at = now
        self.charge_transaction_id = charge_transaction_id
        return remainder

    def mark_voided(self, now: Optional[datetime] = None) -> Decimal:
        """HELD -> VOIDED，返回需退回的冻结金额"""
        self._require((FlowState.HELD,), "void")
        now = self._touch(now)
        released = self.held_amount
        self.state = FlowState.VOIDED
        self.result_code = ResultCode.VOID_COMPLETE
        self.held_amount = quantize(ZERO, self.currency)
        self.voided_at = now
        return released

    def mark_returned(
        self,
        amount: Decimal,
        refund_transaction_id: str,
        now: Optional[datetime] = None,
    ) -> None:
        """SETTLED|RETURNED -> RETURNED"""
        self._require((FlowState.SETTLED, FlowState.RETURNED), "refund")
        if amount <= 0 or amount > self.refundable_amount:
            raise RefundExceedsOriginalException(self.flow_id, amount, self.refundable_amount)
        now = self._touch(now)
        self.state = FlowState.RETURNED
        self.result_code = ResultCode.REFUND_COMPLETE
        self.returned_amount += amount
        self.returned_at = now
        self.refund_transaction_ids = [*self.refund_transaction_ids, refund_transaction_id]

    def mark_expired(self, now: Optional[datetime] = None) -> Decimal:
        """
        CREATED|HELD -> EXPIRED

        返回需退回付款方的冻结金额（CREATED 时为 0）。
        """
        self._require((FlowState.CREATED, FlowState.HELD), "expire")
        now = self._touch(now)
        released = self.held_amount
        self.state = FlowState.EXPIRED
        self.result_code = ResultCode.HOLD_EXPIRED
        self.held_amount = quantize(ZERO, self.currency)
        self.expired_at = now
        return released
