"""
支付流状态机 - 领域服务

唯一允许修改 PaymentFlow 状态的组件。每次转换时在调用方的 Unit of Work 中
依次完成：实体状态转换 -> 版本号 CAS 写回 -> 余额/流水副作用 -> 收集领域事件。
任一步失败都会随事务一起回滚。
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, List, Optional

from domain.card.entity import normalize_card_number
from domain.card.repository import CardRepository
from domain.common.exceptions import (
    FlowNotFoundException,
    InsufficientFundsException,
    InvalidAmountException,
    InvalidStateTransitionException,
    MerchantNotFoundException,
    MissingFieldException,
    RefundExceedsOriginalException,
    UnsupportedCurrencyException,
)
from domain.common.money import ZERO, calculate_fee, parse_amount
from domain.ledger.service import BalanceLedger
from domain.merchant.repository import MerchantRepository
from shared.codes import ResultCode
from .entity import FlowState, PaymentFlow
from .events import (
    FlowDenied,
    FlowEvent,
    FlowExpired,
    FlowHeld,
    FlowReturned,
    FlowSettled,
    FlowVoided,
)
from .repository import FlowRepository


DECLINE_REASONS = {
    ResultCode.NOT_NOVAPAY_CARD: "Card is not a NovaPay card",
    ResultCode.CARD_NOT_FOUND: "Card not found or invalid details",
    ResultCode.INVALID_SECURITY_CODE: "Security code does not match",
    ResultCode.CARD_INACTIVE: "Card is not active",
    ResultCode.CARD_EXPIRED: "Card has expired",
    ResultCode.INSUFFICIENT_FUNDS: "Insufficient funds",
    ResultCode.INTERNAL_ERROR: "Authorization failed unexpectedly",
}


@dataclass
class CardCredentials:
    card_number: str
    expiry_month: str
    expiry_year: str
    security_code: str
    cardholder_email: Optional[str] = None


@dataclass
class TransitionOutcome:
    """一次转换的结果；失败的授权也以结果（而非异常）返回，以便提交 DENIED"""

    flow: PaymentFlow
    code: ResultCode
    fee: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    released_amount: Optional[Decimal] = None
    refunded_amount: Optional[Decimal] = None

    @property
    def ok(self) -> bool:
        return self.code.is_success


class FlowStateMachine:
    """
    支付流状态机

    职责：
    1. 校验状态转换是否合法（非法转换无任何副作用）
    2. 通过 BalanceLedger 完成资金冻结/入账/释放/退款
    3. 产生领域事件（由应用层写入 outbox）
    """

    def __init__(
        self,
        flows: FlowRepository,
        ledger: BalanceLedger,
        cards: CardRepository,
        merchants: MerchantRepository,
        *,
        fee_rate: Decimal,
        hold_expiry: timedelta,
        currencies: Iterable[str],
        card_prefix: str = "7",
        card_length: int = 16,
    ):
        self.flows = flows
        self.ledger = ledger
        self.cards = cards
        self.merchants = merchants
        self.fee_rate = fee_rate
        self.hold_expiry = hold_expiry
        self.currencies = frozenset(currencies)
        self.card_prefix = card_prefix
        self.card_length = card_length
        self.events: List[FlowEvent] = []  # 领域事件收集

    def _emit(self, event_cls: type, flow: PaymentFlow) -> None:
        self.events.append(event_cls.from_flow(flow))

    async def _require_merchant(self, merchant_id: str, flow_id: Optional[str] = None) -> None:
        """收款商户必须存在且处于可交易状态"""
        merchant = await self.merchants.get(merchant_id)
        if merchant is None or not merchant.can_transact:
            raise MerchantNotFoundException(merchant_id, flow_id)

    async def get_owned(self, flow_id: str, merchant_id: str) -> PaymentFlow:
        """读取属于该商户的支付流；属于其他商户时与不存在同样处理"""
        flow = await self.flows.get(flow_id)
        if flow is None or flow.merchant_id != merchant_id:
            raise FlowNotFoundException(flow_id)
        return flow

    async def reserve(
        self,
        *,
        merchant_id: str,
        api_key_id: str,
        amount: object,
        currency: str,
        memo: Optional[str],
        now: Optional[datetime] = None,
        **optional,
    ) -> PaymentFlow:
        """
        创建支付流（CREATED）

        业务规则：
        1. 币种必须在支持列表中
        2. 金额 > 0 且精度不超过币种最小单位
        3. memo 不能为空
        4. 收款商户存在且可交易
        """
        if not memo or not str(memo).strip():
            raise MissingFieldException("memo")
        currency = (currency or "").upper()
        if currency not in self.currencies:
            raise UnsupportedCurrencyException(currency)
        value = parse_amount(amount, currency)
        await self._require_merchant(merchant_id)

        flow = PaymentFlow.reserve(
            merchant_id=merchant_id,
            api_key_id=api_key_id,
            amount=value,
            currency=currency,
            memo=memo,
            hold_expiry=self.hold_expiry,
            now=now,
            **optional,
        )
        return await self.flows.add(flow)

    async def authorize(
        self,
        flow_id: str,
        credentials: CardCredentials,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """
        CREATED -> HELD / DENIED / EXPIRED

        校验顺序：状态 -> 过期 -> 卡号格式 -> 卡目录 -> 安全码 -> 卡状态 -> 卡有效期 -> 余额
        """
        now = now or datetime.now(timezone.utc)
        flow = await self.flows.get(flow_id)
        if flow is None:
            raise FlowNotFoundException(flow_id)
        if flow.state != FlowState.CREATED:
            raise InvalidStateTransitionException(flow.flow_id, flow.state.value, "authorize")
        if flow.is_past_expiry(now):
            return await self.expire(flow, now)

        number = normalize_card_number(credentials.card_number)
        if not (
            len(number) == self.card_length
            and number.isdigit()
            and number.startswith(self.card_prefix)
        ):
            return await self.deny(flow, ResultCode.NOT_NOVAPAY_CARD, now)

        card = await self.cards.get_by_number(number)
        if card is None or not card.matches_expiry(credentials.expiry_month, credentials.expiry_year):
            return await self.deny(flow, ResultCode.CARD_NOT_FOUND, now)
        if not card.matches_security_code(credentials.security_code):
            return await self.deny(flow, ResultCode.INVALID_SECURITY_CODE, now)
        if not card.is_active:
            return await self.deny(flow, ResultCode.CARD_INACTIVE, now)
        if card.is_expired(now):
            return await self.deny(flow, ResultCode.CARD_EXPIRED, now)

        try:
            hold_id = await self.ledger.hold(
                card.owner_id,
                flow.currency,
                flow.amount,
                flow_id=flow.flow_id,
                counterparty_id=flow.merchant_id,
                description=flow.memo,
            )
        except InsufficientFundsException:
            return await self.deny(flow, ResultCode.INSUFFICIENT_FUNDS, now)

        flow.mark_held(
            card_id=card.id,
            payer_id=card.owner_id,
            hold_id=hold_id,
            cardholder_email=credentials.cardholder_email,
            now=now,
        )
        await self.flows.save(flow)
        self._emit(FlowHeld, flow)
        return TransitionOutcome(flow=flow, code=ResultCode.HOLD_CREATED)

    async def deny(
        self,
        flow: PaymentFlow,
        code: ResultCode,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """CREATED -> DENIED，记录具体的拒绝原因"""
        flow.mark_denied(code, DECLINE_REASONS.get(code, code.message), now)
        await self.flows.save(flow)
        self._emit(FlowDenied, flow)
        return TransitionOutcome(flow=flow, code=code)

    async def charge(
        self,
        flow_id: str,
        merchant_id: str,
        amount: Optional[object] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """
        HELD -> SETTLED

        fee = round_half_up(amount x fee_rate)，商户入账 amount - fee；
        部分扣款时剩余冻结金额退回付款方。已过期的冻结不会被扣款，而是转为 EXPIRED。
        """
        now = now or datetime.now(timezone.utc)
        flow = await self.get_owned(flow_id, merchant_id)
        if flow.state != FlowState.HELD:
            raise InvalidStateTransitionException(flow.flow_id, flow.state.value, "charge")
        if flow.is_past_expiry(now):
            return await self.expire(flow, now)

        value = flow.held_amount if amount is None else parse_amount(amount, flow.currency)
        if value > flow.held_amount:
            raise InvalidAmountException(
                amount, f"Charge amount exceeds held amount {flow.held_amount}"
            )
        fee = calculate_fee(value, self.fee_rate, flow.currency)
        net = value - fee
        if net <= 0:
            raise InvalidAmountException(amount, "Charge amount does not cover the fee")
        await self._require_merchant(flow.merchant_id, flow.flow_id)

        charge_id = str(uuid.uuid4())
        hold_id, payer_id = flow.hold_id, flow.payer_id
        remainder = flow.mark_settled(value, charge_id, now)
        await self.flows.save(flow)

        await self.ledger.commit(
            hold_id,
            value,
            flow.merchant_id,
            fee,
            currency=flow.currency,
            flow_id=flow.flow_id,
            entry_id=charge_id,
            counterparty_id=payer_id,
            description=flow.memo,
        )
        if remainder > 0:
            await self.ledger.release(
                hold_id,
                payer_id,
                remainder,
                currency=flow.currency,
                flow_id=flow.flow_id,
                description="Uncaptured remainder of partial charge",
            )
        self._emit(FlowSettled, flow)
        return TransitionOutcome(
            flow=flow,
            code=ResultCode.CHARGE_COMPLETE,
            fee=fee,
            net_amount=net,
            released_amount=remainder,
        )

    async def void(
        self,
        flow_id: str,
        merchant_id: str,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """HELD -> VOIDED，全额退回冻结资金"""
        flow = await self.get_owned(flow_id, merchant_id)
        released = flow.mark_voided(now)
        await self.flows.save(flow)
        if released > 0:
            await self.ledger.release(
                flow.hold_id,
                flow.payer_id,
                released,
                currency=flow.currency,
                flow_id=flow.flow_id,
                description="Reservation voided",
            )
        self._emit(FlowVoided, flow)
        return TransitionOutcome(flow=flow, code=ResultCode.VOID_COMPLETE, released_amount=released)

    async def refund(
        self,
        flow_id: str,
        merchant_id: str,
        amount: Optional[object] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TransitionOutcome:
        """
        SETTLED|RETURNED -> RETURNED

        默认退还剩余可退金额；累计退款不能超过 settled_amount。
        商户余额不足时抛出 InsufficientFundsException，整个事务回滚。
        """
        flow = await self.get_owned(flow_id, merchant_id)
        if flow.state not in (FlowState.SETTLED, FlowState.RETURNED):
            raise InvalidStateTransitionException(flow.flow_id, flow.state.value, "refund")

        if amount is None:
            value = flow.refundable_amount
        else:
            try:
                value = parse_amount(amount, flow.currency)
            except InvalidAmountException:
                if _is_non_positive(amount):
                    raise RefundExceedsOriginalException(
                        flow.flow_id, Decimal(str(amount)), flow.refundable_amount
                    ) from None
                raise
        await self._require_merchant(flow.merchant_id, flow.flow_id)

        debit_id = str(uuid.uuid4())
        flow.mark_returned(value, debit_id, now)
        await self.flows.save(flow)

        await self.ledger.refund(
            flow.merchant_id,
            flow.payer_id,
            value,
            flow.currency,
            flow_id=flow.flow_id,
            debit_id=debit_id,
            description=f"Refund: {reason}" if reason else "Refund",
        )
        self._emit(FlowReturned, flow)
        return TransitionOutcome(flow=flow, code=ResultCode.REFUND_COMPLETE, refunded_amount=value)

    async def expire(self, flow: PaymentFlow, now: Optional[datetime] = None) -> TransitionOutcome:
        """CREATED|HELD -> EXPIRED，退回仍冻结的资金"""
        hold_id, payer_id = flow.hold_id, flow.payer_id
        released = flow.mark_expired(now)
        await self.flows.save(flow)
        if released > 0 and payer_id:
            await self.ledger.release(
                hold_id,
                payer_id,
                released,
                currency=flow.currency,
                flow_id=flow.flow_id,
                description="Reservation expired",
            )
        self._emit(FlowExpired, flow)
        return TransitionOutcome(flow=flow, code=ResultCode.HOLD_EXPIRED, released_amount=released)

    async def fail_closed(self, flow_id: str, now: Optional[datetime] = None) -> Optional[TransitionOutcome]:
        """授权过程中出现意外错误后，把仍处于 CREATED 的支付流置为 DENIED"""
        flow = await self.flows.get(flow_id)
        if flow is None or flow.state != FlowState.CREATED:
            return None
        return await self.deny(flow, ResultCode.INTERNAL_ERROR, now)


def _is_non_positive(value: object) -> bool:
    try:
        return Decimal(str(value)) <= ZERO
    except ArithmeticError:
        return False
