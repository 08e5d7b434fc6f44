"""
Application service orchestrating NovaPay flow use-cases.

Each mutation runs the state machine inside one unit of work together with
the outbox inserts for its events; delivery is scheduled only after commit.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Iterable, List, Optional

from application.dtos.novapay import (
    AuthorizeRequest,
    ChargeRequest,
    RefundRequest,
    ReserveRequest,
    VoidRequest,
)
from application.ports.notifier import NullNotifier, WebhookNotifier
from core.config import NovapaySettings, settings
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    FlowNotFoundException,
    InvalidStateTransitionException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.flow.entity import FlowState, PaymentFlow
from domain.flow.events import FlowEvent
from domain.flow.service import CardCredentials, FlowStateMachine, TransitionOutcome
from domain.ledger.service import BalanceLedger
from domain.webhook.entity import WebhookMessage
from shared.codes import ResultCode


logger = get_logger(__name__)


class FlowService:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        notifier: Optional[WebhookNotifier] = None,
        config: Optional[NovapaySettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._notifier = notifier or NullNotifier()
        self._config = config or settings.novapay

    def _machine(self, uow: AbstractUnitOfWork) -> FlowStateMachine:
        return FlowStateMachine(
            uow.flows,
            BalanceLedger(uow.balances, uow.ledger),
            uow.cards,
            uow.merchants,
            fee_rate=self._config.fee_rate,
            hold_expiry=timedelta(days=self._config.hold_expiry_days),
            currencies=self._config.currencies,
            card_prefix=self._config.card_prefix,
            card_length=self._config.card_length,
        )

    @staticmethod
    async def _stage_events(uow: AbstractUnitOfWork, events: Iterable[FlowEvent]) -> List[str]:
        """把带 notify_url 的事件写入 outbox（与状态变更同一事务）"""
        staged: List[str] = []
        for event in events:
            if not event.notify_url:
                continue
            await uow.outbox.add(WebhookMessage.from_event(event))
            staged.append(event.flow_id)
        return staged

    def _schedule_delivery(self, flow_ids: Iterable[str]) -> None:
        for flow_id in dict.fromkeys(flow_ids):
            try:
                self._notifier.notify(flow_id)
            except Exception as exc:
                # 投递失败不影响状态转换；消息仍在 outbox 中等待定时任务
                logger.warning("webhook_schedule_failed", flow_id=flow_id, error=str(exc))

    async def _run(
        self,
        action: Callable[[FlowStateMachine], Awaitable[Optional[TransitionOutcome]]],
    ) -> Optional[TransitionOutcome]:
        async with self._uow_factory() as uow:
            machine = self._machine(uow)
            outcome = await action(machine)
            staged = await self._stage_events(uow, machine.events)
        self._schedule_delivery(staged)
        return outcome

    def checkout_url(self, flow_id: str) -> str:
        return f"{self._config.checkout_base_url.rstrip('/')}/checkout/{flow_id}"

    async def reserve(self, *, merchant_id: str, api_key_id: str, req: ReserveRequest) -> PaymentFlow:
        async with self._uow_factory() as uow:
            flow = await self._machine(uow).reserve(
                merchant_id=merchant_id,
                api_key_id=api_key_id,
                amount=req.amount,
                currency=req.currency,
                memo=req.memo,
                merchant_ref=req.merchant_ref,
                merchant_data=req.merchant_data,
                customer_email=req.customer_email,
                customer_name=req.customer_name,
                on_complete=req.on_complete,
                on_cancel=req.on_cancel,
                notify_url=req.notify_url,
            )
        logger.info(
            "flow_reserved",
            flow_id=flow.flow_id,
            merchant_id=merchant_id,
            amount=str(flow.amount),
            currency=flow.currency,
        )
        return flow

    async def authorize(self, req: AuthorizeRequest) -> TransitionOutcome:
        """
        付款方授权

        意外错误时回滚，再在新的事务中把支付流置为 DENIED / INTERNAL_ERROR。
        """
        credentials = CardCredentials(
            card_number=req.card_number,
            expiry_month=req.expiry_month,
            expiry_year=req.expiry_year,
            security_code=req.security_code,
            cardholder_email=req.cardholder_email,
        )
        try:
            outcome = await self._run(lambda m: m.authorize(req.flow_id, credentials))
        except BusinessException:
            raise
        except Exception:
            logger.exception("flow_authorize_failed", flow_id=req.flow_id)
            denied = await self._run(lambda m: m.fail_closed(req.flow_id))
            if denied is None:
                raise
            return denied
        logger.info(
            "flow_authorized",
            flow_id=req.flow_id,
            state=outcome.flow.state.value,
            result_code=int(outcome.code),
        )
        return outcome

    async def charge(self, *, merchant_id: str, req: ChargeRequest) -> TransitionOutcome:
        outcome = await self._run(lambda m: m.charge(req.flow_id, merchant_id, req.amount))
        logger.info(
            "flow_charged",
            flow_id=req.flow_id,
            state=outcome.flow.state.value,
            result_code=int(outcome.code),
            fee=str(outcome.fee) if outcome.fee is not None else None,
        )
        return outcome

    async def void(self, *, merchant_id: str, req: VoidRequest) -> TransitionOutcome:
        outcome = await self._run(lambda m: m.void(req.flow_id, merchant_id))
        logger.info("flow_voided", flow_id=req.flow_id, released=str(outcome.released_amount))
        return outcome

    async def refund(self, *, merchant_id: str, req: RefundRequest) -> TransitionOutcome:
        outcome = await self._run(
            lambda m: m.refund(req.flow_id, merchant_id, req.amount, req.reason)
        )
        logger.info(
            "flow_refunded",
            flow_id=req.flow_id,
            refunded=str(outcome.refunded_amount),
            total_refunded=str(outcome.flow.returned_amount),
        )
        return outcome

    async def lookup(self, *, merchant_id: str, flow_id: str) -> PaymentFlow:
        async with self._uow_factory(readonly=True) as uow:
            return await self._machine(uow).get_owned(flow_id, merchant_id)

    async def checkout_view(self, flow_id: str) -> PaymentFlow:
        """付款页读取支付流（无需商户凭证）"""
        async with self._uow_factory(readonly=True) as uow:
            flow = await uow.flows.get(flow_id)
        if flow is None:
            raise FlowNotFoundException(flow_id)
        return flow

    async def expire_overdue(
        self,
        now: Optional[datetime] = None,
        batch_size: Optional[int] = None,
    ) -> int:
        """
        过期对账：扫描 expires_at 已过的 HELD 支付流，逐个在独立事务中过期并退回资金

        期间被其他请求修改过的支付流会被跳过。
        """
        now = now or datetime.now(timezone.utc)
        limit = batch_size or self._config.expiry_sweep_batch_size
        async with self._uow_factory(readonly=True) as uow:
            candidates = [f.flow_id for f in await uow.flows.list_expired_holds(now, limit)]

        expired = 0
        for flow_id in candidates:
            try:
                outcome = await self._run(lambda m, fid=flow_id: self._expire_one(m, fid, now))
            except InvalidStateTransitionException:
                logger.info("flow_expiry_skipped", flow_id=flow_id)
                continue
            if outcome is not None:
                expired += 1
        logger.info("flow_expiry_sweep_done", candidates=len(candidates), expired=expired)
        return expired

    @staticmethod
    async def _expire_one(
        machine: FlowStateMachine,
        flow_id: str,
        now: datetime,
    ) -> Optional[TransitionOutcome]:
        flow = await machine.flows.get(flow_id)
        if flow is None or flow.state != FlowState.HELD or not flow.is_past_expiry(now):
            return None
        outcome = await machine.expire(flow, now)
        logger.info(
            "flow_expired",
            flow_id=flow_id,
            released=str(outcome.released_amount),
            result_code=int(ResultCode.HOLD_EXPIRED),
        )
        return outcome
