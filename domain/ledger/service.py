"""
余额/冻结原语 - hold、commit、release、refund

每个原语对其触及的每一侧余额恰好写一条账本流水。原语本身不开启事务，
由调用方的 Unit of Work 保证余额变更、流水写入与支付流状态写入一起提交或回滚。
"""
from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional, Tuple

from domain.common.exceptions import DomainValidationException
from domain.common.money import quantize
from .entity import LedgerEntryType, LedgerTransaction
from .repository import BalanceRepository, LedgerRepository


def new_hold_id() -> str:
    return f"hold_{uuid.uuid4()}"


class BalanceLedger:
    """
    余额账本领域服务

    职责：
    1. 通过仓储的原子 apply_delta 变更余额（余额不足时抛 InsufficientFundsException）
    2. 为每次余额变更追加一条不可变流水
    """

    def __init__(self, balances: BalanceRepository, ledger: LedgerRepository):
        self.balances = balances
        self.ledger = ledger

    @staticmethod
    def _positive(amount: Decimal, currency: str) -> Decimal:
        value = quantize(amount, currency)
        if value <= 0:
            raise DomainValidationException(f"Amount must be positive: {amount}", field="amount")
        return value

    async def _entry(
        self,
        *,
        entry_id: Optional[str] = None,
        account_id: str,
        amount: Decimal,
        currency: str,
        entry_type: LedgerEntryType,
        flow_id: str,
        hold_id: Optional[str] = None,
        fee: Optional[Decimal] = None,
        counterparty_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LedgerTransaction:
        return await self.ledger.append(
            LedgerTransaction(
                id=entry_id or str(uuid.uuid4()),
                account_id=account_id,
                amount=amount,
                currency=currency,
                type=entry_type,
                flow_id=flow_id,
                hold_id=hold_id,
                fee=fee,
                counterparty_id=counterparty_id,
                description=description,
            )
        )

    async def hold(
        self,
        account_id: str,
        currency: str,
        amount: Decimal,
        *,
        flow_id: str,
        counterparty_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        """从付款方可用余额扣减 amount，返回不透明的 hold_id"""
        amount = self._positive(amount, currency)
        await self.balances.apply_delta(account_id, currency, -amount)
        hold_id = new_hold_id()
        await self._entry(
            account_id=account_id,
            amount=-amount,
            currency=currency,
            entry_type=LedgerEntryType.HOLD_DEBIT,
            flow_id=flow_id,
            hold_id=hold_id,
            counterparty_id=counterparty_id,
            description=description,
        )
        return hold_id

    async def commit(
        self,
        hold_id: str,
        amount: Decimal,
        destination_account_id: str,
        fee: Decimal,
        *,
        currency: str,
        flow_id: str,
        entry_id: Optional[str] = None,
        counterparty_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> LedgerTransaction:
        """
        将冻结资金入账给收款方：credit(destination, amount - fee)

        付款方一侧已在 hold 时扣减，这里只写收款方的入账流水。
        """
        amount = self._positive(amount, currency)
        fee = quantize(fee, currency)
        net = amount - fee
        if fee < 0 or net <= 0:
            raise DomainValidationException(
                f"Fee {fee} leaves no net amount from {amount}", field="fee"
            )
        await self.balances.apply_delta(destination_account_id, currency, net)
        return await self._entry(
            entry_id=entry_id,
            account_id=destination_account_id,
            amount=net,
            currency=currency,
            entry_type=LedgerEntryType.CAPTURE_CREDIT,
            flow_id=flow_id,
            hold_id=hold_id,
            fee=fee,
            counterparty_id=counterparty_id,
            description=description,
        )

    async def release(
        self,
        hold_id: str,
        account_id: str,
        amount: Decimal,
        *,
        currency: str,
        flow_id: str,
        description: Optional[str] = None,
    ) -> LedgerTransaction:
        """撤销未被入账的冻结：credit(account_id, amount)"""
        amount = self._positive(amount, currency)
        await self.balances.apply_delta(account_id, currency, amount)
        return await self._entry(
            account_id=account_id,
            amount=amount,
            currency=currency,
            entry_type=LedgerEntryType.VOID_CREDIT,
            flow_id=flow_id,
            hold_id=hold_id,
            description=description,
        )

    async def refund(
        self,
        source_account_id: str,
        destination_account_id: str,
        amount: Decimal,
        currency: str,
        *,
        flow_id: str,
        debit_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Tuple[LedgerTransaction, LedgerTransaction]:
        """
        退款：debit(source) + credit(destination)

        源账户余额不足时在任何写入前失败。
        """
        amount = self._positive(amount, currency)
        await self.balances.apply_delta(source_account_id, currency, -amount)
        debit = await self._entry(
            entry_id=debit_id,
            account_id=source_account_id,
            amount=-amount,
            currency=currency,
            entry_type=LedgerEntryType.REFUND_DEBIT,
            flow_id=flow_id,
            counterparty_id=destination_account_id,
            description=description,
        )
        await self.balances.apply_delta(destination_account_id, currency, amount)
        credit = await self._entry(
            account_id=destination_account_id,
            amount=amount,
            currency=currency,
            entry_type=LedgerEntryType.REFUND_CREDIT,
            flow_id=flow_id,
            counterparty_id=source_account_id,
            description=description,
        )
        return debit, credit
