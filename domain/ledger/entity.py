"""
账户余额与账本流水实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class LedgerEntryType(str, Enum):
    """账本流水类型"""
    HOLD_DEBIT = "hold_debit"
    CAPTURE_CREDIT = "capture_credit"
    VOID_CREDIT = "void_credit"
    REFUND_DEBIT = "refund_debit"
    REFUND_CREDIT = "refund_credit"


class LedgerEntryStatus(str, Enum):
    COMPLETED = "completed"


@dataclass
class AccountBalance:
    """
    (account_id, currency) 维度的可用余额

    业务规则：余额永远不能为负
    """

    account_id: str
    currency: str
    amount: Decimal
    version: int = 0
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount < 0:
            raise DomainValidationException(
                f"Balance cannot be negative: {self.amount}",
                field="amount",
            )


@dataclass(frozen=True)
class LedgerTransaction:
    """
    一次余额变动的不可变记录

    amount 为带符号金额：借记为负，贷记为正。创建后既不修改也不删除。
    """

    id: str
    account_id: str
    amount: Decimal
    currency: str
    type: LedgerEntryType
    flow_id: str
    status: LedgerEntryStatus = LedgerEntryStatus.COMPLETED
    fee: Optional[Decimal] = None
    counterparty_id: Optional[str] = None
    hold_id: Optional[str] = None
    description: Optional[str] = None
    created_at: datetime = None  # type: ignore[assignment]

    def __post_init__(self):
        if self.created_at is None:
            object.__setattr__(self, "created_at", datetime.now(timezone.utc))
        if self.amount == 0:
            raise DomainValidationException("Ledger entry amount cannot be zero", field="amount")
        debit = self.type in (LedgerEntryType.HOLD_DEBIT, LedgerEntryType.REFUND_DEBIT)
        if debit != (self.amount < 0):
            raise DomainValidationException(
                f"Sign of {self.amount} does not match entry type {self.type.value}",
                field="amount",
            )
