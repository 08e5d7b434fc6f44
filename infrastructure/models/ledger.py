"""
余额与账本流水数据库模型
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, Index, CheckConstraint
from datetime import datetime, timezone

from .base import Base


class AccountBalanceModel(Base):
    """(account_id, currency) 维度的可用余额，amount_minor 永不为负"""
    __tablename__ = "account_balances"

    account_id = Column(String(64), primary_key=True, comment="账户ID")
    currency = Column(String(3), primary_key=True, comment="货币代码")
    amount_minor = Column(BigInteger, nullable=False, default=0, comment="可用余额（最小货币单位）")
    version = Column(Integer, nullable=False, default=0)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("amount_minor >= 0", name="ck_account_balances_non_negative"),
    )

    def __repr__(self):
        return (
            f"<AccountBalanceModel(account_id='{self.account_id}', currency='{self.currency}', "
            f"amount_minor={self.amount_minor})>"
        )


class LedgerTransactionModel(Base):
    """只追加的余额变动流水"""
    __tablename__ = "ledger_transactions"

    id = Column(String(64), primary_key=True)
    account_id = Column(String(64), nullable=False, index=True)
    amount_minor = Column(BigInteger, nullable=False, comment="带符号金额：借记为负")
    fee_minor = Column(BigInteger, nullable=True, comment="平台手续费")
    currency = Column(String(3), nullable=False)
    type = Column(String(32), nullable=False, comment="hold_debit/capture_credit/void_credit/refund_debit/refund_credit")
    status = Column(String(16), nullable=False, default="completed")
    flow_id = Column(String(40), nullable=False, index=True)
    hold_id = Column(String(64), nullable=True)
    counterparty_id = Column(String(64), nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_ledger_transactions_account_currency", "account_id", "currency"),
    )

    def __repr__(self):
        return (
            f"<LedgerTransactionModel(id='{self.id}', account_id='{self.account_id}', "
            f"type='{self.type}', amount_minor={self.amount_minor})>"
        )
