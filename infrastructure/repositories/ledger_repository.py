"""
余额与账本流水仓储实现 - 使用SQLAlchemy实现数据访问

余额的每次变更都是单条条件 UPDATE：
    amount_minor = amount_minor + :delta WHERE ... AND amount_minor + :delta >= 0
数据库对同一行的并发 UPDATE 天然串行化，因此不存在"读-改-写"丢失更新。
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import InsufficientFundsException
from domain.common.money import from_minor, to_minor
from domain.ledger.entity import (
    AccountBalance,
    LedgerEntryStatus,
    LedgerEntryType,
    LedgerTransaction,
)
from domain.ledger.repository import BalanceRepository, LedgerRepository
from infrastructure.models.ledger import AccountBalanceModel, LedgerTransactionModel
from infrastructure.repositories.sql_utils import insert_if_absent
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyBalanceRepository(BalanceRepository):
    """余额仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: AccountBalanceModel) -> AccountBalance:
        return AccountBalance(
            account_id=model.account_id,
            currency=model.currency,
            amount=from_minor(model.amount_minor, model.currency),
            version=model.version,
            updated_at=model.updated_at,
        )

    async def get(self, account_id: str, currency: str) -> Optional[AccountBalance]:
        result = await self.session.execute(
            select(AccountBalanceModel)
            .where(
                AccountBalanceModel.account_id == account_id,
                AccountBalanceModel.currency == currency,
            )
            .execution_options(populate_existing=True)
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def _conditional_update(self, account_id: str, currency: str, delta_minor: int) -> bool:
        result = await self.session.execute(
            update(AccountBalanceModel)
            .where(
                AccountBalanceModel.account_id == account_id,
                AccountBalanceModel.currency == currency,
                AccountBalanceModel.amount_minor + delta_minor >= 0,
            )
            .values(
                amount_minor=AccountBalanceModel.amount_minor + delta_minor,
                version=AccountBalanceModel.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def apply_delta(self, account_id: str, currency: str, delta: Decimal) -> AccountBalance:
        delta_minor = to_minor(delta, currency)
        applied = await self._conditional_update(account_id, currency, delta_minor)
        if not applied and delta_minor >= 0:
            # 贷记到不存在的余额行：先补一行 0，再重新执行条件更新
            await insert_if_absent(
                self.session,
                AccountBalanceModel,
                {
                    "account_id": account_id,
                    "currency": currency,
                    "amount_minor": 0,
                    "version": 0,
                    "updated_at": datetime.now(timezone.utc),
                },
            )
            applied = await self._conditional_update(account_id, currency, delta_minor)
        if not applied:
            logger.info(
                "balance_insufficient",
                account_id=account_id,
                currency=currency,
                delta=str(delta),
            )
            raise InsufficientFundsException(account_id, currency, -delta)

        balance = await self.get(account_id, currency)
        logger.debug(
            "balance_updated",
            account_id=account_id,
            currency=currency,
            delta=str(delta),
            balance=str(balance.amount),
        )
        return balance

    async def set_balance(self, account_id: str, currency: str, amount: Decimal) -> AccountBalance:
        """直接设置余额（充值/种子数据用，不经过账本）"""
        minor = to_minor(amount, currency)
        inserted = await insert_if_absent(
            self.session,
            AccountBalanceModel,
            {
                "account_id": account_id,
                "currency": currency,
                "amount_minor": minor,
                "version": 0,
                "updated_at": datetime.now(timezone.utc),
            },
        )
        if not inserted:
            await self.session.execute(
                update(AccountBalanceModel)
                .where(
                    AccountBalanceModel.account_id == account_id,
                    AccountBalanceModel.currency == currency,
                )
                .values(amount_minor=minor, version=AccountBalanceModel.version + 1)
                .execution_options(synchronize_session=False)
            )
        return await self.get(account_id, currency)


class SQLAlchemyLedgerRepository(LedgerRepository):
    """账本流水仓储的SQLAlchemy实现（只追加）"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: LedgerTransactionModel) -> LedgerTransaction:
        currency = model.currency
        return LedgerTransaction(
            id=model.id,
            account_id=model.account_id,
            amount=from_minor(model.amount_minor, currency),
            currency=currency,
            type=LedgerEntryType(model.type),
            flow_id=model.flow_id,
            status=LedgerEntryStatus(model.status),
            fee=from_minor(model.fee_minor, currency) if model.fee_minor is not None else None,
            counterparty_id=model.counterparty_id,
            hold_id=model.hold_id,
            description=model.description,
            created_at=model.created_at,
        )

    def _to_model(self, entity: LedgerTransaction) -> LedgerTransactionModel:
        currency = entity.currency
        return LedgerTransactionModel(
            id=entity.id,
            account_id=entity.account_id,
            amount_minor=to_minor(entity.amount, currency),
            fee_minor=to_minor(entity.fee, currency) if entity.fee is not None else None,
            currency=currency,
            type=entity.type.value,
            status=entity.status.value,
            flow_id=entity.flow_id,
            hold_id=entity.hold_id,
            counterparty_id=entity.counterparty_id,
            description=entity.description,
            created_at=entity.created_at,
        )

    async def append(self, entry: LedgerTransaction) -> LedgerTransaction:
        self.session.add(self._to_model(entry))
        await self.session.flush()
        logger.info(
            "ledger_entry_appended",
            entry_id=entry.id,
            account_id=entry.account_id,
            type=entry.type.value,
            amount=str(entry.amount),
            currency=entry.currency,
            flow_id=entry.flow_id,
        )
        return entry

    async def list_by_flow(self, flow_id: str) -> List[LedgerTransaction]:
        result = await self.session.execute(
            select(LedgerTransactionModel)
            .where(LedgerTransactionModel.flow_id == flow_id)
            .order_by(LedgerTransactionModel.created_at.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_account(
        self,
        account_id: str,
        currency: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[LedgerTransaction]:
        query = select(LedgerTransactionModel).where(LedgerTransactionModel.account_id == account_id)
        if currency:
            query = query.where(LedgerTransactionModel.currency == currency)
        query = query.order_by(LedgerTransactionModel.created_at.desc()).offset(skip).limit(limit)
        result = await self.session.execute(query)
        return [self._to_entity(m) for m in result.scalars().all()]
