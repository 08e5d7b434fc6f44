"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.card.repository import CardRepository
from domain.flow.repository import FlowRepository
from domain.ledger.repository import BalanceRepository, LedgerRepository
from domain.merchant.repository import ApiKeyRepository, MerchantRepository
from domain.webhook.repository import WebhookOutboxRepository


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象

    支付流、余额、流水与 outbox 的写入共享同一事务：要么全部提交，要么全部回滚。
    """

    flows: FlowRepository
    balances: BalanceRepository
    ledger: LedgerRepository
    outbox: WebhookOutboxRepository
    cards: CardRepository
    merchants: MerchantRepository
    api_keys: ApiKeyRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.flows = None  # type: ignore[assignment]
        self.balances = None  # type: ignore[assignment]
        self.ledger = None  # type: ignore[assignment]
        self.outbox = None  # type: ignore[assignment]
        self.cards = None  # type: ignore[assignment]
        self.merchants = None  # type: ignore[assignment]
        self.api_keys = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只在非只读且未显式提交时自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
