"""
余额与账本仓储接口
"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional

from .entity import AccountBalance, LedgerTransaction


class BalanceRepository(ABC):
    """余额仓储抽象接口

    所有变更都以 (account_id, currency) 上的 +delta/-delta 表达，
    实现必须保证单个余额行上的变更被线性化（原子条件更新 / 行锁 / CAS）。
    """

    @abstractmethod
    async def get(self, account_id: str, currency: str) -> Optional[AccountBalance]:
        """读取余额（不存在返回 None）"""
        pass

    @abstractmethod
    async def apply_delta(self, account_id: str, currency: str, delta: Decimal) -> AccountBalance:
        """
        原子地将余额加上 delta

        结果为负时抛出 InsufficientFundsException 且不做任何修改；
        余额行不存在且 delta 为正时创建该行。
        """
        pass


class LedgerRepository(ABC):
    """账本流水仓储 - 只追加"""

    @abstractmethod
    async def append(self, entry: LedgerTransaction) -> LedgerTransaction:
        pass

    @abstractmethod
    async def list_by_flow(self, flow_id: str) -> List[LedgerTransaction]:
        pass

    @abstractmethod
    async def list_by_account(
        self,
        account_id: str,
        currency: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[LedgerTransaction]:
        pass
