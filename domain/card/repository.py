"""
卡目录仓储接口（卡的签发与管理不属于本服务）
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import Card


class CardRepository(ABC):

    @abstractmethod
    async def get_by_number(self, card_number: str) -> Optional[Card]:
        """按（已去空白的）卡号查找"""
        pass

    @abstractmethod
    async def add(self, card: Card) -> Card:
        pass
