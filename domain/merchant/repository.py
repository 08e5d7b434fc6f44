"""
商户账户目录与 API Key 目录仓储接口
"""
from abc import ABC, abstractmethod
from typing import Optional

from .entity import ApiKey, Merchant


class MerchantRepository(ABC):

    @abstractmethod
    async def get(self, merchant_id: str) -> Optional[Merchant]:
        pass

    @abstractmethod
    async def add(self, merchant: Merchant) -> Merchant:
        pass


class ApiKeyRepository(ABC):

    @abstractmethod
    async def get_by_key(self, key: str) -> Optional[ApiKey]:
        pass

    @abstractmethod
    async def add(self, api_key: ApiKey) -> ApiKey:
        pass

    @abstractmethod
    async def touch(self, api_key_id: str) -> None:
        """记录最近使用时间"""
        pass
