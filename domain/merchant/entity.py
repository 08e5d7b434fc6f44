"""
商户账户与 API Key 实体
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class MerchantStatus(str, Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CLOSED = "closed"


@dataclass
class Merchant:
    """商户账户（由账户系统维护，本服务只读）"""

    id: str
    name: Optional[str] = None
    status: MerchantStatus = MerchantStatus.ACTIVE

    def __post_init__(self):
        if not isinstance(self.status, MerchantStatus):
            self.status = MerchantStatus(self.status)

    @property
    def can_transact(self) -> bool:
        return self.status == MerchantStatus.ACTIVE


@dataclass
class ApiKey:
    id: str
    key: str
    merchant_id: str
    is_active: bool = True
    last_used_at: Optional[datetime] = None
    name: Optional[str] = None
