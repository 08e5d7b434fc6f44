"""
NovaPay 卡实体（外部卡目录的只读视图）
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple


class CardStatus(str, Enum):
    ACTIVE = "active"
    FROZEN = "frozen"
    BLOCKED = "blocked"


def normalize_card_number(card_number: str) -> str:
    """去掉卡号中的空白字符"""
    return "".join((card_number or "").split())


@dataclass
class Card:
    id: str
    card_number: str
    owner_id: str
    expiry_date: str  # MM/YY
    cvv: str
    status: CardStatus = CardStatus.ACTIVE

    def __post_init__(self):
        self.card_number = normalize_card_number(self.card_number)
        if not isinstance(self.status, CardStatus):
            self.status = CardStatus(self.status)

    def _expiry_parts(self) -> Tuple[str, str]:
        month, _, year = (self.expiry_date or "").partition("/")
        return month.strip(), year.strip()

    def matches_expiry(self, month: str, year: str) -> bool:
        return self._expiry_parts() == (month.strip(), year.strip())

    def matches_security_code(self, code: str) -> bool:
        return self.cvv == code

    @property
    def is_active(self) -> bool:
        return self.status == CardStatus.ACTIVE

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """卡在到期月份的最后一刻之后视为过期"""
        month, year = self._expiry_parts()
        try:
            m, y = int(month), 2000 + int(year)
        except ValueError:
            return True
        if m == 12:
            end = datetime(y + 1, 1, 1, tzinfo=timezone.utc)
        else:
            end = datetime(y, m + 1, 1, tzinfo=timezone.utc)
        return end <= (now or datetime.now(timezone.utc))
