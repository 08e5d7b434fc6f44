"""
幂等记录实体
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class IdempotencyState(str, Enum):
    PENDING = "pending"        # 已被某个请求占用，正在执行
    COMPLETED = "completed"    # 已保存响应，可直接重放


def idempotency_key(api_key_id: str, token: str) -> str:
    """按 API Key 划分命名空间，避免跨商户冲突"""
    return f"{api_key_id}:{token}"


def request_fingerprint(operation: str, body: Any) -> str:
    """operation + 规范化请求体的 sha256"""
    canonical = json.dumps(body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(f"{operation}\n{canonical}".encode("utf-8")).hexdigest()


@dataclass
class IdempotencyRecord:
    key: str
    fingerprint: str
    state: IdempotencyState
    created_at: datetime
    expires_at: datetime
    flow_id: Optional[str] = None
    status_code: Optional[int] = None
    response_body: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.state, IdempotencyState):
            self.state = IdempotencyState(self.state)
        if self.created_at.tzinfo is None:
            self.created_at = self.created_at.replace(tzinfo=timezone.utc)
        if self.expires_at.tzinfo is None:
            self.expires_at = self.expires_at.replace(tzinfo=timezone.utc)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at

    @property
    def is_completed(self) -> bool:
        return self.state == IdempotencyState.COMPLETED
