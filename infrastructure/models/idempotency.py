"""
幂等记录数据库模型
"""
from sqlalchemy import Column, Integer, String, DateTime, Text
from datetime import datetime, timezone

from .base import Base


class IdempotencyRecordModel(Base):
    """主键唯一性即"不存在则插入"的原子占用"""
    __tablename__ = "idempotency_records"

    key = Column(String(255), primary_key=True, comment="<api_key_id>:<token>")
    fingerprint = Column(String(64), nullable=False, comment="请求指纹 sha256")
    state = Column(String(16), nullable=False, default="pending")
    flow_id = Column(String(40), nullable=True)
    status_code = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True, comment="序列化后的原始响应")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self):
        return f"<IdempotencyRecordModel(key='{self.key}', state='{self.state}')>"
