"""
卡目录、商户目录与商户 API Key 目录数据库模型

这些表由外部系统维护，本服务只读（测试与种子数据除外）。
"""
from sqlalchemy import Column, String, Boolean, DateTime
from datetime import datetime, timezone

from .base import Base


class CardModel(Base):
    __tablename__ = "cards"

    id = Column(String(64), primary_key=True)
    card_number = Column(String(19), unique=True, index=True, nullable=False, comment="卡号（无空格）")
    owner_id = Column(String(64), nullable=False, index=True, comment="持卡人账户ID")
    expiry_date = Column(String(5), nullable=False, comment="MM/YY")
    cvv = Column(String(4), nullable=False)
    status = Column(String(16), nullable=False, default="active", comment="active/frozen/blocked")

    def __repr__(self):
        return f"<CardModel(id='{self.id}', owner_id='{self.owner_id}', status='{self.status}')>"


class MerchantModel(Base):
    __tablename__ = "merchants"

    id = Column(String(64), primary_key=True)
    name = Column(String(100), nullable=True)
    status = Column(String(16), nullable=False, default="active", comment="active/suspended/closed")

    def __repr__(self):
        return f"<MerchantModel(id='{self.id}', status='{self.status}')>"


class ApiKeyModel(Base):
    __tablename__ = "api_keys"

    id = Column(String(64), primary_key=True)
    key = Column(String(128), unique=True, index=True, nullable=False)
    merchant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<ApiKeyModel(id='{self.id}', merchant_id='{self.merchant_id}', is_active={self.is_active})>"
