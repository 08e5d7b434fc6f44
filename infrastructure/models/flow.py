"""
支付流数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型；金额以整数最小货币单位存储
"""
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Text, JSON, Index
from datetime import datetime, timezone

from .base import Base


class PaymentFlowModel(Base):
    """
    支付流数据库模型

    所有业务规则都在 domain.flow.entity.PaymentFlow 中
    """
    __tablename__ = "novapay_flows"

    flow_id = Column(String(40), primary_key=True, comment="支付流ID npf_...")
    merchant_id = Column(String(64), nullable=False, index=True, comment="商户ID")
    api_key_id = Column(String(64), nullable=False, comment="创建该支付流的 API Key")

    # 商业条款
    amount_minor = Column(BigInteger, nullable=False, comment="金额（最小货币单位）")
    currency = Column(String(3), nullable=False, comment="货币代码 ISO-4217")
    memo = Column(String(500), nullable=False, comment="备注")
    merchant_ref = Column(String(200), nullable=True, index=True, comment="商户订单号")
    merchant_data = Column(JSON, nullable=True, comment="商户自定义数据")
    customer_email = Column(String(200), nullable=True)
    customer_name = Column(String(200), nullable=True)

    # 生命周期
    state = Column(String(16), nullable=False, default="CREATED", index=True, comment="状态")
    result_code = Column(Integer, nullable=False, comment="最近一次结果码")
    decline_reason = Column(Text, nullable=True, comment="拒绝原因")
    held_minor = Column(BigInteger, nullable=False, default=0)
    settled_minor = Column(BigInteger, nullable=False, default=0)
    returned_minor = Column(BigInteger, nullable=False, default=0)

    # 付款方绑定
    card_id = Column(String(64), nullable=True)
    payer_id = Column(String(64), nullable=True, index=True)
    hold_id = Column(String(64), nullable=True)

    # 回调
    on_complete = Column(String(500), nullable=True)
    on_cancel = Column(String(500), nullable=True)
    notify_url = Column(String(500), nullable=True, comment="Webhook 地址")

    # 账本关联
    charge_transaction_id = Column(String(64), nullable=True)
    refund_transaction_ids = Column(JSON, nullable=False, default=list)

    # 时间戳
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, comment="冻结过期时间")
    held_at = Column(DateTime(timezone=True), nullable=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    returned_at = Column(DateTime(timezone=True), nullable=True)
    expired_at = Column(DateTime(timezone=True), nullable=True)

    # 乐观并发控制
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_novapay_flows_state_expires", "state", "expires_at"),
        Index("ix_novapay_flows_merchant_created", "merchant_id", "created_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentFlowModel(flow_id='{self.flow_id}', state='{self.state}', "
            f"amount_minor={self.amount_minor}, currency='{self.currency}', version={self.version})>"
        )
