"""
支付流仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.exceptions import ConcurrentFlowUpdateException
from domain.common.money import from_minor, to_minor
from domain.flow.entity import FlowState, PaymentFlow
from domain.flow.repository import FlowRepository
from infrastructure.models.flow import PaymentFlowModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyFlowRepository(FlowRepository):
    """支付流仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentFlowModel) -> PaymentFlow:
        """将数据库模型转换为领域实体"""
        currency = model.currency
        return PaymentFlow(
            flow_id=model.flow_id,
            merchant_id=model.merchant_id,
            api_key_id=model.api_key_id,
            amount=from_minor(model.amount_minor, currency),
            currency=currency,
            memo=model.memo,
            state=FlowState(model.state),
            result_code=model.result_code,
            merchant_ref=model.merchant_ref,
            merchant_data=model.merchant_data,
            customer_email=model.customer_email,
            customer_name=model.customer_name,
            held_amount=from_minor(model.held_minor, currency),
            settled_amount=from_minor(model.settled_minor, currency),
            returned_amount=from_minor(model.returned_minor, currency),
            card_id=model.card_id,
            payer_id=model.payer_id,
            hold_id=model.hold_id,
            on_complete=model.on_complete,
            on_cancel=model.on_cancel,
            notify_url=model.notify_url,
            decline_reason=model.decline_reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
            expires_at=model.expires_at,
            held_at=model.held_at,
            settled_at=model.settled_at,
            voided_at=model.voided_at,
            returned_at=model.returned_at,
            expired_at=model.expired_at,
            charge_transaction_id=model.charge_transaction_id,
            refund_transaction_ids=list(model.refund_transaction_ids or []),
            version=model.version,
        )

    def _mutable_values(self, entity: PaymentFlow) -> dict:
        """状态转换可能改写的列"""
        currency = entity.currency
        return {
            "state": entity.state.value,
            "result_code": int(entity.result_code),
            "decline_reason": entity.decline_reason,
            "customer_email": entity.customer_email,
            "held_minor": to_minor(entity.held_amount, currency),
            "settled_minor": to_minor(entity.settled_amount, currency),
            "returned_minor": to_minor(entity.returned_amount, currency),
            "card_id": entity.card_id,
            "payer_id": entity.payer_id,
            "hold_id": entity.hold_id,
            "charge_transaction_id": entity.charge_transaction_id,
            "refund_transaction_ids": list(entity.refund_transaction_ids),
            "updated_at": entity.updated_at,
            "held_at": entity.held_at,
            "settled_at": entity.settled_at,
            "voided_at": entity.voided_at,
            "returned_at": entity.returned_at,
            "expired_at": entity.expired_at,
        }

    def _to_model(self, entity: PaymentFlow) -> PaymentFlowModel:
        """将领域实体转换为数据库模型"""
        return PaymentFlowModel(
            flow_id=entity.flow_id,
            merchant_id=entity.merchant_id,
            api_key_id=entity.api_key_id,
            amount_minor=to_minor(entity.amount, entity.currency),
            currency=entity.currency,
            memo=entity.memo,
            merchant_ref=entity.merchant_ref,
            merchant_data=entity.merchant_data,
            customer_name=entity.customer_name,
            on_complete=entity.on_complete,
            on_cancel=entity.on_cancel,
            notify_url=entity.notify_url,
            created_at=entity.created_at,
            expires_at=entity.expires_at,
            version=entity.version,
            **self._mutable_values(entity),
        )

    async def add(self, flow: PaymentFlow) -> PaymentFlow:
        """新增支付流"""
        db_flow = self._to_model(flow)
        self.session.add(db_flow)
        await self.session.flush()
        logger.info(
            "flow_created",
            flow_id=flow.flow_id,
            merchant_id=flow.merchant_id,
            currency=flow.currency,
        )
        return self._to_entity(db_flow)

    async def get(self, flow_id: str) -> Optional[PaymentFlow]:
        """按 flow_id 读取（populate_existing 保证不使用身份映射中的旧状态）"""
        result = await self.session.execute(
            select(PaymentFlowModel)
            .where(PaymentFlowModel.flow_id == flow_id)
            .execution_options(populate_existing=True)
        )
        db_flow = result.scalar_one_or_none()
        return self._to_entity(db_flow) if db_flow else None

    async def save(self, flow: PaymentFlow) -> PaymentFlow:
        """UPDATE ... WHERE flow_id = ? AND version = ?"""
        expected = flow.version
        result = await self.session.execute(
            update(PaymentFlowModel)
            .where(
                PaymentFlowModel.flow_id == flow.flow_id,
                PaymentFlowModel.version == expected,
            )
            .values(version=expected + 1, **self._mutable_values(flow))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(
                "flow_version_conflict",
                flow_id=flow.flow_id,
                expected_version=expected,
                state=flow.state.value,
            )
            raise ConcurrentFlowUpdateException(flow.flow_id, expected)
        flow.version = expected + 1
        logger.info(
            "flow_state_saved",
            flow_id=flow.flow_id,
            state=flow.state.value,
            result_code=int(flow.result_code),
            version=flow.version,
        )
        return flow

    async def list_expired_holds(self, now: datetime, limit: int = 100) -> List[PaymentFlow]:
        result = await self.session.execute(
            select(PaymentFlowModel)
            .where(
                PaymentFlowModel.state == FlowState.HELD.value,
                PaymentFlowModel.expires_at < now,
            )
            .order_by(PaymentFlowModel.expires_at.asc())
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_merchant(
        self,
        merchant_id: str,
        skip: int = 0,
        limit: int = 100,
    ) -> List[PaymentFlow]:
        result = await self.session.execute(
            select(PaymentFlowModel)
            .where(PaymentFlowModel.merchant_id == merchant_id)
            .order_by(PaymentFlowModel.created_at.desc())
            .offset(skip)
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]
