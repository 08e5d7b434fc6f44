"""
幂等存储的SQLAlchemy实现

每个操作使用独立的短事务：占用（claim）必须立即提交，其他请求才能看到。
"""
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.idempotency.entity import IdempotencyRecord, IdempotencyState
from domain.idempotency.store import IdempotencyStore
from infrastructure.models.idempotency import IdempotencyRecordModel
from infrastructure.repositories.sql_utils import insert_if_absent
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyIdempotencyStore(IdempotencyStore):
    """主键唯一约束 + ON CONFLICT DO NOTHING 实现原子占用"""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory

    @staticmethod
    def _to_entity(model: IdempotencyRecordModel) -> IdempotencyRecord:
        return IdempotencyRecord(
            key=model.key,
            fingerprint=model.fingerprint,
            state=IdempotencyState(model.state),
            created_at=model.created_at,
            expires_at=model.expires_at,
            flow_id=model.flow_id,
            status_code=model.status_code,
            response_body=model.response_body,
        )

    async def claim(
        self,
        key: str,
        fingerprint: str,
        ttl_seconds: int,
        lease_seconds: Optional[int] = None,
    ) -> bool:
        now = datetime.now(timezone.utc)
        stale = IdempotencyRecordModel.expires_at <= now
        if lease_seconds is not None:
            # 租约已过的 pending 记录：执行方已崩溃或未能保存结果
            stale = or_(
                stale,
                and_(
                    IdempotencyRecordModel.state == IdempotencyState.PENDING.value,
                    IdempotencyRecordModel.created_at <= now - timedelta(seconds=lease_seconds),
                ),
            )
        async with self._session_factory() as session, session.begin():
            removed = await session.execute(
                delete(IdempotencyRecordModel).where(IdempotencyRecordModel.key == key, stale)
            )
            if removed.rowcount:
                logger.info("idempotency_stale_record_removed", key=key)
            claimed = await insert_if_absent(
                session,
                IdempotencyRecordModel,
                {
                    "key": key,
                    "fingerprint": fingerprint,
                    "state": IdempotencyState.PENDING.value,
                    "created_at": now,
                    "expires_at": now + timedelta(seconds=ttl_seconds),
                },
            )
        logger.debug("idempotency_claim", key=key, claimed=claimed)
        return claimed

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        now = datetime.now(timezone.utc)
        async with self._session_factory() as session:
            result = await session.execute(
                select(IdempotencyRecordModel).where(
                    IdempotencyRecordModel.key == key,
                    IdempotencyRecordModel.expires_at > now,
                )
            )
            model = result.scalar_one_or_none()
            return self._to_entity(model) if model else None

    async def complete(
        self,
        key: str,
        *,
        status_code: int,
        response_body: str,
        flow_id: Optional[str] = None,
    ) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(IdempotencyRecordModel)
                .where(IdempotencyRecordModel.key == key)
                .values(
                    state=IdempotencyState.COMPLETED.value,
                    status_code=status_code,
                    response_body=response_body,
                    flow_id=flow_id,
                )
            )

    async def release(self, key: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                delete(IdempotencyRecordModel).where(
                    IdempotencyRecordModel.key == key,
                    IdempotencyRecordModel.state == IdempotencyState.PENDING.value,
                )
            )

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                delete(IdempotencyRecordModel).where(IdempotencyRecordModel.expires_at <= now)
            )
        return result.rowcount or 0
