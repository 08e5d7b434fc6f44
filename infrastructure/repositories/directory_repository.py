"""
卡目录、商户目录与 API Key 目录仓储实现
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from domain.card.entity import Card, CardStatus, normalize_card_number
from domain.card.repository import CardRepository
from domain.merchant.entity import ApiKey, Merchant, MerchantStatus
from domain.merchant.repository import ApiKeyRepository, MerchantRepository
from infrastructure.models.directory import ApiKeyModel, CardModel, MerchantModel


class SQLAlchemyCardRepository(CardRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: CardModel) -> Card:
        return Card(
            id=model.id,
            card_number=model.card_number,
            owner_id=model.owner_id,
            expiry_date=model.expiry_date,
            cvv=model.cvv,
            status=CardStatus(model.status),
        )

    async def get_by_number(self, card_number: str) -> Optional[Card]:
        result = await self.session.execute(
            select(CardModel).where(CardModel.card_number == normalize_card_number(card_number))
        )
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def add(self, card: Card) -> Card:
        self.session.add(
            CardModel(
                id=card.id,
                card_number=card.card_number,
                owner_id=card.owner_id,
                expiry_date=card.expiry_date,
                cvv=card.cvv,
                status=card.status.value,
            )
        )
        await self.session.flush()
        return card


class SQLAlchemyMerchantRepository(MerchantRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, merchant_id: str) -> Optional[Merchant]:
        model = await self.session.get(MerchantModel, merchant_id)
        if model is None:
            return None
        return Merchant(id=model.id, name=model.name, status=MerchantStatus(model.status))

    async def add(self, merchant: Merchant) -> Merchant:
        self.session.add(
            MerchantModel(id=merchant.id, name=merchant.name, status=merchant.status.value)
        )
        await self.session.flush()
        return merchant


class SQLAlchemyApiKeyRepository(ApiKeyRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(model: ApiKeyModel) -> ApiKey:
        return ApiKey(
            id=model.id,
            key=model.key,
            merchant_id=model.merchant_id,
            is_active=model.is_active,
            last_used_at=model.last_used_at,
            name=model.name,
        )

    async def get_by_key(self, key: str) -> Optional[ApiKey]:
        result = await self.session.execute(select(ApiKeyModel).where(ApiKeyModel.key == key))
        model = result.scalar_one_or_none()
        return self._to_entity(model) if model else None

    async def add(self, api_key: ApiKey) -> ApiKey:
        self.session.add(
            ApiKeyModel(
                id=api_key.id,
                key=api_key.key,
                merchant_id=api_key.merchant_id,
                name=api_key.name,
                is_active=api_key.is_active,
                last_used_at=api_key.last_used_at,
            )
        )
        await self.session.flush()
        return api_key

    async def touch(self, api_key_id: str) -> None:
        await self.session.execute(
            update(ApiKeyModel)
            .where(ApiKeyModel.id == api_key_id)
            .values(last_used_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
