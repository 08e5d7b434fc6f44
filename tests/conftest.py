"""Pytest bootstrap configuration.

Ensure environment variables are set before test collection and module
imports that depend on application settings.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_REQUEST_BODY_ENABLE_BY_DEFAULT", "false")

from dataclasses import dataclass
from decimal import Decimal
from typing import List

import pytest
import pytest_asyncio
from sqlalchemy import update
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from application.dtos.novapay import AuthorizeRequest, ReserveRequest
from application.services.flow_service import FlowService
from domain.card.entity import Card, CardStatus
from domain.flow.entity import FlowState
from domain.merchant.entity import ApiKey, Merchant
from infrastructure.models import Base, MerchantModel, PaymentFlowModel
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@dataclass(frozen=True)
class SeedData:
    payer_id: str = "usr_payer"
    card_number: str = "7000123456789012"
    expiry_month: str = "12"
    expiry_year: str = "35"
    security_code: str = "123"

    frozen_card: str = "7000000000000002"
    expired_card: str = "7000000000000003"
    poor_payer_id: str = "usr_poor"
    poor_card: str = "7000000000000004"

    merchant_id: str = "mch_acme"
    api_key_id: str = "key_acme"
    api_key: str = "np_live_acme"
    legacy_api_key: str = "pk_legacy_acme"
    other_merchant_id: str = "mch_other"
    other_api_key_id: str = "key_other"
    other_api_key: str = "np_live_other"
    revoked_api_key: str = "np_live_revoked"

    payer_usd: Decimal = Decimal("500.00")
    payer_jpy: Decimal = Decimal("100000")
    poor_usd: Decimal = Decimal("10.00")


SEED = SeedData()


class RecordingNotifier:
    """WebhookNotifier double that remembers which flows were scheduled."""

    def __init__(self) -> None:
        self.flow_ids: List[str] = []

    def notify(self, flow_id: str) -> None:
        self.flow_ids.append(flow_id)


async def _seed(session_factory) -> None:
    async with SQLAlchemyUnitOfWork(session_factory=session_factory) as uow:
        cards = [
            Card(id="card_ok", card_number=SEED.card_number, owner_id=SEED.payer_id,
                 expiry_date="12/35", cvv=SEED.security_code),
            Card(id="card_frozen", card_number=SEED.frozen_card, owner_id="usr_frozen",
                 expiry_date="12/35", cvv="222", status=CardStatus.FROZEN),
            Card(id="card_expired", card_number=SEED.expired_card, owner_id="usr_expired",
                 expiry_date="01/20", cvv="333"),
            Card(id="card_poor", card_number=SEED.poor_card, owner_id=SEED.poor_payer_id,
                 expiry_date="12/35", cvv="444"),
        ]
        for card in cards:
            await uow.cards.add(card)

        await uow.merchants.add(Merchant(id=SEED.merchant_id, name="Acme Store"))
        await uow.merchants.add(Merchant(id=SEED.other_merchant_id, name="Other Shop"))

        await uow.api_keys.add(ApiKey(id=SEED.api_key_id, key=SEED.api_key, merchant_id=SEED.merchant_id))
        await uow.api_keys.add(ApiKey(id="key_acme_legacy", key=SEED.legacy_api_key, merchant_id=SEED.merchant_id))
        await uow.api_keys.add(
            ApiKey(id=SEED.other_api_key_id, key=SEED.other_api_key, merchant_id=SEED.other_merchant_id)
        )
        await uow.api_keys.add(
            ApiKey(id="key_revoked", key=SEED.revoked_api_key, merchant_id=SEED.merchant_id, is_active=False)
        )

        await uow.balances.set_balance(SEED.payer_id, "USD", SEED.payer_usd)
        await uow.balances.set_balance(SEED.payer_id, "JPY", SEED.payer_jpy)
        await uow.balances.set_balance("usr_frozen", "USD", Decimal("500.00"))
        await uow.balances.set_balance("usr_expired", "USD", Decimal("500.00"))
        await uow.balances.set_balance(SEED.poor_payer_id, "USD", SEED.poor_usd)


@pytest.fixture
def seed() -> SeedData:
    return SEED


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'novapay.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    factory = async_sessionmaker(bind=engine, expire_on_commit=False)
    await _seed(factory)
    return factory


@pytest.fixture
def uow_factory(session_factory):
    def factory(**kwargs):
        return SQLAlchemyUnitOfWork(session_factory=session_factory, **kwargs)
    return factory


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def flow_service(uow_factory, notifier) -> FlowService:
    return FlowService(uow_factory=uow_factory, notifier=notifier)


@pytest.fixture
def balance(uow_factory):
    """Read the current available balance of (account, currency)."""

    async def read(account_id: str, currency: str = "USD") -> Decimal:
        async with uow_factory(readonly=True) as uow:
            current = await uow.balances.get(account_id, currency)
        return current.amount if current else Decimal("0")

    return read


@pytest.fixture
def ledger_entries(uow_factory):
    async def read(flow_id: str):
        async with uow_factory(readonly=True) as uow:
            return await uow.ledger.list_by_flow(flow_id)

    return read


@pytest.fixture
def backdate_expiry(session_factory):
    """Move a flow's expires_at into the past."""

    async def apply(flow_id: str, expires_at) -> None:
        async with session_factory() as session, session.begin():
            await session.execute(
                update(PaymentFlowModel)
                .where(PaymentFlowModel.flow_id == flow_id)
                .values(expires_at=expires_at)
            )

    return apply


@pytest.fixture
def set_merchant_status(session_factory):
    """Change a merchant's status in the directory (e.g. suspend it)."""

    async def apply(merchant_id: str, status: str) -> None:
        async with session_factory() as session, session.begin():
            await session.execute(
                update(MerchantModel).where(MerchantModel.id == merchant_id).values(status=status)
            )

    return apply


@pytest.fixture
def reserve_request():
    def build(amount: str = "100.00", currency: str = "USD", **extra) -> ReserveRequest:
        fields = {"memo": "Order #1001", **extra}
        return ReserveRequest(amount=Decimal(amount), currency=currency, **fields)

    return build


@pytest.fixture
def authorize_request():
    def build(flow_id: str, **overrides) -> AuthorizeRequest:
        fields = {
            "flow_id": flow_id,
            "card_number": SEED.card_number,
            "expiry_month": SEED.expiry_month,
            "expiry_year": SEED.expiry_year,
            "security_code": SEED.security_code,
            "cardholder_email": "payer@example.com",
        }
        fields.update(overrides)
        return AuthorizeRequest(**fields)

    return build


@pytest.fixture
def reserved_flow(flow_service, reserve_request):
    async def create(amount: str = "100.00", currency: str = "USD", **extra):
        return await flow_service.reserve(
            merchant_id=SEED.merchant_id,
            api_key_id=SEED.api_key_id,
            req=reserve_request(amount, currency, **extra),
        )

    return create


@pytest.fixture
def held_flow(flow_service, reserved_flow, authorize_request):
    async def create(amount: str = "100.00", currency: str = "USD", **extra):
        flow = await reserved_flow(amount, currency, **extra)
        outcome = await flow_service.authorize(authorize_request(flow.flow_id))
        assert outcome.flow.state == FlowState.HELD
        return outcome.flow

    return create
