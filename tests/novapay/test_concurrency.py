import asyncio
import copy
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event

from application.dtos.novapay import ChargeRequest, RefundRequest, VoidRequest
from domain.common.exceptions import ConcurrentFlowUpdateException
from domain.flow.entity import FlowState
from domain.ledger.entity import LedgerEntryType
from infrastructure.repositories.flow_repository import SQLAlchemyFlowRepository
from shared.codes import ResultCode


def _disable_driver_begin(dbapi_connection, connection_record):
    # pysqlite 的延迟 BEGIN 会让两个读事务在升级写锁时互相报 "database is locked"
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA busy_timeout = 30000")
    cursor.close()


def _begin_immediate(conn):
    conn.exec_driver_sql("BEGIN IMMEDIATE")


@pytest_asyncio.fixture
async def engine(engine):
    """Writers queue on the database lock, as concurrent transactions do on Postgres row locks."""
    event.listen(engine.sync_engine, "connect", _disable_driver_begin)
    event.listen(engine.sync_engine, "begin", _begin_immediate)
    # 丢弃已建立的连接，让新连接经过 connect 事件
    await engine.dispose()
    return engine


@pytest.mark.asyncio
async def test_stale_authorize_rolls_back_its_hold(
    flow_service, reserved_flow, authorize_request, balance, ledger_entries, seed, monkeypatch
):
    flow = await reserved_flow("100.00")
    stale = copy.deepcopy(flow)
    await flow_service.authorize(authorize_request(flow.flow_id))
    assert await balance(seed.payer_id) == Decimal("400.00")

    async def stale_get(self, flow_id):
        return copy.deepcopy(stale)

    monkeypatch.setattr(SQLAlchemyFlowRepository, "get", stale_get)

    with pytest.raises(ConcurrentFlowUpdateException):
        await flow_service.authorize(authorize_request(flow.flow_id))

    monkeypatch.undo()
    assert await balance(seed.payer_id) == Decimal("400.00")
    entries = await ledger_entries(flow.flow_id)
    assert [e.type for e in entries] == [LedgerEntryType.HOLD_DEBIT]


@pytest.mark.asyncio
async def test_stale_charge_after_void_has_no_side_effects(
    flow_service, held_flow, balance, seed, monkeypatch
):
    flow = await held_flow("100.00")
    stale = copy.deepcopy(flow)
    await flow_service.void(merchant_id=seed.merchant_id, req=VoidRequest(flow_id=flow.flow_id))

    async def stale_get(self, flow_id):
        return copy.deepcopy(stale)

    monkeypatch.setattr(SQLAlchemyFlowRepository, "get", stale_get)
    with pytest.raises(ConcurrentFlowUpdateException):
        await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=flow.flow_id))
    monkeypatch.undo()

    assert await balance(seed.payer_id) == seed.payer_usd
    assert await balance(seed.merchant_id) == Decimal("0")
    current = await flow_service.lookup(merchant_id=seed.merchant_id, flow_id=flow.flow_id)
    assert current.state == FlowState.VOIDED
    assert current.version == stale.version + 1


@pytest.mark.asyncio
async def test_concurrent_authorizations_cannot_overdraw_the_payer(
    flow_service, reserved_flow, authorize_request, balance, ledger_entries, seed
):
    first = await reserved_flow("8.00")
    second = await reserved_flow("8.00")

    outcomes = await asyncio.gather(
        *(
            flow_service.authorize(
                authorize_request(flow.flow_id, card_number=seed.poor_card, security_code="444")
            )
            for flow in (first, second)
        )
    )

    assert sorted(o.flow.state.value for o in outcomes) == ["DENIED", "HELD"]
    denied = next(o for o in outcomes if o.flow.state == FlowState.DENIED)
    assert denied.code == ResultCode.INSUFFICIENT_FUNDS
    assert await balance(seed.poor_payer_id) == Decimal("2.00")

    holds = [
        entry
        for flow in (first, second)
        for entry in await ledger_entries(flow.flow_id)
        if entry.type == LedgerEntryType.HOLD_DEBIT
    ]
    assert len(holds) == 1
    assert holds[0].amount == Decimal("-8.00")


@pytest.mark.asyncio
async def test_refund_racing_a_charge_keeps_merchant_balance_consistent(
    flow_service, held_flow, balance, ledger_entries, seed
):
    settled = await held_flow("100.00")
    await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=settled.flow_id))
    held = await held_flow("100.00")
    assert await balance(seed.merchant_id) == Decimal("97.50")

    refund, charge = await asyncio.gather(
        flow_service.refund(
            merchant_id=seed.merchant_id,
            req=RefundRequest(flow_id=settled.flow_id, amount=Decimal("50.00")),
        ),
        flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=held.flow_id)),
    )

    assert refund.flow.state == FlowState.RETURNED
    assert charge.flow.state == FlowState.SETTLED
    # 97.50 - 50.00 + 97.50
    assert await balance(seed.merchant_id) == Decimal("145.00")
    assert await balance(seed.payer_id) == Decimal("350.00")

    refund_types = sorted(e.type.value for e in await ledger_entries(settled.flow_id))
    assert refund_types.count(LedgerEntryType.REFUND_DEBIT.value) == 1
    assert refund_types.count(LedgerEntryType.REFUND_CREDIT.value) == 1
    captures = [e for e in await ledger_entries(held.flow_id) if e.type == LedgerEntryType.CAPTURE_CREDIT]
    assert len(captures) == 1
