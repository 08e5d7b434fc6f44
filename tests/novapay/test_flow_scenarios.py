from decimal import Decimal

import pytest

from application.dtos.novapay import ChargeRequest, RefundRequest, VoidRequest
from domain.common.exceptions import (
    FlowNotFoundException,
    InsufficientFundsException,
    InvalidAmountException,
    InvalidStateTransitionException,
    MerchantNotFoundException,
    MissingFieldException,
    RefundExceedsOriginalException,
    UnsupportedCurrencyException,
)
from domain.flow.entity import FlowState
from domain.ledger.entity import LedgerEntryType
from shared.codes import ResultCode


@pytest.mark.asyncio
async def test_scenario_a_authorize_holds_funds(held_flow, balance, ledger_entries, seed):
    flow = await held_flow("100.00")

    assert flow.state == FlowState.HELD
    assert flow.held_amount == Decimal("100.00")
    assert await balance(seed.payer_id) == Decimal("400.00")
    entries = await ledger_entries(flow.flow_id)
    assert [e.type for e in entries] == [LedgerEntryType.HOLD_DEBIT]
    assert entries[0].amount == Decimal("-100.00")


@pytest.mark.asyncio
async def test_scenario_b_charge_credits_merchant_net_of_fee(flow_service, held_flow, balance, ledger_entries, seed):
    flow = await held_flow("100.00")

    outcome = await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=flow.flow_id))

    assert outcome.code == ResultCode.CHARGE_COMPLETE
    assert outcome.flow.state == FlowState.SETTLED
    assert outcome.fee == Decimal("2.50")
    assert outcome.net_amount == Decimal("97.50")
    assert await balance(seed.merchant_id) == Decimal("97.50")
    assert await balance(seed.payer_id) == Decimal("400.00")

    capture = [e for e in await ledger_entries(flow.flow_id) if e.type == LedgerEntryType.CAPTURE_CREDIT]
    assert len(capture) == 1
    assert capture[0].fee == Decimal("2.50")
    assert capture[0].id == outcome.flow.charge_transaction_id


@pytest.mark.asyncio
async def test_scenario_c_void_restores_payer(flow_service, held_flow, balance, seed):
    flow = await held_flow("100.00")

    outcome = await flow_service.void(merchant_id=seed.merchant_id, req=VoidRequest(flow_id=flow.flow_id))

    assert outcome.flow.state == FlowState.VOIDED
    assert outcome.released_amount == Decimal("100.00")
    assert await balance(seed.payer_id) == seed.payer_usd


@pytest.mark.asyncio
async def test_scenario_d_partial_refunds_until_exhausted(flow_service, uow_factory, held_flow, balance, ledger_entries, seed):
    flow = await held_flow("100.00")
    await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=flow.flow_id))

    first = await flow_service.refund(
        merchant_id=seed.merchant_id,
        req=RefundRequest(flow_id=flow.flow_id, amount=Decimal("40.00"), reason="damaged"),
    )
    assert first.flow.state == FlowState.RETURNED
    assert first.flow.returned_amount == Decimal("40.00")
    assert await balance(seed.payer_id) == Decimal("440.00")
    assert await balance(seed.merchant_id) == Decimal("57.50")

    # 商户余额 57.50 不足以退还剩余 60.00，先充值
    async with uow_factory() as uow:
        await uow.balances.set_balance(seed.merchant_id, "USD", Decimal("100.00"))

    second = await flow_service.refund(
        merchant_id=seed.merchant_id,
        req=RefundRequest(flow_id=flow.flow_id, amount=Decimal("60.00")),
    )
    assert second.flow.returned_amount == Decimal("100.00")
    assert await balance(seed.payer_id) == seed.payer_usd

    before = (await balance(seed.payer_id), await balance(seed.merchant_id))
    with pytest.raises(RefundExceedsOriginalException):
        await flow_service.refund(
            merchant_id=seed.merchant_id,
            req=RefundRequest(flow_id=flow.flow_id, amount=Decimal("0.01")),
        )
    assert (await balance(seed.payer_id), await balance(seed.merchant_id)) == before

    entries = await ledger_entries(flow.flow_id)
    refund_debits = [e for e in entries if e.type == LedgerEntryType.REFUND_DEBIT]
    assert [e.id for e in refund_debits] == second.flow.refund_transaction_ids
    assert refund_debits[0].description == "Refund: damaged"


@pytest.mark.asyncio
async def test_partial_charge_releases_remainder(flow_service, held_flow, balance, ledger_entries, seed):
    flow = await held_flow("100.00")

    outcome = await flow_service.charge(
        merchant_id=seed.merchant_id,
        req=ChargeRequest(flow_id=flow.flow_id, amount=Decimal("60.00")),
    )

    assert outcome.flow.settled_amount == Decimal("60.00")
    assert outcome.fee == Decimal("1.50")
    assert outcome.released_amount == Decimal("40.00")
    assert await balance(seed.payer_id) == Decimal("440.00")
    assert await balance(seed.merchant_id) == Decimal("58.50")
    types = [e.type for e in await ledger_entries(flow.flow_id)]
    assert types.count(LedgerEntryType.VOID_CREDIT) == 1


@pytest.mark.asyncio
async def test_jpy_flow_uses_zero_decimals(flow_service, held_flow, balance, seed):
    flow = await held_flow("1200", "JPY")

    outcome = await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=flow.flow_id))

    assert outcome.fee == Decimal("30")
    assert await balance(seed.merchant_id, "JPY") == Decimal("1170")
    assert await balance(seed.payer_id, "JPY") == Decimal("98800")


@pytest.mark.asyncio
async def test_charge_above_held_amount_is_rejected(flow_service, held_flow, balance, seed):
    flow = await held_flow("100.00")

    with pytest.raises(InvalidAmountException):
        await flow_service.charge(
            merchant_id=seed.merchant_id,
            req=ChargeRequest(flow_id=flow.flow_id, amount=Decimal("100.01")),
        )

    assert await balance(seed.merchant_id) == Decimal("0")
    current = await flow_service.lookup(merchant_id=seed.merchant_id, flow_id=flow.flow_id)
    assert current.state == FlowState.HELD


@pytest.mark.asyncio
async def test_invalid_transitions_have_no_side_effects(flow_service, held_flow, reserved_flow, balance, ledger_entries, seed):
    created = await reserved_flow("50.00")
    with pytest.raises(InvalidStateTransitionException):
        await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=created.flow_id))
    assert await ledger_entries(created.flow_id) == []

    settled = await held_flow("100.00")
    await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=settled.flow_id))
    before = (await balance(seed.payer_id), await balance(seed.merchant_id))
    with pytest.raises(InvalidStateTransitionException):
        await flow_service.void(merchant_id=seed.merchant_id, req=VoidRequest(flow_id=settled.flow_id))
    assert (await balance(seed.payer_id), await balance(seed.merchant_id)) == before


@pytest.mark.asyncio
async def test_refund_fails_when_merchant_balance_is_short(flow_service, held_flow, balance, seed):
    flow = await held_flow("100.00")
    await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=flow.flow_id))

    with pytest.raises(InsufficientFundsException):
        await flow_service.refund(merchant_id=seed.merchant_id, req=RefundRequest(flow_id=flow.flow_id))

    assert await balance(seed.merchant_id) == Decimal("97.50")
    current = await flow_service.lookup(merchant_id=seed.merchant_id, flow_id=flow.flow_id)
    assert current.state == FlowState.SETTLED
    assert current.returned_amount == Decimal("0")


@pytest.mark.asyncio
async def test_flows_are_scoped_to_their_merchant(flow_service, held_flow, seed):
    flow = await held_flow("100.00")

    with pytest.raises(FlowNotFoundException):
        await flow_service.lookup(merchant_id=seed.other_merchant_id, flow_id=flow.flow_id)
    with pytest.raises(FlowNotFoundException):
        await flow_service.void(merchant_id=seed.other_merchant_id, req=VoidRequest(flow_id=flow.flow_id))


@pytest.mark.asyncio
async def test_reserve_validation(flow_service, reserve_request, seed):
    async def reserve(req):
        return await flow_service.reserve(merchant_id=seed.merchant_id, api_key_id=seed.api_key_id, req=req)

    with pytest.raises(InvalidAmountException):
        await reserve(reserve_request("0"))
    with pytest.raises(InvalidAmountException):
        await reserve(reserve_request("10.001"))
    with pytest.raises(UnsupportedCurrencyException):
        await reserve(reserve_request("10.00", "XYZ"))
    with pytest.raises(MissingFieldException):
        await reserve(reserve_request("10.00", memo="   "))

    flow = await reserve(reserve_request("10.00", "usd", merchant_ref="ORD-1"))
    assert flow.currency == "USD"
    assert flow.state == FlowState.CREATED
    assert flow.merchant_ref == "ORD-1"


@pytest.mark.asyncio
async def test_reserve_for_unknown_merchant_is_rejected(flow_service, reserve_request, seed):
    with pytest.raises(MerchantNotFoundException) as exc_info:
        await flow_service.reserve(merchant_id="mch_missing", api_key_id=seed.api_key_id, req=reserve_request("10.00"))

    assert exc_info.value.code == ResultCode.MERCHANT_NOT_FOUND
    assert exc_info.value.details == {"merchant_id": "mch_missing"}


@pytest.mark.asyncio
async def test_charge_for_suspended_merchant_keeps_the_hold(
    flow_service, held_flow, set_merchant_status, balance, ledger_entries, seed
):
    flow = await held_flow("100.00")
    await set_merchant_status(seed.merchant_id, "suspended")

    with pytest.raises(MerchantNotFoundException) as exc_info:
        await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=flow.flow_id))

    assert exc_info.value.flow_id == flow.flow_id
    current = await flow_service.lookup(merchant_id=seed.merchant_id, flow_id=flow.flow_id)
    assert current.state == FlowState.HELD
    assert await balance(seed.merchant_id) == Decimal("0")
    assert await balance(seed.payer_id) == Decimal("400.00")
    assert [e.type for e in await ledger_entries(flow.flow_id)] == [LedgerEntryType.HOLD_DEBIT]


@pytest.mark.asyncio
async def test_refund_for_closed_merchant_is_rejected(flow_service, held_flow, set_merchant_status, balance, seed):
    flow = await held_flow("100.00")
    await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=flow.flow_id))
    await set_merchant_status(seed.merchant_id, "closed")

    with pytest.raises(MerchantNotFoundException):
        await flow_service.refund(
            merchant_id=seed.merchant_id, req=RefundRequest(flow_id=flow.flow_id, amount=Decimal("10.00"))
        )

    current = await flow_service.lookup(merchant_id=seed.merchant_id, flow_id=flow.flow_id)
    assert current.state == FlowState.SETTLED
    assert await balance(seed.merchant_id) == Decimal("97.50")
