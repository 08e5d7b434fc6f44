"""
NovaPay API routes.

Merchant operations (reserve/charge/void/refund/lookup) require X-NovaPay-Key;
mutations honor the Idempotency-Key header. Authorize is payer-facing.
Keep this thin: the state machine lives in the domain layer.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Query, status

from api.dependencies import (
    MerchantPrincipal,
    get_current_merchant,
    get_flow_service,
    get_idempotency_service,
    get_idempotency_token,
)
from application.dtos.novapay import (
    AuthorizeData,
    AuthorizeRequest,
    ChargeData,
    ChargeRequest,
    CheckoutView,
    FlowSnapshot,
    RefundData,
    RefundRequest,
    ReserveData,
    ReserveRequest,
    VoidData,
    VoidRequest,
    iso_z,
)
from application.services.flow_service import FlowService
from application.services.idempotency_service import IdempotencyService, StoredResponse
from core.exceptions import render_business_exception
from core.logging_config import get_logger
from core.response import build_envelope, envelope_json, envelope_response, success_response
from domain.common.exceptions import BusinessException, MissingFieldException
from domain.common.money import ZERO, format_amount
from domain.flow.service import TransitionOutcome
from shared.codes import ResultCode, http_status_for


router = APIRouter(prefix="/novapay", tags=["NovaPay"])
logger = get_logger(__name__)


def _stored(code: ResultCode, data: Any, *, flow_id: Optional[str], status_code: Optional[int] = None) -> StoredResponse:
    envelope = build_envelope(code, data, flow_id=flow_id)
    return StoredResponse(
        status_code=status_code or http_status_for(code),
        body=envelope_json(envelope),
        result_code=int(code),
        flow_id=flow_id,
    )


async def _idempotent(
    idem: IdempotencyService,
    merchant: MerchantPrincipal,
    token: Optional[str],
    operation: str,
    req: Any,
    produce: Callable[[], Awaitable[StoredResponse]],
):
    """执行变更操作；业务异常也渲染为信封，便于幂等重放"""

    async def handler() -> StoredResponse:
        try:
            return await produce()
        except BusinessException as exc:
            status_code, body = render_business_exception(exc)
            return StoredResponse(
                status_code=status_code,
                body=body,
                result_code=int(exc.code),
                flow_id=exc.flow_id,
            )

    stored = await idem.execute(
        api_key_id=merchant.api_key_id,
        token=token,
        operation=operation,
        body=req.model_dump(mode="json", by_alias=True),
        handler=handler,
    )
    return envelope_response(stored.body, stored.status_code, replayed=stored.replayed)


def _state_data(outcome: TransitionOutcome) -> dict:
    return {"flowId": outcome.flow.flow_id, "state": outcome.flow.state.value}


@router.post("/reserve", status_code=status.HTTP_201_CREATED)
async def reserve(
    req: ReserveRequest,
    merchant: MerchantPrincipal = Depends(get_current_merchant),
    token: Optional[str] = Depends(get_idempotency_token),
    service: FlowService = Depends(get_flow_service),
    idem: IdempotencyService = Depends(get_idempotency_service),
):
    async def produce() -> StoredResponse:
        flow = await service.reserve(
            merchant_id=merchant.merchant_id,
            api_key_id=merchant.api_key_id,
            req=req,
        )
        data = ReserveData(
            flow_id=flow.flow_id,
            checkout_url=service.checkout_url(flow.flow_id),
            state=flow.state.value,
            expires_at=iso_z(flow.expires_at),
        )
        return _stored(
            ResultCode.APPROVED,
            data,
            flow_id=flow.flow_id,
            status_code=status.HTTP_201_CREATED,
        )

    return await _idempotent(idem, merchant, token, "reserve", req, produce)


@router.get("/authorize")
async def checkout(
    flow_id: Optional[str] = Query(default=None, alias="flowId"),
    service: FlowService = Depends(get_flow_service),
):
    """付款页数据：展示金额、说明与回跳地址"""
    if not flow_id:
        raise MissingFieldException("flowId")
    flow = await service.checkout_view(flow_id)
    return success_response(ResultCode.APPROVED, CheckoutView.from_flow(flow), flow_id=flow.flow_id)


@router.post("/authorize")
async def authorize(
    req: AuthorizeRequest,
    service: FlowService = Depends(get_flow_service),
):
    outcome = await service.authorize(req)
    flow = outcome.flow
    if outcome.ok:
        data = AuthorizeData(
            flow_id=flow.flow_id,
            state=flow.state.value,
            redirect_url=flow.on_complete,
            on_complete=flow.on_complete,
            on_cancel=flow.on_cancel,
        )
    else:
        data = AuthorizeData(
            flow_id=flow.flow_id,
            state=flow.state.value,
            redirect_url=flow.on_cancel,
        )
    stored = _stored(outcome.code, data, flow_id=flow.flow_id)
    return envelope_response(stored.body, stored.status_code)


@router.post("/charge")
async def charge(
    req: ChargeRequest,
    merchant: MerchantPrincipal = Depends(get_current_merchant),
    token: Optional[str] = Depends(get_idempotency_token),
    service: FlowService = Depends(get_flow_service),
    idem: IdempotencyService = Depends(get_idempotency_service),
):
    async def produce() -> StoredResponse:
        outcome = await service.charge(merchant_id=merchant.merchant_id, req=req)
        flow = outcome.flow
        if not outcome.ok:
            return _stored(outcome.code, _state_data(outcome), flow_id=flow.flow_id)
        data = ChargeData(
            flow_id=flow.flow_id,
            state=flow.state.value,
            settled_amount=format_amount(flow.settled_amount, flow.currency),
            net_amount=format_amount(outcome.net_amount, flow.currency),
            fee=format_amount(outcome.fee, flow.currency),
        )
        return _stored(outcome.code, data, flow_id=flow.flow_id)

    return await _idempotent(idem, merchant, token, "charge", req, produce)


@router.post("/void")
async def void(
    req: VoidRequest,
    merchant: MerchantPrincipal = Depends(get_current_merchant),
    token: Optional[str] = Depends(get_idempotency_token),
    service: FlowService = Depends(get_flow_service),
    idem: IdempotencyService = Depends(get_idempotency_service),
):
    async def produce() -> StoredResponse:
        outcome = await service.void(merchant_id=merchant.merchant_id, req=req)
        flow = outcome.flow
        data = VoidData(
            flow_id=flow.flow_id,
            state=flow.state.value,
            released_amount=format_amount(outcome.released_amount or ZERO, flow.currency),
        )
        return _stored(outcome.code, data, flow_id=flow.flow_id)

    return await _idempotent(idem, merchant, token, "void", req, produce)


@router.post("/refund")
async def refund(
    req: RefundRequest,
    merchant: MerchantPrincipal = Depends(get_current_merchant),
    token: Optional[str] = Depends(get_idempotency_token),
    service: FlowService = Depends(get_flow_service),
    idem: IdempotencyService = Depends(get_idempotency_service),
):
    async def produce() -> StoredResponse:
        outcome = await service.refund(merchant_id=merchant.merchant_id, req=req)
        flow = outcome.flow
        data = RefundData(
            flow_id=flow.flow_id,
            state=flow.state.value,
            refunded_amount=format_amount(outcome.refunded_amount, flow.currency),
            total_refunded=format_amount(flow.returned_amount, flow.currency),
        )
        return _stored(outcome.code, data, flow_id=flow.flow_id)

    return await _idempotent(idem, merchant, token, "refund", req, produce)


async def _lookup(flow_id: Optional[str], merchant: MerchantPrincipal, service: FlowService):
    if not flow_id:
        raise MissingFieldException("flowId")
    flow = await service.lookup(merchant_id=merchant.merchant_id, flow_id=flow_id)
    return success_response(ResultCode.APPROVED, FlowSnapshot.from_flow(flow), flow_id=flow.flow_id)


@router.get("/lookup")
async def lookup_by_query(
    flow_id: Optional[str] = Query(default=None, alias="flowId"),
    merchant: MerchantPrincipal = Depends(get_current_merchant),
    service: FlowService = Depends(get_flow_service),
):
    return await _lookup(flow_id, merchant, service)


@router.get("/lookup/{flow_id}")
async def lookup(
    flow_id: str,
    merchant: MerchantPrincipal = Depends(get_current_merchant),
    service: FlowService = Depends(get_flow_service),
):
    return await _lookup(flow_id, merchant, service)
