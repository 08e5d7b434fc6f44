import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from application.dtos.novapay import ChargeRequest
from application.ports.notifier import DeliveryAttempt
from application.services.flow_service import FlowService
from application.services.webhook_service import WebhookDeliveryService
from core.config import WebhookSettings
from domain.flow.entity import FlowState
from domain.webhook.entity import OutboxStatus
from infrastructure.external.webhooks import HttpWebhookSender, sign_payload
from infrastructure.repositories.webhook_repository import SQLAlchemyWebhookOutboxRepository


HOOK_URL = "https://merchant.example/novapay/hooks"


def _config(**overrides) -> WebhookSettings:
    values = dict(max_attempts=2, backoff_base_seconds=30, backoff_max_seconds=3600, signing_secret="whsec_test")
    values.update(overrides)
    return WebhookSettings(**values)


def _sender(handler, config: WebhookSettings) -> HttpWebhookSender:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpWebhookSender(config=config, client=client)


async def _outbox(uow_factory, flow_id):
    async with uow_factory(readonly=True) as uow:
        return await uow.outbox.list_by_flow(flow_id)


def _later(seconds: int = 1) -> datetime:
    return datetime.now(timezone.utc) + timedelta(seconds=seconds)


@pytest.mark.asyncio
async def test_transitions_stage_outbox_messages(flow_service, held_flow, uow_factory, notifier, seed):
    flow = await held_flow("100.00", notify_url=HOOK_URL, merchant_ref="ORD-7", merchant_data={"cart": "42"})
    await flow_service.charge(merchant_id=seed.merchant_id, req=ChargeRequest(flow_id=flow.flow_id))

    messages = await _outbox(uow_factory, flow.flow_id)
    assert [m.event_type for m in messages] == ["flow.held", "flow.settled"]
    assert all(m.status == OutboxStatus.PENDING for m in messages)
    payload = messages[1].payload
    assert payload["flowId"] == flow.flow_id
    assert payload["merchantRef"] == "ORD-7"
    assert payload["state"] == "SETTLED"
    assert payload["data"] == {"cart": "42"}
    assert notifier.flow_ids == [flow.flow_id, flow.flow_id]


@pytest.mark.asyncio
async def test_no_notify_url_means_no_outbox(held_flow, uow_factory, notifier):
    flow = await held_flow("100.00")

    assert await _outbox(uow_factory, flow.flow_id) == []
    assert notifier.flow_ids == []


@pytest.mark.asyncio
async def test_notifier_failure_does_not_affect_the_flow(uow_factory, reserve_request, authorize_request, seed):
    class BrokenNotifier:
        def notify(self, flow_id):
            raise ConnectionError("broker down")

    service = FlowService(uow_factory=uow_factory, notifier=BrokenNotifier())
    flow = await service.reserve(
        merchant_id=seed.merchant_id,
        api_key_id=seed.api_key_id,
        req=reserve_request("20.00", notify_url=HOOK_URL),
    )

    outcome = await service.authorize(authorize_request(flow.flow_id))

    assert outcome.flow.state == FlowState.HELD
    assert len(await _outbox(uow_factory, flow.flow_id)) == 1


@pytest.mark.asyncio
async def test_drain_delivers_signed_payload(held_flow, uow_factory):
    flow = await held_flow("100.00", notify_url=HOOK_URL)
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(204)

    config = _config()
    sender = _sender(handler, config)
    report = await WebhookDeliveryService(uow_factory, sender, config).drain(now=_later())
    await sender.client.aclose()

    assert report.delivered == 1
    request = received[0]
    assert str(request.url) == HOOK_URL
    assert request.headers["X-NovaPay-Event"] == "flow.held"
    assert request.headers["X-NovaPay-Signature"] == sign_payload("whsec_test", request.content)
    body = json.loads(request.content)
    assert body["eventType"] == "flow.held"
    assert request.headers["X-NovaPay-Event-Id"] == body["eventId"]

    [message] = await _outbox(uow_factory, flow.flow_id)
    assert message.status == OutboxStatus.DELIVERED
    assert message.attempts == 1


@pytest.mark.asyncio
async def test_failed_delivery_backs_off_then_dead_letters(held_flow, uow_factory):
    flow = await held_flow("100.00", notify_url=HOOK_URL)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    config = _config()
    sender = _sender(handler, config)
    service = WebhookDeliveryService(uow_factory, sender, config)
    now = _later()

    first = await service.drain(now=now)
    assert first.retrying == 1
    [message] = await _outbox(uow_factory, flow.flow_id)
    assert message.attempts == 1
    assert message.last_error == "HTTP 500"
    assert message.next_attempt_at == now + timedelta(seconds=30)

    # 尚未到下次重试时间
    assert (await service.drain(now=now + timedelta(seconds=10))).total == 0

    second = await service.drain(now=now + timedelta(seconds=31))
    assert second.dead == 1
    [message] = await _outbox(uow_factory, flow.flow_id)
    assert message.status == OutboxStatus.DEAD
    assert len(calls) == 2

    assert (await service.drain(now=now + timedelta(days=1))).total == 0
    await sender.client.aclose()


@pytest.mark.asyncio
async def test_transport_errors_are_retried_inline(held_flow, uow_factory):
    await held_flow("100.00", notify_url=HOOK_URL)
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200)

    config = _config(inline_retries=2)
    sender = _sender(handler, config)
    report = await WebhookDeliveryService(uow_factory, sender, config).drain(now=_later())
    await sender.client.aclose()

    assert report.delivered == 1
    assert len(attempts) == 2


def test_request_is_unsigned_without_secret():
    from domain.webhook.entity import WebhookMessage

    message = WebhookMessage(
        id=1, event_id="evt_1", flow_id="npf_1", event_type="flow.voided", url=HOOK_URL,
        payload={"flowId": "npf_1", "state": "VOIDED"},
    )
    body, headers = HttpWebhookSender(config=_config(signing_secret=None)).build_request(message)

    assert json.loads(body) == {"flowId": "npf_1", "state": "VOIDED"}
    assert "X-NovaPay-Signature" not in headers
    assert headers["X-NovaPay-Event"] == "flow.voided"


class InspectingSender:
    """Accepts every message and, mid-send, looks at what another worker could claim."""

    def __init__(self, uow_factory, now):
        self._uow_factory = uow_factory
        self._now = now
        self.sent = []
        self.claimable_during_send = []

    async def send(self, message):
        self.sent.append(message.id)
        async with self._uow_factory() as uow:
            self.claimable_during_send.append(await uow.outbox.claim_due(self._now, 50))
        return DeliveryAttempt(ok=True, status_code=200)

    async def aclose(self):
        return None


@pytest.mark.asyncio
async def test_messages_in_flight_are_not_claimed_twice(held_flow, uow_factory):
    flow = await held_flow("100.00", notify_url=HOOK_URL)
    now = _later()
    sender = InspectingSender(uow_factory, now)

    report = await WebhookDeliveryService(uow_factory, sender, _config()).drain(now=now)

    assert report.delivered == 1
    assert sender.claimable_during_send == [[]]
    [message] = await _outbox(uow_factory, flow.flow_id)
    assert message.status == OutboxStatus.DELIVERED


@pytest.mark.asyncio
async def test_each_delivery_outcome_is_committed_on_its_own(held_flow, uow_factory, monkeypatch):
    first = await held_flow("10.00", notify_url=HOOK_URL)
    second = await held_flow("20.00", notify_url=HOOK_URL)
    [broken] = await _outbox(uow_factory, second.flow_id)
    original_update = SQLAlchemyWebhookOutboxRepository.update

    async def update(self, message):
        if message.id == broken.id:
            raise ConnectionError("database went away")
        return await original_update(self, message)

    monkeypatch.setattr(SQLAlchemyWebhookOutboxRepository, "update", update)
    now = _later()
    service = WebhookDeliveryService(uow_factory, InspectingSender(uow_factory, now), _config())

    with pytest.raises(ConnectionError):
        await service.drain(now=now)
    monkeypatch.undo()

    [delivered] = await _outbox(uow_factory, first.flow_id)
    assert delivered.status == OutboxStatus.DELIVERED
    # 结果未能保存的消息保持 pending，租约到期后重新投递
    [pending] = await _outbox(uow_factory, second.flow_id)
    assert pending.status == OutboxStatus.PENDING
    assert pending.next_attempt_at > now
    async with uow_factory() as uow:
        assert await uow.outbox.claim_due(now, 50) == []
    async with uow_factory() as uow:
        assert [m.id for m in await uow.outbox.claim_due(pending.next_attempt_at, 50)] == [broken.id]
