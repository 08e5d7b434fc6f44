import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from application.services.idempotency_service import IdempotencyService, StoredResponse
from core.config import IdempotencySettings
from domain.common.exceptions import DuplicateRequestException
from domain.idempotency.entity import idempotency_key, request_fingerprint
from infrastructure.models import IdempotencyRecordModel
from infrastructure.cache.idempotency_store import RedisIdempotencyStore
from infrastructure.cache.redis_cache import RedisCache
from infrastructure.repositories.idempotency_repository import SQLAlchemyIdempotencyStore
from shared.codes import ResultCode


FAST = IdempotencySettings(wait_seconds=0.2, poll_interval_seconds=0.01)


class FakeRedis:
    """Minimal in-memory stand-in for the redis.asyncio commands RedisCache uses."""

    def __init__(self) -> None:
        self.data = {}
        self.ttls = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None, nx=False, xx=False):
        if nx and key in self.data:
            return None
        if xx and key not in self.data:
            return None
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.data.pop(key, None) is not None else 0

    async def exists(self, key):
        return int(key in self.data)


class CountingHandler:
    def __init__(self, code: ResultCode = ResultCode.APPROVED, delay: float = 0.0, fail: bool = False):
        self.calls = 0
        self.code = code
        self.delay = delay
        self.fail = fail

    async def __call__(self) -> StoredResponse:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("boom")
        return StoredResponse(
            status_code=201,
            body=f'{{"ok":true,"call":{self.calls}}}',
            result_code=int(self.code),
            flow_id="npf_1",
        )


@pytest.fixture
def sql_idempotency(session_factory):
    return IdempotencyService(SQLAlchemyIdempotencyStore(session_factory), FAST)


@pytest.fixture
def redis_idempotency():
    cache = RedisCache(FakeRedis(), namespace="novapay")
    return IdempotencyService(RedisIdempotencyStore(cache), IdempotencySettings(wait_seconds=1.0, poll_interval_seconds=0.01))


def test_fingerprint_is_order_insensitive_and_operation_scoped():
    a = request_fingerprint("reserve", {"amount": "10.00", "currency": "USD"})
    b = request_fingerprint("reserve", {"currency": "USD", "amount": "10.00"})
    assert a == b
    assert a != request_fingerprint("charge", {"amount": "10.00", "currency": "USD"})
    assert idempotency_key("key_acme", "tok") == "key_acme:tok"


@pytest.mark.asyncio
async def test_replay_returns_identical_response(sql_idempotency):
    handler = CountingHandler()
    kwargs = dict(api_key_id="key_acme", token="tok-1", operation="reserve", body={"amount": "10.00"}, handler=handler)

    first = await sql_idempotency.execute(**kwargs)
    second = await sql_idempotency.execute(**kwargs)

    assert handler.calls == 1
    assert not first.replayed
    assert second.replayed
    assert second.body == first.body
    assert second.status_code == 201
    assert second.flow_id == "npf_1"


@pytest.mark.asyncio
async def test_token_reused_with_different_body_is_rejected(sql_idempotency):
    handler = CountingHandler()
    await sql_idempotency.execute(
        api_key_id="key_acme", token="tok-2", operation="reserve", body={"amount": "10.00"}, handler=handler
    )

    with pytest.raises(DuplicateRequestException):
        await sql_idempotency.execute(
            api_key_id="key_acme", token="tok-2", operation="reserve", body={"amount": "11.00"}, handler=handler
        )
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_tokens_are_scoped_per_api_key(sql_idempotency):
    handler = CountingHandler()
    for api_key_id in ("key_acme", "key_other"):
        await sql_idempotency.execute(
            api_key_id=api_key_id, token="shared", operation="void", body={"flowId": "npf_1"}, handler=handler
        )
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_without_token_every_request_executes(sql_idempotency):
    handler = CountingHandler()
    for _ in range(2):
        await sql_idempotency.execute(api_key_id="key_acme", token=None, operation="void", body={}, handler=handler)
    assert handler.calls == 2


@pytest.mark.asyncio
async def test_failed_execution_releases_the_claim(sql_idempotency):
    failing = CountingHandler(fail=True)
    with pytest.raises(RuntimeError):
        await sql_idempotency.execute(
            api_key_id="key_acme", token="tok-3", operation="charge", body={"flowId": "npf_1"}, handler=failing
        )

    retry = CountingHandler()
    response = await sql_idempotency.execute(
        api_key_id="key_acme", token="tok-3", operation="charge", body={"flowId": "npf_1"}, handler=retry
    )
    assert retry.calls == 1
    assert not response.replayed


@pytest.mark.asyncio
async def test_system_error_result_is_not_cached(sql_idempotency):
    broken = CountingHandler(code=ResultCode.INTERNAL_ERROR)
    kwargs = dict(api_key_id="key_acme", token="tok-4", operation="charge", body={"flowId": "npf_1"})

    await sql_idempotency.execute(handler=broken, **kwargs)
    await sql_idempotency.execute(handler=broken, **kwargs)

    assert broken.calls == 2


@pytest.mark.asyncio
async def test_in_flight_duplicate_fails_fast(sql_idempotency):
    body = {"flowId": "npf_1"}
    key = idempotency_key("key_acme", "tok-5")
    claimed = await sql_idempotency.store.claim(key, request_fingerprint("void", body), 60)
    assert claimed

    handler = CountingHandler()
    with pytest.raises(DuplicateRequestException):
        await sql_idempotency.execute(api_key_id="key_acme", token="tok-5", operation="void", body=body, handler=handler)
    assert handler.calls == 0


@pytest.mark.asyncio
async def test_purge_removes_expired_records(session_factory, sql_idempotency):
    store = sql_idempotency.store
    await store.claim("key_acme:old", "fp", 60)
    await store.claim("key_acme:new", "fp", 3600)

    purged = await store.purge_expired(datetime.now(timezone.utc) + timedelta(minutes=5))

    assert purged == 1
    assert await store.get("key_acme:old") is None
    assert await store.get("key_acme:new") is not None


@pytest.mark.asyncio
async def test_concurrent_duplicates_execute_once_with_redis_store(redis_idempotency):
    handler = CountingHandler(delay=0.05)
    kwargs = dict(api_key_id="key_acme", token="tok-6", operation="refund", body={"flowId": "npf_1"}, handler=handler)

    first, second = await asyncio.gather(
        redis_idempotency.execute(**kwargs),
        redis_idempotency.execute(**kwargs),
    )

    assert handler.calls == 1
    assert first.body == second.body
    assert sorted([first.replayed, second.replayed]) == [False, True]


@pytest.mark.asyncio
async def test_redis_store_release_allows_retry(redis_idempotency):
    store = redis_idempotency.store
    assert await store.claim("key_acme:tok-7", "fp", 60)
    assert not await store.claim("key_acme:tok-7", "fp", 60)
    await store.release("key_acme:tok-7")
    assert await store.claim("key_acme:tok-7", "fp", 60)

    await store.complete("key_acme:tok-7", status_code=200, response_body="{}", flow_id="npf_9")
    record = await store.get("key_acme:tok-7")
    assert record.is_completed
    assert record.flow_id == "npf_9"


class FlakyCompleteStore(SQLAlchemyIdempotencyStore):
    """Fails the first attempt to store a result, as a dropped DB connection would."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.complete_failures = 1

    async def complete(self, key, **kwargs):
        if self.complete_failures:
            self.complete_failures -= 1
            raise ConnectionError("database went away")
        await super().complete(key, **kwargs)


@pytest.mark.asyncio
async def test_abandoned_claim_is_taken_over_after_its_lease(session_factory, sql_idempotency):
    body = {"flowId": "npf_1"}
    key = idempotency_key("key_acme", "tok-1")
    # a worker claimed the key and died before storing anything
    assert await sql_idempotency.store.claim(key, request_fingerprint("void", body), sql_idempotency.ttl_seconds)
    async with session_factory() as session, session.begin():
        await session.execute(
            update(IdempotencyRecordModel)
            .where(IdempotencyRecordModel.key == key)
            .values(created_at=datetime.now(timezone.utc) - timedelta(hours=6))
        )

    handler = CountingHandler()
    response = await sql_idempotency.execute(
        api_key_id="key_acme", token="tok-1", operation="void", body=body, handler=handler
    )

    assert handler.calls == 1
    assert not response.replayed
    record = await sql_idempotency.store.get(key)
    assert record.is_completed


@pytest.mark.asyncio
async def test_claim_within_its_lease_is_not_taken_over(sql_idempotency):
    store = sql_idempotency.store
    assert await store.claim("key_acme:tok-8", "fp", 3600, lease_seconds=60)
    assert not await store.claim("key_acme:tok-8", "fp", 3600, lease_seconds=60)


@pytest.mark.asyncio
async def test_failure_to_store_result_releases_the_claim(session_factory):
    service = IdempotencyService(FlakyCompleteStore(session_factory), FAST)
    kwargs = dict(api_key_id="key_acme", token="tok-9", operation="charge", body={"flowId": "npf_1"})

    first = CountingHandler()
    with pytest.raises(ConnectionError):
        await service.execute(handler=first, **kwargs)

    retry = CountingHandler()
    response = await service.execute(handler=retry, **kwargs)

    assert first.calls == 1
    assert retry.calls == 1
    assert not response.replayed
    assert (await service.store.get(idempotency_key("key_acme", "tok-9"))).is_completed


@pytest.mark.asyncio
async def test_redis_pending_claim_lives_for_the_lease_only():
    redis = FakeRedis()
    store = RedisIdempotencyStore(RedisCache(redis, namespace="novapay"))
    raw_key = "novapay:idempotency:key_acme:tok-10"

    assert await store.claim("key_acme:tok-10", "fp", 86400, lease_seconds=60)
    assert redis.ttls[raw_key] == 60

    await store.complete("key_acme:tok-10", status_code=201, response_body="{}", flow_id="npf_1")
    assert 86000 < redis.ttls[raw_key] <= 86400
    assert (await store.get("key_acme:tok-10")).is_completed
