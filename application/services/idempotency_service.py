"""
Idempotent execution of mutating requests.

The first request carrying a token atomically claims it, executes, and stores
the exact response; duplicates replay that response byte-for-byte. A duplicate
that arrives while the original is still running waits briefly and otherwise
fails fast with DUPLICATE_REQUEST. A pending claim that outlives its lease
(the worker died before storing a result) is taken over by the next request.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from core.config import IdempotencySettings, settings
from core.logging_config import get_logger
from domain.common.exceptions import DuplicateRequestException
from domain.idempotency.entity import idempotency_key, request_fingerprint
from domain.idempotency.store import IdempotencyStore
from shared.codes import ResultCode


logger = get_logger(__name__)


@dataclass
class StoredResponse:
    status_code: int
    body: str
    result_code: Optional[int] = None
    flow_id: Optional[str] = None
    replayed: bool = False


Handler = Callable[[], Awaitable[StoredResponse]]


class IdempotencyService:
    def __init__(self, store: IdempotencyStore, config: Optional[IdempotencySettings] = None) -> None:
        self.store = store
        self._config = config or settings.idempotency

    @property
    def ttl_seconds(self) -> int:
        return int(self._config.ttl_hours * 3600)

    @property
    def lease_seconds(self) -> int:
        return self._config.pending_lease_seconds

    async def execute(
        self,
        *,
        api_key_id: str,
        token: Optional[str],
        operation: str,
        body: Any,
        handler: Handler,
    ) -> StoredResponse:
        """Run ``handler`` at most once per (api_key_id, token)."""
        if not token:
            return await handler()

        key = idempotency_key(api_key_id, token)
        fingerprint = request_fingerprint(operation, body)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.wait_seconds

        while True:
            if await self.store.claim(key, fingerprint, self.ttl_seconds, self.lease_seconds):
                return await self._run_claimed(key, operation, handler)

            record = await self.store.get(key)
            if record is not None:
                if record.fingerprint != fingerprint:
                    logger.warning("idempotency_fingerprint_mismatch", key=key, operation=operation)
                    raise DuplicateRequestException("Idempotency key reused with a different request")
                if record.is_completed:
                    logger.info("idempotency_replay", key=key, operation=operation, flow_id=record.flow_id)
                    return StoredResponse(
                        status_code=record.status_code or 200,
                        body=record.response_body or "",
                        flow_id=record.flow_id,
                        replayed=True,
                    )
            # record 为 None：占用方已放弃或记录刚过期，下一轮重新竞争
            if loop.time() >= deadline:
                logger.info("idempotency_in_progress", key=key, operation=operation)
                raise DuplicateRequestException("Original request is still in progress")
            await asyncio.sleep(self._config.poll_interval_seconds)

    async def _run_claimed(self, key: str, operation: str, handler: Handler) -> StoredResponse:
        try:
            response = await handler()
            if response.result_code is not None and ResultCode(response.result_code).is_system_error:
                # 系统错误的结果未知，释放占用以便调用方重试
                await self.store.release(key)
                return response
            await self.store.complete(
                key,
                status_code=response.status_code,
                response_body=response.body,
                flow_id=response.flow_id,
            )
        except BaseException:
            logger.warning("idempotency_claim_released", key=key, operation=operation)
            await self.store.release(key)
            raise
        logger.debug("idempotency_stored", key=key, operation=operation, status_code=response.status_code)
        return response

    async def purge_expired(self) -> int:
        purged = await self.store.purge_expired()
        logger.info("idempotency_purged", purged=purged)
        return purged

