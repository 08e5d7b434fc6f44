"""
API依赖项 - 商户认证与服务装配
"""
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Depends, Header
from fastapi.security import APIKeyHeader

from application.ports.notifier import WebhookNotifier
from application.services.flow_service import FlowService
from application.services.idempotency_service import IdempotencyService
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import AuthenticationFailedException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.idempotency.store import IdempotencyStore
from infrastructure import providers


logger = get_logger(__name__)

API_KEY_HEADER = "X-NovaPay-Key"
IDEMPOTENCY_HEADER = "Idempotency-Key"

# Merchant API key for Swagger UI and direct calls
api_key_scheme = APIKeyHeader(
    name=API_KEY_HEADER,
    scheme_name="NovaPayKey",
    description="Merchant API key (np_... or legacy pk_...)",
    auto_error=False,
)


@dataclass(frozen=True)
class MerchantPrincipal:
    """已认证的商户身份"""

    api_key_id: str
    merchant_id: str


def get_uow_factory() -> Callable[..., AbstractUnitOfWork]:
    return providers.uow_factory


def get_notifier() -> WebhookNotifier:
    return providers.build_notifier()


async def get_idempotency_store() -> IdempotencyStore:
    return await providers.build_idempotency_store()


async def get_flow_service(
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
    notifier: WebhookNotifier = Depends(get_notifier),
) -> FlowService:
    return FlowService(uow_factory=uow_factory, notifier=notifier)


async def get_idempotency_service(
    store: IdempotencyStore = Depends(get_idempotency_store),
) -> IdempotencyService:
    return IdempotencyService(store)


async def get_idempotency_token(
    idempotency_key: Optional[str] = Header(default=None, alias=IDEMPOTENCY_HEADER),
) -> Optional[str]:
    token = (idempotency_key or "").strip()
    return token or None


async def get_current_merchant(
    api_key: Optional[str] = Depends(api_key_scheme),
    uow_factory: Callable[..., AbstractUnitOfWork] = Depends(get_uow_factory),
) -> MerchantPrincipal:
    """校验 X-NovaPay-Key 并解析所属商户"""
    key = (api_key or "").strip()
    if not key:
        raise AuthenticationFailedException("API key required")
    if not key.startswith(tuple(settings.novapay.api_key_prefixes)):
        raise AuthenticationFailedException("Invalid API key format")

    async with uow_factory() as uow:
        record = await uow.api_keys.get_by_key(key)
        if record is None or not record.is_active:
            logger.warning("api_key_rejected", key_prefix=key[:6], found=record is not None)
            raise AuthenticationFailedException("Invalid or inactive API key")
        await uow.api_keys.touch(record.id)

    return MerchantPrincipal(api_key_id=record.id, merchant_id=record.merchant_id)
