"""
商户 Webhook 投递客户端

提供：
- HMAC-SHA256 签名（配置了签名密钥时）
- 传输层错误的短暂进程内重试（tenacity）
- 显式超时
"""
import hashlib
import hmac
import json
import logging
from typing import Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from application.ports.notifier import DeliveryAttempt
from core.config import WebhookSettings, settings
from domain.webhook.entity import WebhookMessage


logger = logging.getLogger(__name__)

EVENT_HEADER = "X-NovaPay-Event"
EVENT_ID_HEADER = "X-NovaPay-Event-Id"
SIGNATURE_HEADER = "X-NovaPay-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    """sha256=<hex>，接收方用同一密钥对原始请求体重新计算并比较"""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class HttpWebhookSender:
    """基于 httpx.AsyncClient 的 WebhookSender 实现"""

    def __init__(
        self,
        config: Optional[WebhookSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._config = config or settings.webhook
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_seconds),
                follow_redirects=False,
            )
        return self._client

    async def aclose(self) -> None:
        """关闭HTTP客户端"""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def build_request(self, message: WebhookMessage) -> tuple[bytes, dict]:
        body = json.dumps(message.payload, separators=(",", ":"), default=str).encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self._config.user_agent,
            EVENT_HEADER: message.event_type,
            EVENT_ID_HEADER: message.event_id,
        }
        if self._config.signing_secret:
            headers[SIGNATURE_HEADER] = sign_payload(self._config.signing_secret, body)
        return body, headers

    async def send(self, message: WebhookMessage) -> DeliveryAttempt:
        body, headers = self.build_request(message)

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._config.inline_retries + 1),
            wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self.client.post(message.url, content=body, headers=headers)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            return DeliveryAttempt(ok=False, error=f"{type(exc).__name__}: {exc}")
        except httpx.HTTPError as exc:
            return DeliveryAttempt(ok=False, error=f"{type(exc).__name__}: {exc}")

        if 200 <= response.status_code < 300:
            return DeliveryAttempt(ok=True, status_code=response.status_code)
        return DeliveryAttempt(
            ok=False,
            status_code=response.status_code,
            error=f"HTTP {response.status_code}",
        )
