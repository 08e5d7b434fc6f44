"""
Request ID 中间件

为每个请求生成（或透传商户提供的）追踪ID，绑定到 structlog 上下文，
并通过 X-Request-ID 响应头返回，便于商户对账时定位日志。
"""
import re
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

import structlog

# 商户透传的追踪ID只接受可安全写入日志的字符
_INBOUND_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Request ID 追踪中间件"""

    HEADER_NAME = "X-Request-ID"

    async def dispatch(self, request: Request, call_next):
        inbound = request.headers.get(self.HEADER_NAME, "")
        request_id = inbound if _INBOUND_ID_PATTERN.match(inbound) else f"req_{uuid.uuid4().hex}"
        client_ip = _client_ip(request)

        request.state.request_id = request_id
        request.state.client_ip = client_ip

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            client_ip=client_ip,
            method=request.method,
            path=request.url.path,
        )

        response = await call_next(request)
        response.headers[self.HEADER_NAME] = request_id
        return response
