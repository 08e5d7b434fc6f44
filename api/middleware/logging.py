"""
请求/响应日志中间件
记录所有HTTP请求和响应，包括耗时统计；卡号、安全码与 API Key 一律脱敏
"""
import json
import time
from typing import Any

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


def mask_card_number(value: Any) -> str:
    """只保留后四位"""
    digits = "".join(ch for ch in str(value) if ch.isdigit())
    if len(digits) <= 4:
        return "****"
    return f"{'*' * (len(digits) - 4)}{digits[-4:]}"


def mask_secret(value: Any) -> str:
    """API Key 只保留前缀，例如 np_***"""
    text = str(value or "")
    prefix, sep, _ = text.partition("_")
    return f"{prefix}{sep}***" if sep else "***"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    日志记录中间件

    功能：
    1. 记录请求信息（方法、路径、参数等）
    2. 记录响应信息（状态码、耗时等）
    3. 记录异常信息
    """

    # 跳过日志的路径
    SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

    # 敏感字段（小写比较），日志中需要脱敏
    SENSITIVE_FIELDS = {"securitycode", "cvv", "password", "token", "secret", "signingsecret"}
    CARD_FIELDS = {"cardnumber"}

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.enable_body_log_default: bool = settings.LOG_REQUEST_BODY_ENABLE_BY_DEFAULT
        self.max_body_log_bytes: int = settings.LOG_REQUEST_BODY_MAX_BYTES

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        start_time = time.time()
        request_info = await self._get_request_info(request)
        logger.info("request_started", **request_info)

        try:
            response = await call_next(request)
        except Exception as exc:
            duration = time.time() - start_time
            logger.error(
                "request_failed",
                duration=duration,
                error=str(exc),
                error_type=type(exc).__name__,
                **request_info,
                exc_info=True
            )
            # 重新抛出异常，让异常处理器处理
            raise

        duration = time.time() - start_time
        self._log_response(response, duration, request_info)
        response.headers["X-Process-Time"] = f"{duration:.3f}"
        return response

    async def _get_request_info(self, request: Request) -> dict:
        info = {
            "method": request.method,
            "path": request.url.path,
            "query_params": dict(request.query_params),
        }

        api_key = request.headers.get("X-NovaPay-Key")
        if api_key:
            info["api_key"] = mask_secret(api_key)
        idempotency_key = request.headers.get("Idempotency-Key")
        if idempotency_key:
            info["idempotency_key"] = idempotency_key

        if request.method in ["POST", "PUT", "PATCH"] and self._should_log_body(request):
            body_snippet = await self._extract_and_sanitize_body(request)
            if body_snippet is not None:
                info["body"] = body_snippet
            else:
                info["has_body"] = True

        user_agent = request.headers.get("User-Agent")
        if user_agent:
            info["user_agent"] = user_agent

        return info

    def _should_log_body(self, request: Request) -> bool:
        # X-Log-Body: true/false
        header = (request.headers.get("X-Log-Body") or "").lower()
        if header in {"true", "1", "yes"}:
            return True
        if header in {"false", "0", "no"}:
            return False
        return bool(self.enable_body_log_default and settings.DEBUG)

    async def _extract_and_sanitize_body(self, request: Request) -> Any:
        body = await request.body()
        if not body:
            return None

        # 超出上限的请求体无法完整解析，只记录截断文本
        if len(body) > self.max_body_log_bytes:
            return {"truncated": True, "size": len(body)}

        content_type = request.headers.get("content-type", "").lower()
        if "application/json" not in content_type:
            return {"content_type": content_type, "size": len(body)}
        try:
            parsed = json.loads(body.decode("utf-8", errors="ignore"))
        except ValueError:
            return {"invalid_json": True, "size": len(body)}
        return self._sanitize_data(parsed)

    def _sanitize_data(self, data: Any) -> Any:
        if isinstance(data, dict):
            sanitized = {}
            for k, v in data.items():
                key = str(k).lower()
                if key in self.CARD_FIELDS:
                    sanitized[k] = mask_card_number(v)
                elif key in self.SENSITIVE_FIELDS:
                    sanitized[k] = "***"
                else:
                    sanitized[k] = self._sanitize_data(v)
            return sanitized
        if isinstance(data, list):
            return [self._sanitize_data(v) for v in data]
        return data

    def _log_response(self, response: Response, duration: float, request_info: dict):
        """根据状态码选择日志级别"""
        status_code = response.status_code
        log_data = {
            "status_code": status_code,
            "duration": duration,
            **request_info
        }

        if status_code < 400:
            logger.info("request_completed", **log_data)
        elif status_code < 500:
            logger.warning("request_client_error", **log_data)
        else:
            logger.error("request_server_error", **log_data)
