"""
异常到 NovaPay 信封的映射与全局异常处理器
"""
from typing import Optional, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette import status as http_status
from starlette.exceptions import HTTPException as StarletteHTTPException

from .response import build_envelope, envelope_json, error_response
from core.logging_config import get_logger
from domain.common.exceptions import AuthenticationFailedException, BusinessException
from shared.codes import ResultCode, http_status_for


logger = get_logger(__name__)


# 请求体字段 -> 专用结果码（其余字段统一为 INVALID_REQUEST）
_FIELD_CODES = {
    "amount": ResultCode.INVALID_AMOUNT,
    "currency": ResultCode.INVALID_CURRENCY,
}


def business_exception_status(exc: BusinessException) -> int:
    if isinstance(exc, AuthenticationFailedException):
        return http_status.HTTP_401_UNAUTHORIZED
    return http_status_for(exc.code)


def render_business_exception(exc: BusinessException) -> Tuple[int, str]:
    """业务异常 -> (HTTP 状态码, 信封 JSON)；路由层缓存幂等响应时复用"""
    envelope = build_envelope(exc.code, message=exc.message, flow_id=exc.flow_id)
    return business_exception_status(exc), envelope_json(envelope)


def validation_result_code(errors: list) -> Tuple[ResultCode, Optional[str]]:
    """
    把 Pydantic 校验错误映射为结果码

    缺失字段优先，其次是金额/币种格式，最后是通用的 INVALID_REQUEST。
    """
    located = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        located.append((error.get("type", ""), ".".join(loc) or None))

    for err_type, field in located:
        if err_type == "missing":
            return ResultCode.MISSING_FIELD, field
    for _, field in located:
        if field in _FIELD_CODES:
            return _FIELD_CODES[field], field
    return ResultCode.INVALID_REQUEST, located[0][1] if located else None


def register_exception_handlers(app: FastAPI):
    """
    注册全局异常处理器

    Args:
        app: FastAPI应用实例
    """

    @app.exception_handler(BusinessException)
    async def business_exception_handler(request: Request, exc: BusinessException):
        """处理业务异常"""
        status_code = business_exception_status(exc)
        logger.info(
            "business_exception",
            result_code=int(exc.code),
            error_type=exc.error_type,
            flow_id=exc.flow_id,
            details=exc.details,
        )
        headers = {"WWW-Authenticate": "X-NovaPay-Key"} if status_code == http_status.HTTP_401_UNAUTHORIZED else None
        return error_response(
            exc.code,
            message=exc.message,
            flow_id=exc.flow_id,
            status_code=status_code,
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理参数验证异常"""
        code, field = validation_result_code(exc.errors())
        message = f"{code.message}: {field}" if field else code.message
        logger.info("request_validation_failed", result_code=int(code), field=field)
        return error_response(code, message=message, status_code=http_status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """处理HTTP异常"""
        code = ResultCode.INTERNAL_ERROR if exc.status_code >= 500 else ResultCode.INVALID_REQUEST
        return error_response(
            code,
            message=str(exc.detail),
            status_code=exc.status_code,
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """处理所有未捕获的异常"""
        request_id = getattr(getattr(request, "state", object()), "request_id", None)
        logger.error(
            "unhandled_exception",
            request_id=request_id,
            error=str(exc),
            exc_info=True,
        )
        return error_response(ResultCode.INTERNAL_ERROR)
