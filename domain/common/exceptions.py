"""领域层业务异常定义，供领域与基础设施使用。

每个异常携带一个 NovaPay ResultCode；核心（core）层仅负责把它渲染成统一的响应信封。
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from shared.codes import ResultCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: ResultCode,
        message: Optional[str] = None,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        flow_id: Optional[str] = None,
    ) -> None:
        self.code = ResultCode(code)
        self.message = message or self.code.message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.flow_id = flow_id
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    """请求形状/取值错误，发生在任何状态变更之前"""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: ResultCode = ResultCode.INVALID_REQUEST,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=code,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class InvalidAmountException(DomainValidationException):
    def __init__(self, amount: object, reason: Optional[str] = None):
        super().__init__(
            reason,
            code=ResultCode.INVALID_AMOUNT,
            field="amount",
            details={"amount": str(amount)},
        )


class UnsupportedCurrencyException(DomainValidationException):
    def __init__(self, currency: object):
        super().__init__(
            code=ResultCode.INVALID_CURRENCY,
            field="currency",
            details={"currency": str(currency)},
        )


class MissingFieldException(DomainValidationException):
    def __init__(self, field: str):
        super().__init__(
            f"Required field missing: {field}",
            code=ResultCode.MISSING_FIELD,
            field=field,
        )


class FlowNotFoundException(BusinessException):
    def __init__(self, flow_id: str):
        super().__init__(
            code=ResultCode.FLOW_NOT_FOUND,
            error_type="FlowNotFound",
            flow_id=flow_id,
        )


class InvalidStateTransitionException(BusinessException):
    def __init__(self, flow_id: str, current: str, action: str):
        super().__init__(
            code=ResultCode.INVALID_STATE_TRANSITION,
            error_type="InvalidStateTransition",
            details={"state": current, "action": action},
            flow_id=flow_id,
        )


class ConcurrentFlowUpdateException(InvalidStateTransitionException):
    """另一个请求已先一步修改了该支付流（版本号比较失败）"""

    def __init__(self, flow_id: str, expected_version: int):
        BusinessException.__init__(
            self,
            code=ResultCode.INVALID_STATE_TRANSITION,
            error_type="ConcurrentFlowUpdate",
            details={"expected_version": expected_version},
            flow_id=flow_id,
        )


class InsufficientFundsException(BusinessException):
    def __init__(self, account_id: str, currency: str, requested: Decimal):
        super().__init__(
            code=ResultCode.INSUFFICIENT_FUNDS,
            error_type="InsufficientFunds",
            details={"account_id": account_id, "currency": currency, "requested": str(requested)},
        )


class RefundExceedsOriginalException(BusinessException):
    def __init__(self, flow_id: str, requested: Decimal, refundable: Decimal):
        super().__init__(
            code=ResultCode.REFUND_EXCEEDS_ORIGINAL,
            error_type="RefundExceedsOriginal",
            details={"requested": str(requested), "refundable": str(refundable)},
            flow_id=flow_id,
        )


class MerchantNotFoundException(BusinessException):
    """商户账户不存在或已停用"""

    def __init__(self, merchant_id: str, flow_id: Optional[str] = None):
        super().__init__(
            code=ResultCode.MERCHANT_NOT_FOUND,
            error_type="MerchantNotFound",
            details={"merchant_id": merchant_id},
            flow_id=flow_id,
        )


class DuplicateRequestException(BusinessException):
    def __init__(self, reason: str):
        super().__init__(
            code=ResultCode.DUPLICATE_REQUEST,
            error_type="DuplicateRequest",
            details={"reason": reason},
        )


class AuthenticationFailedException(BusinessException):
    """商户 API Key 缺失或无效（HTTP 401）"""

    def __init__(self, reason: str):
        super().__init__(
            code=ResultCode.INVALID_REQUEST,
            error_type="AuthenticationFailed",
            details={"reason": reason},
        )
