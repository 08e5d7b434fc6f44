"""
NovaPay result codes shared across layers (Domain/Application/API).

Codes are namespaced by range:
1xxx success, 4xxx client/request errors, 5xxx business declines,
9xxx system errors.
"""
from enum import IntEnum


class ResultCode(IntEnum):
    """NovaPay result codes (single source of truth)."""

    # Success (1xxx)
    APPROVED = 1000
    HOLD_CREATED = 1001
    CHARGE_COMPLETE = 1002
    VOID_COMPLETE = 1003
    REFUND_COMPLETE = 1004

    # Client errors (4xxx)
    INVALID_REQUEST = 4000
    MISSING_FIELD = 4001
    INVALID_AMOUNT = 4002
    INVALID_CURRENCY = 4003
    INVALID_CARD_FORMAT = 4004
    NOT_NOVAPAY_CARD = 4005
    FLOW_NOT_FOUND = 4006
    INVALID_STATE_TRANSITION = 4007
    DUPLICATE_REQUEST = 4008
    CARD_NOT_FOUND = 4009
    CARD_INACTIVE = 4010
    CARD_EXPIRED = 4011
    INVALID_SECURITY_CODE = 4012

    # Business declines (5xxx)
    INSUFFICIENT_FUNDS = 5000
    ACCOUNT_FROZEN = 5001
    MERCHANT_NOT_FOUND = 5002
    HOLD_EXPIRED = 5003
    REFUND_EXCEEDS_ORIGINAL = 5004

    # System errors (9xxx)
    INTERNAL_ERROR = 9000
    SERVICE_UNAVAILABLE = 9001
    TIMEOUT = 9002

    @property
    def is_success(self) -> bool:
        return 1000 <= self.value < 2000

    @property
    def is_system_error(self) -> bool:
        return 9000 <= self.value < 10000

    @property
    def message(self) -> str:
        return RESULT_MESSAGES.get(self, "Unknown result")


RESULT_MESSAGES: dict[ResultCode, str] = {
    ResultCode.APPROVED: "Request approved",
    ResultCode.HOLD_CREATED: "Funds successfully reserved",
    ResultCode.CHARGE_COMPLETE: "Payment settled successfully",
    ResultCode.VOID_COMPLETE: "Reservation cancelled, funds released",
    ResultCode.REFUND_COMPLETE: "Refund processed successfully",

    ResultCode.INVALID_REQUEST: "Invalid request format",
    ResultCode.MISSING_FIELD: "Required field missing",
    ResultCode.INVALID_AMOUNT: "Amount must be positive",
    ResultCode.INVALID_CURRENCY: "Currency not supported",
    ResultCode.INVALID_CARD_FORMAT: "Card number format is invalid",
    ResultCode.NOT_NOVAPAY_CARD: "Card is not a NovaPay card (must start with 7)",
    ResultCode.FLOW_NOT_FOUND: "Payment flow not found",
    ResultCode.INVALID_STATE_TRANSITION: "Cannot perform this action in current state",
    ResultCode.DUPLICATE_REQUEST: "Duplicate request detected",
    ResultCode.CARD_NOT_FOUND: "Card not registered in NovaPay network",
    ResultCode.CARD_INACTIVE: "Card is not active",
    ResultCode.CARD_EXPIRED: "Card has expired",
    ResultCode.INVALID_SECURITY_CODE: "Security code does not match",

    ResultCode.INSUFFICIENT_FUNDS: "Insufficient funds in account",
    ResultCode.ACCOUNT_FROZEN: "Account is frozen",
    ResultCode.MERCHANT_NOT_FOUND: "Merchant account not found",
    ResultCode.HOLD_EXPIRED: "Reservation has expired",
    ResultCode.REFUND_EXCEEDS_ORIGINAL: "Refund amount exceeds original payment",

    ResultCode.INTERNAL_ERROR: "Internal system error",
    ResultCode.SERVICE_UNAVAILABLE: "Service temporarily unavailable",
    ResultCode.TIMEOUT: "Request timed out",
}


# Explicit overrides of the range-derived HTTP status
_HTTP_STATUS_OVERRIDES: dict[ResultCode, int] = {
    ResultCode.FLOW_NOT_FOUND: 404,
    ResultCode.CARD_NOT_FOUND: 404,
    ResultCode.DUPLICATE_REQUEST: 409,
    ResultCode.SERVICE_UNAVAILABLE: 503,
    ResultCode.TIMEOUT: 504,
}


def http_status_for(code: ResultCode) -> int:
    """Derive the HTTP status mechanically from the result-code range."""
    override = _HTTP_STATUS_OVERRIDES.get(code)
    if override is not None:
        return override
    value = int(code)
    if 1000 <= value < 2000:
        return 200
    if 4000 <= value < 5000:
        return 400
    if 5000 <= value < 6000:
        return 422
    return 500


__all__ = ["ResultCode", "RESULT_MESSAGES", "http_status_for"]
