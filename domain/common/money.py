"""
Fixed-point money helpers.

Amounts travel through the domain as ``Decimal`` quantized to the currency's
minor-unit exponent and are persisted as integer minor units. Rounding is
always ROUND_HALF_UP and happens only here.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Union

from domain.common.exceptions import InvalidAmountException, UnsupportedCurrencyException


# ISO-4217 exponents for the currencies NovaPay settles in
CURRENCY_EXPONENTS: dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "CHF": 2,
    "JPY": 0,
    "CAD": 2,
    "AUD": 2,
}

ZERO = Decimal("0")

Number = Union[Decimal, int, str]


def exponent_for(currency: str) -> int:
    try:
        return CURRENCY_EXPONENTS[currency]
    except KeyError:
        raise UnsupportedCurrencyException(currency) from None


def _unit(currency: str) -> Decimal:
    return Decimal(1).scaleb(-exponent_for(currency))


def quantize(amount: Number, currency: str) -> Decimal:
    """Round to the currency's minor unit (ROUND_HALF_UP)."""
    return Decimal(amount).quantize(_unit(currency), rounding=ROUND_HALF_UP)


def parse_amount(value: Number, currency: str) -> Decimal:
    """Validate a caller-supplied amount: positive, finite, no sub-minor digits."""
    try:
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
    except (InvalidOperation, ValueError):
        raise InvalidAmountException(value, "Amount is not a number") from None
    if not amount.is_finite():
        raise InvalidAmountException(value, "Amount is not a number")
    if amount <= 0:
        raise InvalidAmountException(value)
    exact = amount.quantize(_unit(currency), rounding=ROUND_HALF_UP)
    if exact != amount:
        raise InvalidAmountException(
            value, f"Amount has more than {exponent_for(currency)} decimal places for {currency}"
        )
    return exact


def to_minor(amount: Decimal, currency: str) -> int:
    return int(quantize(amount, currency).scaleb(exponent_for(currency)))


def from_minor(minor: int, currency: str) -> Decimal:
    return quantize(Decimal(minor).scaleb(-exponent_for(currency)), currency)


def calculate_fee(amount: Decimal, rate: Decimal, currency: str) -> Decimal:
    """Platform fee = amount x rate rounded half-up at the currency exponent."""
    return quantize(amount * rate, currency)


def format_amount(amount: Decimal, currency: str) -> str:
    """Wire representation, e.g. ``"97.50"`` or ``"1200"`` for JPY."""
    return str(quantize(amount, currency))
