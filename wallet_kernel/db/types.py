"""
Module: wallet_kernel.db.types
Responsibility: Annotated type aliases and helpers for money columns.
    Centralizes precision, rounding, and currency validation so that every
    model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the wallet kernel.  All monetary amounts use
      Decimal with explicit precision.
    - round_money() is the ONLY sanctioned rounding function for amounts.
    - validate_currency() rejects anything that is not a known ISO 4217 code.

Failure modes:
    - ValueError on an unknown currency code.
    - InvalidAmountError from to_amount() on non-numeric or non-positive input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

from wallet_kernel.exceptions import InvalidAmountError

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Commission rate (e.g. 0.15)
Rate = Annotated[Decimal, Numeric(38, 18)]

Currency = Annotated[str, String(3)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_money(amount: Decimal, places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """
    Round a monetary amount half-up to the given number of places.

    Args:
        amount: Decimal amount.
        places: Decimal places (default 2, minor units of the wallet currency).

    Returns:
        Rounded Decimal.
    """
    quantum = Decimal(1).scaleb(-places)
    return amount.quantize(quantum, rounding=DEFAULT_ROUNDING)


def to_amount(value: Decimal | int | str) -> Decimal:
    """
    Coerce caller input into a strictly positive Decimal amount.

    Floats are rejected outright; they cannot represent cents exactly.

    Raises:
        InvalidAmountError: If the value is a float, not numeric, or <= 0.
    """
    if isinstance(value, float):
        raise InvalidAmountError(str(value), "floats are not accepted")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise InvalidAmountError(str(value), "not a number") from None
    if not amount.is_finite():
        raise InvalidAmountError(str(value), "not a finite number")
    if amount <= ZERO:
        raise InvalidAmountError(str(amount), "amount must be positive")
    return amount


ISO_4217_CURRENCIES = frozenset({
    "AED", "AUD", "BRL", "CAD", "CHF", "CNY", "CZK", "DKK", "EUR", "GBP",
    "HKD", "HUF", "IDR", "ILS", "INR", "JPY", "KRW", "MXN", "MYR", "NOK",
    "NZD", "PHP", "PLN", "RON", "SAR", "SEK", "SGD", "THB", "TRY", "TWD",
    "USD", "ZAR",
})


def validate_currency(code: str) -> str:
    """
    Validate and normalize an ISO 4217 currency code.

    Returns:
        The upper-cased code.

    Raises:
        ValueError: If the code is not a recognized currency.
    """
    normalized = (code or "").strip().upper()
    if normalized not in ISO_4217_CURRENCIES:
        raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
    return normalized
