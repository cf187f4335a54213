"""
TransactionFilter -- explicit, validated query filter for ledger history.

Responsibility:
    Replaces ad-hoc filter dicts with one frozen value object that is
    validated once, at the boundary, before any SQL is built.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Failure modes:
    - InvalidFilterError on out-of-range limit/offset, inverted date or
      amount ranges, or negative amounts.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from wallet_kernel.exceptions import InvalidFilterError
from wallet_kernel.models.ledger_transaction import (
    TransactionDirection,
    TransactionStatus,
    TransactionType,
)

DEFAULT_PAGE_LIMIT = 50
MAX_PAGE_LIMIT = 500


@dataclass(frozen=True)
class TransactionFilter:
    """
    Filter and page window for an account's transaction history.

    Guarantees:
        - 1 <= limit <= max_limit, offset >= 0.
        - created_from <= created_to and min_amount <= max_amount when both
          bounds are given.
    """

    type: TransactionType | None = None
    direction: TransactionDirection | None = None
    status: TransactionStatus | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    limit: int = DEFAULT_PAGE_LIMIT
    offset: int = 0
    max_limit: int = MAX_PAGE_LIMIT

    def __post_init__(self) -> None:
        if isinstance(self.limit, bool) or not isinstance(self.limit, int):
            raise InvalidFilterError("limit", "must be an integer")
        if not 1 <= self.limit <= self.max_limit:
            raise InvalidFilterError(
                "limit", f"must be between 1 and {self.max_limit}"
            )
        if isinstance(self.offset, bool) or not isinstance(self.offset, int):
            raise InvalidFilterError("offset", "must be an integer")
        if self.offset < 0:
            raise InvalidFilterError("offset", "must be >= 0")
        for name in ("min_amount", "max_amount"):
            value = getattr(self, name)
            if value is not None:
                if not isinstance(value, Decimal):
                    raise InvalidFilterError(name, "must be a Decimal")
                if value < 0:
                    raise InvalidFilterError(name, "must be >= 0")
        if (
            self.min_amount is not None
            and self.max_amount is not None
            and self.min_amount > self.max_amount
        ):
            raise InvalidFilterError("min_amount", "must not exceed max_amount")
        if (
            self.created_from is not None
            and self.created_to is not None
            and self.created_from > self.created_to
        ):
            raise InvalidFilterError("created_from", "must not be after created_to")

    @classmethod
    def from_params(
        cls, params: dict[str, Any], max_limit: int = MAX_PAGE_LIMIT
    ) -> "TransactionFilter":
        """
        Build a filter from loosely typed query parameters.

        Unknown keys are rejected.  Enum and Decimal fields are parsed from
        their string forms.

        Raises:
            InvalidFilterError: On unknown keys or unparseable values.
        """
        allowed = {
            "type", "direction", "status", "created_from", "created_to",
            "min_amount", "max_amount", "limit", "offset",
        }
        unknown = set(params) - allowed
        if unknown:
            raise InvalidFilterError(sorted(unknown)[0], "unknown filter field")

        kwargs: dict[str, Any] = {"max_limit": max_limit}
        enum_fields = {
            "type": TransactionType,
            "direction": TransactionDirection,
            "status": TransactionStatus,
        }
        for key, value in params.items():
            if value is None:
                continue
            if key in enum_fields:
                try:
                    kwargs[key] = enum_fields[key](str(value).lower())
                except ValueError:
                    raise InvalidFilterError(key, f"unknown value {value!r}") from None
            elif key in ("min_amount", "max_amount"):
                try:
                    kwargs[key] = Decimal(str(value))
                except ArithmeticError:
                    raise InvalidFilterError(key, "not a number") from None
            elif key in ("created_from", "created_to"):
                if isinstance(value, datetime):
                    kwargs[key] = value
                else:
                    try:
                        kwargs[key] = datetime.fromisoformat(str(value))
                    except ValueError:
                        raise InvalidFilterError(key, "not an ISO-8601 datetime") from None
            else:
                try:
                    kwargs[key] = int(value)
                except (TypeError, ValueError):
                    raise InvalidFilterError(key, "must be an integer") from None
        return cls(**kwargs)
