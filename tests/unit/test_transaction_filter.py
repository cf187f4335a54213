"""Unit tests for TransactionFilter validation."""

from dataclasses import FrozenInstanceError
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from wallet_kernel.domain.filters import TransactionFilter
from wallet_kernel.exceptions import InvalidFilterError
from wallet_kernel.models.ledger_transaction import TransactionDirection, TransactionType


class TestConstruction:
    def test_defaults(self):
        f = TransactionFilter()
        assert f.limit == 50
        assert f.offset == 0

    @pytest.mark.parametrize("limit", [0, -1, 501])
    def test_limit_out_of_range(self, limit):
        with pytest.raises(InvalidFilterError) as exc_info:
            TransactionFilter(limit=limit)
        assert exc_info.value.field == "limit"

    def test_limit_bounds_inclusive(self):
        assert TransactionFilter(limit=1).limit == 1
        assert TransactionFilter(limit=500).limit == 500

    def test_negative_offset(self):
        with pytest.raises(InvalidFilterError):
            TransactionFilter(offset=-5)

    def test_inverted_amount_range(self):
        with pytest.raises(InvalidFilterError):
            TransactionFilter(min_amount=Decimal("10"), max_amount=Decimal("5"))

    def test_inverted_date_range(self):
        with pytest.raises(InvalidFilterError):
            TransactionFilter(
                created_from=datetime(2025, 2, 1, tzinfo=timezone.utc),
                created_to=datetime(2025, 1, 1, tzinfo=timezone.utc),
            )

    def test_frozen(self):
        f = TransactionFilter()
        with pytest.raises(FrozenInstanceError):
            f.limit = 10


class TestFromParams:
    def test_parses_strings(self):
        f = TransactionFilter.from_params(
            {
                "type": "JOB_POSTING_FEE",
                "direction": "debit",
                "min_amount": "10.00",
                "created_from": "2025-01-01T00:00:00+00:00",
                "limit": "20",
                "offset": "40",
            }
        )
        assert f.type == TransactionType.JOB_POSTING_FEE
        assert f.direction == TransactionDirection.DEBIT
        assert f.min_amount == Decimal("10.00")
        assert f.created_from == datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert (f.limit, f.offset) == (20, 40)

    def test_unknown_key_rejected(self):
        with pytest.raises(InvalidFilterError) as exc_info:
            TransactionFilter.from_params({"account": "x"})
        assert exc_info.value.field == "account"

    def test_unknown_enum_value(self):
        with pytest.raises(InvalidFilterError):
            TransactionFilter.from_params({"type": "lottery_win"})

    def test_bad_number(self):
        with pytest.raises(InvalidFilterError):
            TransactionFilter.from_params({"min_amount": "ten"})

    def test_bad_date(self):
        with pytest.raises(InvalidFilterError):
            TransactionFilter.from_params({"created_to": "yesterday"})

    def test_configured_max_limit(self):
        with pytest.raises(InvalidFilterError):
            TransactionFilter.from_params({"limit": 101}, max_limit=100)

    def test_none_values_ignored(self):
        assert TransactionFilter.from_params({"type": None}).type is None
