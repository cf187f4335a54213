"""Unit tests for commission pricing by hiring mode."""

from decimal import Decimal

import pytest

from wallet_kernel.domain.commission_rates import HiringMode, quote_commission
from wallet_kernel.exceptions import CommissionNotEligibleError

RATES = {
    "self_managed": Decimal("0"),
    "shortlisting": Decimal("0.15"),
    "full_service": Decimal("0.20"),
    "executive_search": Decimal("0.25"),
}
FEES = {
    "self_managed": Decimal("0"),
    "shortlisting": Decimal("1990"),
    "full_service": Decimal("5990"),
    "executive_search": Decimal("9990"),
}


@pytest.mark.parametrize(
    "mode, expected",
    [
        (HiringMode.SHORTLISTING, Decimal("298.50")),
        (HiringMode.FULL_SERVICE, Decimal("1198.00")),
        (HiringMode.EXECUTIVE_SEARCH, Decimal("2497.50")),
    ],
)
def test_configured_fee_times_rate(mode, expected):
    quote = quote_commission(mode, RATES, FEES)
    assert quote.amount == expected
    assert quote.rate == RATES[mode.value]


def test_explicit_fee_overrides_default():
    quote = quote_commission("full_service", RATES, FEES, service_fee=Decimal("1000"))
    assert quote.amount == Decimal("200.00")
    assert quote.service_fee == Decimal("1000")


def test_self_managed_not_eligible():
    with pytest.raises(CommissionNotEligibleError) as exc_info:
        quote_commission(HiringMode.SELF_MANAGED, RATES, FEES, job_id="job-9")
    assert exc_info.value.commission_id == "job-9"


def test_missing_rate_not_eligible():
    with pytest.raises(CommissionNotEligibleError):
        quote_commission(HiringMode.SHORTLISTING, {}, FEES)


def test_amount_rounded_to_cents():
    quote = quote_commission(
        HiringMode.SHORTLISTING, RATES, FEES, service_fee=Decimal("33.33")
    )
    assert quote.amount == Decimal("5.00")
