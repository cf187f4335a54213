"""
Commission pricing for recruiter job assignments.

Responsibility:
    Maps a job's hiring mode to the consultant's commission using the
    configured rate and service fee.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Failure modes:
    - CommissionNotEligibleError for hiring modes that earn nothing
      (SELF_MANAGED) or that have no configured rate.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from wallet_kernel.db.types import round_money
from wallet_kernel.exceptions import CommissionNotEligibleError


class HiringMode(str, Enum):
    SELF_MANAGED = "self_managed"
    SHORTLISTING = "shortlisting"
    FULL_SERVICE = "full_service"
    EXECUTIVE_SEARCH = "executive_search"


@dataclass(frozen=True)
class CommissionQuote:
    hiring_mode: HiringMode
    service_fee: Decimal
    rate: Decimal
    amount: Decimal


def quote_commission(
    hiring_mode: HiringMode | str,
    rates: dict[str, Decimal],
    service_fees: dict[str, Decimal],
    service_fee: Decimal | None = None,
    job_id: str = "",
) -> CommissionQuote:
    """
    Price the consultant commission for one job.

    Args:
        hiring_mode: The job's hiring mode.
        rates: Configured commission rate per hiring mode (fraction).
        service_fees: Configured default service fee per hiring mode.
        service_fee: Explicit fee overriding the configured default.
        job_id: Used in the error when the mode is not eligible.

    Returns:
        CommissionQuote with amount rounded to cents.

    Raises:
        CommissionNotEligibleError: If the mode has no positive rate.
    """
    mode = HiringMode(hiring_mode)
    rate = rates.get(mode.value)
    if mode is HiringMode.SELF_MANAGED or rate is None or rate <= 0:
        raise CommissionNotEligibleError(
            job_id, f"hiring mode {mode.value} does not earn a commission"
        )
    fee = service_fee if service_fee is not None else service_fees.get(mode.value)
    if fee is None or fee <= 0:
        raise CommissionNotEligibleError(
            job_id, f"no service fee configured for {mode.value}"
        )
    return CommissionQuote(
        hiring_mode=mode,
        service_fee=fee,
        rate=rate,
        amount=round_money(fee * rate),
    )
