"""
Payout rail contract -- what the settlement state machine needs from a
payment provider.

Responsibility:
    Declares the PayoutRail capability, the outcome vocabulary, and the
    webhook notification value object.  Concrete rails live in
    wallet_kernel.adapters.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Adapters implement PayoutRail;
    services depend only on this module.

Failure modes (raised by implementations):
    - PayoutRailError: the rail definitively refused the transfer.
    - PayoutOutcomeUnknownError: the call did not complete (timeout,
      connection reset); the transfer may exist.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class PayoutOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


class PayoutRail(ABC):
    """
    External payout capability.

    Contract:
        - submit() with the same idempotency_key returns the same reference
          and never moves money twice.
        - status() reports the provider's view of a submitted transfer.
    """

    name: str = "abstract"

    @abstractmethod
    def submit(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Submit a transfer and return the provider reference."""
        ...

    @abstractmethod
    def status(self, reference: str) -> PayoutOutcome:
        """Return the provider's current outcome for a reference."""
        ...


@dataclass(frozen=True)
class PayoutNotification:
    """
    One provider webhook delivery, already authenticated and parsed.

    withdrawal_id comes from the transfer metadata written at submission.
    """

    event_id: str
    event_type: str
    withdrawal_id: str
    payment_reference: str
    outcome: PayoutOutcome
    failure_reason: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)
