"""
In-memory payout rail with scripted behaviour.

Used by tests and local runs.  Honours the PayoutRail contract: the same
idempotency key always yields the same reference and moves money once.
"""

from dataclasses import dataclass
from decimal import Decimal

from wallet_kernel.domain.payout import PayoutOutcome, PayoutRail
from wallet_kernel.exceptions import PayoutOutcomeUnknownError, PayoutRailError


@dataclass
class ScriptedTransfer:
    reference: str
    amount: Decimal
    currency: str
    destination: str
    idempotency_key: str
    metadata: dict[str, str]
    outcome: PayoutOutcome = PayoutOutcome.SUCCEEDED


class ScriptedPayoutRail(PayoutRail):
    """
    Deterministic rail.

    fail_next() makes the next new submission a definitive refusal;
    timeout_next() makes it time out AFTER the transfer was created,
    which is the case the idempotency key exists for.
    """

    name = "scripted"

    def __init__(self, default_outcome: PayoutOutcome = PayoutOutcome.SUCCEEDED):
        self.default_outcome = default_outcome
        self.transfers: dict[str, ScriptedTransfer] = {}
        self.submissions: list[str] = []
        self._by_key: dict[str, str] = {}
        self._fail_reason: str | None = None
        self._timeout_pending = False
        self._status_timeout = False

    def fail_next(self, reason: str = "destination account closed") -> None:
        self._fail_reason = reason

    def timeout_next(self) -> None:
        self._timeout_pending = True

    def timeout_status(self, enabled: bool = True) -> None:
        self._status_timeout = enabled

    def set_status(self, reference: str, outcome: PayoutOutcome) -> None:
        self.transfers[reference].outcome = outcome

    def submit(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        self.submissions.append(idempotency_key)
        existing = self._by_key.get(idempotency_key)
        if existing is not None:
            return existing
        if self._fail_reason is not None:
            reason, self._fail_reason = self._fail_reason, None
            raise PayoutRailError(reason)

        reference = f"tr_{len(self.transfers) + 1:06d}"
        self.transfers[reference] = ScriptedTransfer(
            reference=reference,
            amount=Decimal(amount),
            currency=currency,
            destination=destination,
            idempotency_key=idempotency_key,
            metadata=dict(metadata or {}),
            outcome=self.default_outcome,
        )
        self._by_key[idempotency_key] = reference
        if self._timeout_pending:
            self._timeout_pending = False
            raise PayoutOutcomeUnknownError(idempotency_key, "read timed out")
        return reference

    def status(self, reference: str) -> PayoutOutcome:
        if self._status_timeout:
            raise PayoutOutcomeUnknownError(reference, "read timed out")
        transfer = self.transfers.get(reference)
        if transfer is None:
            raise PayoutRailError(f"no such transfer {reference}", reference)
        return transfer.outcome

    @property
    def total_paid(self) -> Decimal:
        return sum(
            (t.amount for t in self.transfers.values() if t.outcome == PayoutOutcome.SUCCEEDED),
            Decimal("0"),
        )
