"""
Withdrawal lifecycle -- the settlement state machine as data.

Responsibility:
    Declares every permitted withdrawal transition in one table and
    validates requested transitions against it.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - PENDING -> APPROVED -> PROCESSING -> PAID is the only path to PAID.
    - PROCESSING -> APPROVED on a failed payout (retry later).
    - PENDING -> REJECTED; PENDING/APPROVED -> CANCELLED.
    - PAID, REJECTED and CANCELLED are terminal.

Failure modes:
    - InvalidStateError for any transition not in the table.
"""

from enum import Enum

from wallet_kernel.exceptions import InvalidStateError
from wallet_kernel.models.withdrawal import WithdrawalStatus


class WithdrawalAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    BEGIN_PROCESSING = "begin_processing"
    MARK_PAID = "mark_paid"
    PAYOUT_FAILED = "payout_failed"


TRANSITIONS: dict[tuple[WithdrawalStatus, WithdrawalAction], WithdrawalStatus] = {
    (WithdrawalStatus.PENDING, WithdrawalAction.APPROVE): WithdrawalStatus.APPROVED,
    (WithdrawalStatus.PENDING, WithdrawalAction.REJECT): WithdrawalStatus.REJECTED,
    (WithdrawalStatus.PENDING, WithdrawalAction.CANCEL): WithdrawalStatus.CANCELLED,
    (WithdrawalStatus.APPROVED, WithdrawalAction.CANCEL): WithdrawalStatus.CANCELLED,
    (WithdrawalStatus.APPROVED, WithdrawalAction.BEGIN_PROCESSING): WithdrawalStatus.PROCESSING,
    (WithdrawalStatus.PROCESSING, WithdrawalAction.MARK_PAID): WithdrawalStatus.PAID,
    (WithdrawalStatus.PROCESSING, WithdrawalAction.PAYOUT_FAILED): WithdrawalStatus.APPROVED,
}

TERMINAL_WITHDRAWAL_STATUSES = frozenset({
    WithdrawalStatus.PAID,
    WithdrawalStatus.REJECTED,
    WithdrawalStatus.CANCELLED,
})

# Statuses in which a withdrawal holds its commission locks
LOCKING_WITHDRAWAL_STATUSES = frozenset({
    WithdrawalStatus.PENDING,
    WithdrawalStatus.APPROVED,
    WithdrawalStatus.PROCESSING,
    WithdrawalStatus.PAID,
})


def next_status(
    current: WithdrawalStatus | str,
    action: WithdrawalAction,
    withdrawal_id: str = "",
) -> WithdrawalStatus:
    """
    Return the status reached by applying action to current.

    Raises:
        InvalidStateError: If the transition is not in TRANSITIONS.
    """
    status = WithdrawalStatus(current)
    try:
        return TRANSITIONS[(status, action)]
    except KeyError:
        raise InvalidStateError(
            entity_type="withdrawal",
            entity_id=withdrawal_id,
            current_status=status.value,
            attempted=action.value,
        ) from None


def can_transition(current: WithdrawalStatus | str, action: WithdrawalAction) -> bool:
    return (WithdrawalStatus(current), action) in TRANSITIONS


def is_terminal(status: WithdrawalStatus | str) -> bool:
    return WithdrawalStatus(status) in TERMINAL_WITHDRAWAL_STATUSES
