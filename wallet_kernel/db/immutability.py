"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

Wallet history must be tamper-proof.  A completed ledger transaction can
never be edited, only reversed with a new row that leaves a visible trail.

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (PostgreSQL triggers)
    - Catches raw SQL, bulk UPDATE statements, direct psql access

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity             | When Immutable                 | What
-------------------|--------------------------------|------------------------------
LedgerTransaction  | status = COMPLETED             | every field, and DELETE
LedgerAccount      | ALWAYS                         | DELETE; owner fields, currency
LedgerAccount      | status = CLOSED                | status
Commission         | status in PAID, CANCELLED      | every field
Withdrawal         | status in PAID, REJECTED,      | every field
                   | CANCELLED                      |
RefundRequest      | status in APPROVED, REJECTED   | every field

Balance columns on LedgerAccount are changed by BalanceEngine through Core
UPDATE statements; those never reach these mapper events and are covered
by the PostgreSQL trigger instead.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. updated_at/updated_by_id may always change.  They are audit metadata.

2. "Was terminal" is read from attribute history, so the transition INTO a
   terminal state (e.g. PROCESSING -> PAID) is allowed while any later
   change is blocked.

3. Model imports are inline to avoid circular imports.

===============================================================================
USAGE
===============================================================================

    from wallet_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()

===============================================================================
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from wallet_kernel.exceptions import ImmutabilityViolationError
from wallet_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _previous_status(target):
    """Status the row had before this flush began."""
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    return target.status


def _block(entity_type: str, entity_id, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _first_changed_field(target) -> str | None:
    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            return attr.key
    return None


def _check_ledger_transaction_immutability(mapper, connection, target):
    """Completed ledger transactions cannot be modified."""
    from wallet_kernel.models.ledger_transaction import TransactionStatus

    if _previous_status(target) != TransactionStatus.COMPLETED:
        return
    field = _first_changed_field(target)
    if field is not None:
        _block(
            "LedgerTransaction",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on completed ledger transaction",
            field=field,
        )


def _check_ledger_transaction_delete(mapper, connection, target):
    """Completed ledger transactions cannot be deleted."""
    from wallet_kernel.models.ledger_transaction import TransactionStatus

    if target.status == TransactionStatus.COMPLETED:
        _block(
            "LedgerTransaction",
            target.id,
            "DELETE",
            "Completed ledger transactions cannot be deleted",
        )


def _check_ledger_account_immutability(mapper, connection, target):
    """Owner fields never change; CLOSED accounts stay CLOSED."""
    from wallet_kernel.models.ledger_account import AccountStatus

    for field in ("owner_type", "owner_id", "currency"):
        if get_history(target, field).deleted:
            _block(
                "LedgerAccount",
                target.id,
                "UPDATE",
                f"Field '{field}' of a ledger account is immutable",
                field=field,
            )

    status_history = get_history(target, "status")
    if status_history.deleted and status_history.deleted[0] == AccountStatus.CLOSED:
        _block(
            "LedgerAccount",
            target.id,
            "UPDATE",
            "Closed ledger accounts cannot be reopened",
            field="status",
        )


def _check_ledger_account_delete(mapper, connection, target):
    """Ledger accounts are never deleted."""
    _block(
        "LedgerAccount",
        target.id,
        "DELETE",
        "Ledger accounts cannot be deleted",
    )


def _check_commission_immutability(mapper, connection, target):
    """Paid and cancelled commissions are frozen."""
    from wallet_kernel.models.commission import TERMINAL_COMMISSION_STATUSES

    if _previous_status(target) not in TERMINAL_COMMISSION_STATUSES:
        return
    field = _first_changed_field(target)
    if field is not None:
        _block(
            "Commission",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on a {target.status} commission",
            field=field,
        )


def _check_withdrawal_immutability(mapper, connection, target):
    """Paid, rejected and cancelled withdrawals are frozen."""
    from wallet_kernel.domain.withdrawal_lifecycle import TERMINAL_WITHDRAWAL_STATUSES

    if _previous_status(target) not in TERMINAL_WITHDRAWAL_STATUSES:
        return
    field = _first_changed_field(target)
    if field is not None:
        _block(
            "Withdrawal",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on a {target.status} withdrawal",
            field=field,
        )


def _check_refund_immutability(mapper, connection, target):
    """Approved and rejected refund requests are frozen."""
    from wallet_kernel.models.refund_request import RefundStatus, TERMINAL_REFUND_STATUSES

    if RefundStatus(_previous_status(target)) not in TERMINAL_REFUND_STATUSES:
        return
    field = _first_changed_field(target)
    if field is not None:
        _block(
            "RefundRequest",
            target.id,
            "UPDATE",
            f"Cannot modify field '{field}' on a {target.status} refund request",
            field=field,
        )


def _listener_table():
    from wallet_kernel.models import (
        Commission,
        LedgerAccount,
        LedgerTransaction,
        RefundRequest,
        Withdrawal,
    )

    return [
        (LedgerTransaction, "before_update", _check_ledger_transaction_immutability),
        (LedgerTransaction, "before_delete", _check_ledger_transaction_delete),
        (LedgerAccount, "before_update", _check_ledger_account_immutability),
        (LedgerAccount, "before_delete", _check_ledger_account_delete),
        (Commission, "before_update", _check_commission_immutability),
        (Withdrawal, "before_update", _check_withdrawal_immutability),
        (RefundRequest, "before_update", _check_refund_immutability),
    ]


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left alone.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally violate immutability.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
