"""
Typed Exception Hierarchy for the Wallet Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Money movement must fail precisely.  Callers (controllers, scripts, the
orchestrator) need to tell "insufficient balance" apart from "commission
already claimed" without parsing message strings.  Therefore:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Services raise these errors.  WalletOrchestrator catches WalletKernelError,
rolls the transaction back, and converts the error into a WalletResult so
that validation failures never cross the service boundary as exceptions.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WalletKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidTransferError
    |   +-- InvalidFilterError
    |   +-- ReasonRequiredError
    |   +-- BelowMinimumWithdrawalError
    |
    +-- AccountError
    |   +-- AccountNotFoundError
    |   +-- AccountFrozenError
    |   +-- InsufficientBalanceError
    |
    +-- LedgerError
    |   +-- TransactionNotFoundError
    |   +-- EntryAlreadyReversedError
    |
    +-- CommissionError
    |   +-- CommissionNotFoundError
    |   +-- CommissionNotEligibleError
    |   +-- CommissionAlreadyLockedError
    |
    +-- WithdrawalError
    |   +-- WithdrawalNotFoundError
    |   +-- InvalidStateError
    |   +-- UnauthorizedError
    |
    +-- RefundError
    |   +-- RefundNotFoundError
    |
    +-- PayoutError
    |   +-- ReconciliationConflictError
    |   +-- PayoutDestinationMissingError
    |   +-- PayoutRailError
    |   +-- PayoutOutcomeUnknownError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                          | When Raised
-------------|-------------------------------|-----------------------------------------
Validation   | INVALID_AMOUNT                | Amount <= 0 or does not match commissions
             | INVALID_TRANSFER              | Source and destination are the same
             | INVALID_FILTER                | Transaction filter failed validation
             | REASON_REQUIRED               | Rejection without a reason
             | BELOW_MINIMUM_WITHDRAWAL      | Amount under configured minimum
-------------|-------------------------------|-----------------------------------------
Account      | ACCOUNT_NOT_FOUND             | Account ID doesn't exist
             | ACCOUNT_FROZEN                | Account status is not ACTIVE
             | INSUFFICIENT_BALANCE          | Debit would overdraw the account
-------------|-------------------------------|-----------------------------------------
Ledger       | TRANSACTION_NOT_FOUND         | Transaction ID doesn't exist
             | ENTRY_ALREADY_REVERSED        | Transaction already has a reversal
-------------|-------------------------------|-----------------------------------------
Commission   | COMMISSION_NOT_FOUND          | Commission ID doesn't exist
             | COMMISSION_NOT_ELIGIBLE       | Wrong owner, not CONFIRMED, no rate
             | COMMISSION_ALREADY_LOCKED     | Claimed by another active withdrawal
-------------|-------------------------------|-----------------------------------------
Withdrawal   | WITHDRAWAL_NOT_FOUND          | Withdrawal ID doesn't exist
             | INVALID_STATE                 | Transition not allowed from status
             | UNAUTHORIZED                  | Requester does not own the record
-------------|-------------------------------|-----------------------------------------
Refund       | REFUND_NOT_FOUND              | Refund request ID doesn't exist
-------------|-------------------------------|-----------------------------------------
Payout       | RECONCILIATION_CONFLICT       | External outcome contradicts state
             | PAYOUT_DESTINATION_MISSING    | No connected account to pay into
             | PAYOUT_RAIL_ERROR             | Rail definitively refused the payout
             | PAYOUT_OUTCOME_UNKNOWN        | Rail call timed out, result unknown
-------------|-------------------------------|-----------------------------------------
Immutability | IMMUTABILITY_VIOLATION        | Modifying a completed ledger row

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Inherit from Exception, not ValueError.  Domain errors are catchable
   as a group and never confused with programming errors.

2. code is a class attribute.  InsufficientBalanceError.code is available
   without instantiation (API docs, result mapping).

3. All context is stored as attributes.  WalletResult.details is built
   from vars(error); parsed message strings are never needed.

===============================================================================
"""


class WalletKernelError(Exception):
    """
    Base exception for all wallet kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "WALLET_KERNEL_ERROR"


# Validation exceptions


class ValidationError(WalletKernelError):
    """Base exception for request validation errors."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Amount is not positive, or does not match the referenced commissions."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class InvalidTransferError(ValidationError):
    """Transfer request is structurally invalid."""

    code: str = "INVALID_TRANSFER"

    def __init__(self, from_account_id: str, to_account_id: str, reason: str):
        self.from_account_id = from_account_id
        self.to_account_id = to_account_id
        self.reason = reason
        super().__init__(
            f"Invalid transfer {from_account_id} -> {to_account_id}: {reason}"
        )


class InvalidFilterError(ValidationError):
    """Transaction filter failed boundary validation."""

    code: str = "INVALID_FILTER"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid filter field '{field}': {reason}")


class ReasonRequiredError(ValidationError):
    """An operation that must carry a reason was called without one."""

    code: str = "REASON_REQUIRED"

    def __init__(self, operation: str, entity_id: str):
        self.operation = operation
        self.entity_id = entity_id
        super().__init__(f"A reason is required to {operation} {entity_id}")


class BelowMinimumWithdrawalError(ValidationError):
    """Withdrawal amount is below the configured minimum."""

    code: str = "BELOW_MINIMUM_WITHDRAWAL"

    def __init__(self, amount: str, minimum: str):
        self.amount = amount
        self.minimum = minimum
        super().__init__(
            f"Withdrawal amount {amount} is below the minimum of {minimum}"
        )


# Account-related exceptions


class AccountError(WalletKernelError):
    """Base exception for ledger account errors."""

    code: str = "ACCOUNT_ERROR"


class AccountNotFoundError(AccountError):
    """Account with given ID (or owner) was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Ledger account not found: {account_id}")


class AccountFrozenError(AccountError):
    """Account is not ACTIVE and cannot be mutated."""

    code: str = "ACCOUNT_FROZEN"

    def __init__(self, account_id: str, status: str):
        self.account_id = account_id
        self.status = status
        super().__init__(
            f"Ledger account {account_id} is not active (status: {status})"
        )


class InsufficientBalanceError(AccountError):
    """Debit would take the account below zero."""

    code: str = "INSUFFICIENT_BALANCE"

    def __init__(self, account_id: str, available: str, required: str):
        self.account_id = account_id
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient balance on {account_id}. "
            f"Available: {available}, Required: {required}"
        )


# Ledger log exceptions


class LedgerError(WalletKernelError):
    """Base exception for transaction log errors."""

    code: str = "LEDGER_ERROR"


class TransactionNotFoundError(LedgerError):
    """Ledger transaction with given ID was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Ledger transaction not found: {transaction_id}")


class EntryAlreadyReversedError(LedgerError):
    """Ledger transaction already has a reversing entry."""

    code: str = "ENTRY_ALREADY_REVERSED"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Ledger transaction already reversed: {transaction_id}")


# Commission-related exceptions


class CommissionError(WalletKernelError):
    """Base exception for commission errors."""

    code: str = "COMMISSION_ERROR"


class CommissionNotFoundError(CommissionError):
    """Commission with given ID was not found."""

    code: str = "COMMISSION_NOT_FOUND"

    def __init__(self, commission_id: str):
        self.commission_id = commission_id
        super().__init__(f"Commission not found: {commission_id}")


class CommissionNotEligibleError(CommissionError):
    """Commission cannot be used for the requested operation."""

    code: str = "COMMISSION_NOT_ELIGIBLE"

    def __init__(self, commission_id: str, reason: str):
        self.commission_id = commission_id
        self.reason = reason
        super().__init__(f"Commission {commission_id} not eligible: {reason}")


class CommissionAlreadyLockedError(CommissionError):
    """Commission is claimed by another active withdrawal."""

    code: str = "COMMISSION_ALREADY_LOCKED"

    def __init__(self, commission_id: str, withdrawal_id: str | None):
        self.commission_id = commission_id
        self.withdrawal_id = withdrawal_id
        super().__init__(
            f"Commission {commission_id} is locked by withdrawal {withdrawal_id}"
        )


# Withdrawal-related exceptions


class WithdrawalError(WalletKernelError):
    """Base exception for withdrawal errors."""

    code: str = "WITHDRAWAL_ERROR"


class WithdrawalNotFoundError(WithdrawalError):
    """Withdrawal with given ID was not found."""

    code: str = "WITHDRAWAL_NOT_FOUND"

    def __init__(self, withdrawal_id: str):
        self.withdrawal_id = withdrawal_id
        super().__init__(f"Withdrawal not found: {withdrawal_id}")


class InvalidStateError(WithdrawalError):
    """
    State-machine transition not permitted from the current status.

    Raised for withdrawals, commissions and accounts alike; entity_type
    identifies which.
    """

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        attempted: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} {entity_type} {entity_id} "
            f"in status {current_status}"
        )


class UnauthorizedError(WithdrawalError):
    """Requester does not own the entity they are acting on."""

    code: str = "UNAUTHORIZED"

    def __init__(self, entity_type: str, entity_id: str, requester_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.requester_id = requester_id
        super().__init__(
            f"{requester_id} is not allowed to act on {entity_type} {entity_id}"
        )


# Refund-related exceptions


class RefundError(WalletKernelError):
    """Base exception for refund request errors."""

    code: str = "REFUND_ERROR"


class RefundNotFoundError(RefundError):
    """Refund request with given ID was not found."""

    code: str = "REFUND_NOT_FOUND"

    def __init__(self, refund_id: str):
        self.refund_id = refund_id
        super().__init__(f"Refund request not found: {refund_id}")


# Payout-related exceptions


class PayoutError(WalletKernelError):
    """Base exception for external payout errors."""

    code: str = "PAYOUT_ERROR"


class ReconciliationConflictError(PayoutError):
    """
    External payout outcome contradicts the recorded withdrawal state.

    Never auto-resolved: a conflict means either a foreign reference or an
    out-of-order notification and needs an operator.
    """

    code: str = "RECONCILIATION_CONFLICT"

    def __init__(
        self,
        withdrawal_id: str,
        recorded_reference: str | None,
        received_reference: str | None,
        reason: str,
    ):
        self.withdrawal_id = withdrawal_id
        self.recorded_reference = recorded_reference
        self.received_reference = received_reference
        self.reason = reason
        super().__init__(
            f"Reconciliation conflict on withdrawal {withdrawal_id}: {reason} "
            f"(recorded={recorded_reference}, received={received_reference})"
        )


class PayoutDestinationMissingError(PayoutError):
    """Withdrawal has no payout destination to transfer into."""

    code: str = "PAYOUT_DESTINATION_MISSING"

    def __init__(self, withdrawal_id: str):
        self.withdrawal_id = withdrawal_id
        super().__init__(
            f"Withdrawal {withdrawal_id} has no payout destination"
        )


class PayoutRailError(PayoutError):
    """Payment rail definitively refused or failed the transfer."""

    code: str = "PAYOUT_RAIL_ERROR"

    def __init__(self, reason: str, reference: str | None = None):
        self.reason = reason
        self.reference = reference
        super().__init__(f"Payout rail error: {reason}")


class PayoutOutcomeUnknownError(PayoutError):
    """Payment rail call did not return; the transfer may or may not exist."""

    code: str = "PAYOUT_OUTCOME_UNKNOWN"

    def __init__(self, idempotency_key: str, reason: str):
        self.idempotency_key = idempotency_key
        self.reason = reason
        super().__init__(
            f"Payout outcome unknown for {idempotency_key}: {reason}"
        )


# Immutability-related exceptions


class ImmutabilityError(WalletKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Completed ledger transactions are append-only; accounts are never
    deleted; terminal commissions and withdrawals are frozen.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
