"""ORM models for the wallet kernel."""

from wallet_kernel.models.commission import (
    Commission,
    CommissionStatus,
    CommissionType,
    TERMINAL_COMMISSION_STATUSES,
)
from wallet_kernel.models.ledger_account import AccountStatus, LedgerAccount, OwnerType
from wallet_kernel.models.ledger_transaction import (
    LedgerTransaction,
    TransactionDirection,
    TransactionStatus,
    TransactionType,
)
from wallet_kernel.models.refund_request import (
    RefundRequest,
    RefundSource,
    RefundStatus,
    TERMINAL_REFUND_STATUSES,
)
from wallet_kernel.models.withdrawal import PaymentMethod, Withdrawal, WithdrawalStatus

__all__ = [
    "LedgerAccount",
    "OwnerType",
    "AccountStatus",
    "LedgerTransaction",
    "TransactionDirection",
    "TransactionStatus",
    "TransactionType",
    "Commission",
    "CommissionStatus",
    "CommissionType",
    "TERMINAL_COMMISSION_STATUSES",
    "Withdrawal",
    "WithdrawalStatus",
    "PaymentMethod",
    "RefundRequest",
    "RefundSource",
    "RefundStatus",
    "TERMINAL_REFUND_STATUSES",
]
