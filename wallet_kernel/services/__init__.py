"""Services for the wallet kernel (write side)."""

from wallet_kernel.services.balance_engine import BalanceEngine, TransferResult
from wallet_kernel.services.commission_service import CommissionService
from wallet_kernel.services.payout_reconciliation import (
    PayoutReconciliation,
    ReconciliationResult,
    ReconciliationSummary,
)
from wallet_kernel.services.refund_service import RefundService
from wallet_kernel.services.wallet_orchestrator import (
    WalletOrchestrator,
    WalletResult,
    WalletResultStatus,
)
from wallet_kernel.services.wallet_payment_service import JobPaymentCheck, WalletPaymentService
from wallet_kernel.services.withdrawal_service import WithdrawalService

__all__ = [
    "BalanceEngine",
    "CommissionService",
    "JobPaymentCheck",
    "PayoutReconciliation",
    "ReconciliationResult",
    "ReconciliationSummary",
    "RefundService",
    "TransferResult",
    "WalletOrchestrator",
    "WalletPaymentService",
    "WalletResult",
    "WalletResultStatus",
    "WithdrawalService",
]
