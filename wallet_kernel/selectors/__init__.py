"""Read-only selectors returning DTOs."""

from wallet_kernel.selectors.commission_selector import CommissionSelector
from wallet_kernel.selectors.ledger_selector import LedgerSelector
from wallet_kernel.selectors.refund_selector import RefundSelector
from wallet_kernel.selectors.withdrawal_selector import WithdrawalSelector

__all__ = ["CommissionSelector", "LedgerSelector", "RefundSelector", "WithdrawalSelector"]
