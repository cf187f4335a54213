"""
Wallet Kernel

A ledger-backed virtual wallet for companies, consultants and sales agents:
- Atomic credit/debit/transfer with an append-only transaction log
- Commission accrual and confirmation
- Withdrawal settlement state machine with commission locking
- Idempotent reconciliation of external payouts
"""

__version__ = "0.1.0"
