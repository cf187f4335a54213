"""
Concurrency tests for withdrawal creation and wallet debits.

Each thread works in its own session against PostgreSQL, released together
by a Barrier so the requests genuinely overlap.

Expected Behavior:
- Two withdrawals racing for the same commission: exactly one wins, the
  other gets CommissionAlreadyLockedError, and the commission is locked once
- Concurrent debits against one account never take it below zero, and the
  final balance equals the opening balance minus the successful debits
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from tests.conftest import CONSULTANT_ID, STRIPE_DESTINATION
from wallet_kernel.domain.clock import SystemClock
from wallet_kernel.exceptions import CommissionAlreadyLockedError, InsufficientBalanceError
from wallet_kernel.models.commission import Commission, CommissionStatus, CommissionType
from wallet_kernel.models.ledger_account import LedgerAccount, OwnerType
from wallet_kernel.models.ledger_transaction import LedgerTransaction, TransactionType
from wallet_kernel.models.withdrawal import PaymentMethod, Withdrawal
from wallet_kernel.services.balance_engine import BalanceEngine
from wallet_kernel.services.withdrawal_service import WithdrawalService

pytestmark = pytest.mark.postgres

ACTOR_ID = uuid4()


def _seed_commission(factory, amount: str) -> Commission:
    session = factory()
    now = SystemClock().now()
    commission = Commission(
        consultant_id=CONSULTANT_ID,
        region_id="region-eu",
        amount=Decimal(amount),
        type=CommissionType.PLACEMENT,
        status=CommissionStatus.CONFIRMED,
        description="Race commission",
        confirmed_at=now,
        created_by_id=ACTOR_ID,
        created_at=now,
        updated_at=now,
    )
    session.add(commission)
    session.commit()
    return commission


class TestWithdrawalCreateRace:
    def test_same_commission_locked_once(self, pg_session_factory):
        commission = _seed_commission(pg_session_factory, "100.00")
        barrier = Barrier(2)

        def attempt(_):
            session = pg_session_factory()
            service = WithdrawalService(session, SystemClock())
            barrier.wait()
            try:
                record = service.create(
                    CONSULTANT_ID,
                    Decimal("100.00"),
                    PaymentMethod.STRIPE_CONNECT,
                    [commission.id],
                    ACTOR_ID,
                    payment_details=STRIPE_DESTINATION,
                )
                session.commit()
                return record.withdrawal_id
            except CommissionAlreadyLockedError as exc:
                session.rollback()
                return exc

        with ThreadPoolExecutor(max_workers=2) as pool:
            outcomes = list(pool.map(attempt, range(2)))

        wins = [o for o in outcomes if not isinstance(o, Exception)]
        losses = [o for o in outcomes if isinstance(o, CommissionAlreadyLockedError)]
        assert len(wins) == 1
        assert len(losses) == 1

        check = pg_session_factory()
        locked = check.get(Commission, commission.id)
        assert locked.withdrawal_id == wins[0]
        assert check.execute(select(func.count()).select_from(Withdrawal)).scalar_one() == 1


class TestConcurrentDebits:
    def test_balance_never_negative(self, pg_session_factory):
        seed = pg_session_factory()
        account = BalanceEngine(seed, SystemClock()).get_or_create_account(
            OwnerType.COMPANY, "company-race", ACTOR_ID, initial_balance=Decimal("100.00")
        )
        seed.commit()
        account_id = account.id

        workers = 8
        barrier = Barrier(workers)

        def debit(_):
            session = pg_session_factory()
            engine = BalanceEngine(session, SystemClock())
            barrier.wait()
            try:
                engine.debit_account(
                    account_id,
                    Decimal("30.00"),
                    TransactionType.JOB_POSTING_FEE,
                    "Concurrent job posting",
                    ACTOR_ID,
                )
                session.commit()
                return True
            except InsufficientBalanceError:
                session.rollback()
                return False

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(debit, range(workers)))

        # 100.00 covers three debits of 30.00
        assert results.count(True) == 3

        check = pg_session_factory()
        final = check.get(LedgerAccount, account_id)
        assert final.balance == Decimal("10.00")
        debits = check.execute(
            select(func.count())
            .select_from(LedgerTransaction)
            .where(
                LedgerTransaction.account_id == account_id,
                LedgerTransaction.type == TransactionType.JOB_POSTING_FEE,
            )
        ).scalar_one()
        assert debits == 3
