"""
Pytest fixtures for the wallet kernel test suite.

Provides:
- A session-scoped engine and schema, with per-test rollback isolation
- Structured-logging fixtures
- Service, rail and data fixtures

Environment Variables:
- DATABASE_URL: optional.  A postgresql:// URL runs the suite (including
  the ``postgres``-marked concurrency tests) against PostgreSQL; otherwise a
  temporary SQLite file is used and ``postgres`` tests are skipped.
"""

import json
import logging
import os
import threading
from datetime import timedelta
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from wallet_config import get_active_config
from wallet_kernel.adapters.scripted_rail import ScriptedPayoutRail
from wallet_kernel.db.base import Base
from wallet_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from wallet_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from wallet_kernel.domain.clock import DeterministicClock
from wallet_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from wallet_kernel.models.commission import Commission, CommissionStatus, CommissionType
from wallet_kernel.models.ledger_account import OwnerType
from wallet_kernel.models.withdrawal import PaymentMethod
from wallet_kernel.services.balance_engine import BalanceEngine
from wallet_kernel.services.commission_service import CommissionService
from wallet_kernel.services.payout_reconciliation import PayoutReconciliation
from wallet_kernel.services.refund_service import RefundService
from wallet_kernel.services.wallet_orchestrator import WalletOrchestrator
from wallet_kernel.services.wallet_payment_service import WalletPaymentService
from wallet_kernel.services.withdrawal_service import WithdrawalService


# Test actor IDs for all test operations
TEST_ACTOR_ID = uuid4()
TEST_ADMIN_ID = uuid4()

CONSULTANT_ID = "consultant-001"
STRIPE_DESTINATION = {"destination": "acct_1TestConsultant"}


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture wallet_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, balance_engine):
            balance_engine.credit_account(...)
            logs = captured_logs()
            assert any(r["message"] == "account_credited" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("wallet_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def _is_postgres_url(url: str | None) -> bool:
    return bool(url) and url.startswith("postgresql")


def pytest_collection_modifyitems(config, items):
    if _is_postgres_url(os.environ.get("DATABASE_URL")):
        return
    skip = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the entire test session."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        url = f"sqlite:///{tmp_path_factory.mktemp('wallet') / 'wallet_test.db'}"
    eng = init_engine_from_url(url, echo=False, pool_size=30, max_overflow=20, pool_timeout=10)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _truncate_all_tables(engine):
    """Remove all rows after tests that performed real commits."""
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    with engine.connect() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        else:
            for name in table_names:
                conn.execute(text(f"DELETE FROM {name}"))
        conn.commit()


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    The session joins an outer transaction on a dedicated connection with
    ``join_transaction_mode="create_savepoint"``: ``session.commit()`` in
    the code under test only releases a savepoint, and teardown rolls the
    outer transaction back.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture(scope="function")
def pg_session_factory(db_engine, db_tables):
    """Provide a tracked session factory for concurrent threads.

    Each thread creates its own session.  Teardown closes every session
    and truncates all data.
    """
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory():
        nonlocal closed
        with lock:
            if closed:
                raise RuntimeError("pg_session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True
    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()
    _truncate_all_tables(db_engine)


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def admin_id() -> UUID:
    return TEST_ADMIN_ID


# Clock fixtures


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


# Configuration


@pytest.fixture(scope="session")
def wallet_config():
    """The bundled default configuration."""
    return get_active_config()


# Service fixtures


@pytest.fixture
def balance_engine(session, deterministic_clock, wallet_config) -> BalanceEngine:
    return BalanceEngine(session, deterministic_clock, wallet_config.wallet)


@pytest.fixture
def commission_service(session, deterministic_clock, wallet_config) -> CommissionService:
    return CommissionService(session, deterministic_clock, wallet_config.commissions)


@pytest.fixture
def withdrawal_service(
    session, deterministic_clock, wallet_config, balance_engine
) -> WithdrawalService:
    return WithdrawalService(
        session, deterministic_clock, wallet_config.wallet, balance_engine=balance_engine
    )


@pytest.fixture
def reconciliation(
    session, deterministic_clock, withdrawal_service, wallet_config
) -> PayoutReconciliation:
    return PayoutReconciliation(
        session, deterministic_clock, withdrawal_service, wallet_config.payouts
    )


@pytest.fixture
def payment_service(
    session, deterministic_clock, wallet_config, balance_engine
) -> WalletPaymentService:
    return WalletPaymentService(
        session,
        deterministic_clock,
        wallet_config.wallet,
        wallet_config.commissions,
        balance_engine=balance_engine,
    )


@pytest.fixture
def refund_service(
    session, deterministic_clock, wallet_config, balance_engine
) -> RefundService:
    return RefundService(
        session, deterministic_clock, wallet_config.wallet, balance_engine=balance_engine
    )


@pytest.fixture
def scripted_rail() -> ScriptedPayoutRail:
    return ScriptedPayoutRail()


@pytest.fixture
def orchestrator(session, deterministic_clock, wallet_config, scripted_rail) -> WalletOrchestrator:
    return WalletOrchestrator(
        session, deterministic_clock, config=wallet_config, rail=scripted_rail
    )


# =============================================================================
# Data fixtures
# =============================================================================


@pytest.fixture
def company_account(balance_engine, test_actor_id):
    """A company wallet funded with 10000.00."""
    return balance_engine.get_or_create_account(
        OwnerType.COMPANY, "company-001", test_actor_id, initial_balance=Decimal("10000.00")
    )


@pytest.fixture
def make_commission(session, deterministic_clock, test_actor_id):
    """
    Factory inserting a commission directly.

    The clock ticks between rows so oldest-first ordering is deterministic.
    """

    def _make(
        amount: str | Decimal = "100.00",
        consultant_id: str = CONSULTANT_ID,
        status: CommissionStatus = CommissionStatus.CONFIRMED,
        region_id: str | None = "region-eu",
        type: CommissionType = CommissionType.PLACEMENT,
        job_id: str | None = None,
        expiry_date=None,
    ) -> Commission:
        now = deterministic_clock.tick()
        commission = Commission(
            consultant_id=consultant_id,
            region_id=region_id,
            amount=Decimal(str(amount)),
            type=type,
            status=status,
            description="Test commission",
            job_id=job_id,
            confirmed_at=now if status == CommissionStatus.CONFIRMED else None,
            expiry_date=expiry_date,
            created_by_id=test_actor_id,
            created_at=now,
            updated_at=now,
        )
        session.add(commission)
        session.flush()
        return commission

    return _make


@pytest.fixture
def approved_withdrawal(make_commission, withdrawal_service, test_actor_id, admin_id):
    """An APPROVED 150.00 withdrawal over two confirmed commissions."""
    first = make_commission("100.00")
    second = make_commission("50.00")
    record = withdrawal_service.create(
        CONSULTANT_ID,
        Decimal("150.00"),
        PaymentMethod.STRIPE_CONNECT,
        [first.id, second.id],
        test_actor_id,
        payment_details=STRIPE_DESTINATION,
    )
    return withdrawal_service.approve(record.withdrawal_id, admin_id)


@pytest.fixture
def expiry_in(deterministic_clock):
    """Helper returning a datetime offset from the test clock."""

    def _at(days: int):
        return deterministic_clock.now() + timedelta(days=days)

    return _at
