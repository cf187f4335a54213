"""
Tests for RefundService -- company refund requests.

Covers:
- create(): positive amount and a reason are required
- approve(): credits the company wallet once, with the refund type
  matching what was originally paid for
- reject(): reason required, ledger untouched
- review only from PENDING
- selector queue and company history
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from wallet_kernel.exceptions import (
    AccountFrozenError,
    InvalidAmountError,
    InvalidStateError,
    ReasonRequiredError,
    RefundNotFoundError,
)
from wallet_kernel.models.ledger_account import AccountStatus
from wallet_kernel.models.ledger_transaction import TransactionDirection, TransactionType
from wallet_kernel.models.refund_request import RefundSource, RefundStatus
from wallet_kernel.selectors import LedgerSelector, RefundSelector


@pytest.fixture
def refund_selector(session):
    return RefundSelector(session)


@pytest.fixture
def pending_refund(refund_service, company_account, test_actor_id):
    return refund_service.create(
        "company-001", "tx-job-77", RefundSource.JOB_PAYMENT, Decimal("1990.00"),
        "Job cancelled before publishing", test_actor_id,
    )


class TestCreate:
    def test_pending(self, pending_refund):
        assert pending_refund.status == RefundStatus.PENDING
        assert pending_refund.amount == Decimal("1990.00")
        assert pending_refund.source == RefundSource.JOB_PAYMENT
        assert pending_refund.credit_transaction_id is None

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_amount_must_be_positive(self, refund_service, test_actor_id, amount):
        with pytest.raises(InvalidAmountError):
            refund_service.create(
                "company-001", "tx-1", "job_payment", amount, "Duplicate charge", test_actor_id
            )

    def test_reason_required(self, refund_service, test_actor_id):
        with pytest.raises(ReasonRequiredError):
            refund_service.create(
                "company-001", "tx-1", "job_payment", "10.00", "  ", test_actor_id
            )

    def test_unknown_source(self, refund_service, test_actor_id):
        with pytest.raises(ValueError):
            refund_service.create(
                "company-001", "tx-1", "gift_card", "10.00", "Wrong product", test_actor_id
            )


class TestApprove:
    def test_credits_company_wallet(
        self, session, refund_service, balance_engine, company_account, pending_refund, admin_id
    ):
        approved = refund_service.approve(pending_refund.refund_id, admin_id, "Confirmed")

        assert approved.status == RefundStatus.APPROVED
        assert approved.processed_by == admin_id
        assert approved.processed_at is not None
        assert approved.admin_notes == "Confirmed"
        assert balance_engine.get_account(company_account.id).balance == Decimal("11990.00")

        credit = LedgerSelector(session).get_transaction(approved.credit_transaction_id)
        assert credit.type == TransactionType.JOB_REFUND
        assert credit.direction == TransactionDirection.CREDIT
        assert credit.amount == Decimal("1990.00")
        assert credit.related_entity_type == "refund_request"
        assert credit.related_entity_id == str(pending_refund.refund_id)
        assert credit.description == "Refund approved: Job cancelled before publishing"

    def test_subscription_bill_refunded_as_subscription_refund(
        self, session, refund_service, company_account, test_actor_id, admin_id
    ):
        refund = refund_service.create(
            "company-001", "sub-bill-9", RefundSource.SUBSCRIPTION_BILL, "299.00",
            "Charged twice", test_actor_id,
        )
        approved = refund_service.approve(refund.refund_id, admin_id)
        credit = LedgerSelector(session).get_transaction(approved.credit_transaction_id)
        assert credit.type == TransactionType.SUBSCRIPTION_REFUND

    def test_opens_wallet_for_new_company(self, session, refund_service, test_actor_id, admin_id):
        refund = refund_service.create(
            "company-new", "addon-3", RefundSource.ADDON_SERVICE_CHARGE, "49.00",
            "Service not delivered", test_actor_id,
        )
        refund_service.approve(refund.refund_id, admin_id)
        wallet = LedgerSelector(session).get_account_by_owner("company", "company-new")
        assert wallet.balance == Decimal("49.00")

    def test_second_approval_refused(
        self, refund_service, balance_engine, company_account, pending_refund, admin_id
    ):
        refund_service.approve(pending_refund.refund_id, admin_id)
        with pytest.raises(InvalidStateError) as exc_info:
            refund_service.approve(pending_refund.refund_id, admin_id)
        assert exc_info.value.current_status == "approved"
        assert balance_engine.get_account(company_account.id).balance == Decimal("11990.00")

    def test_frozen_wallet_leaves_request_pending(
        self, refund_service, refund_selector, balance_engine, company_account,
        pending_refund, test_actor_id, admin_id,
    ):
        balance_engine.set_account_status(company_account.id, AccountStatus.FROZEN, test_actor_id)
        with pytest.raises(AccountFrozenError):
            refund_service.approve(pending_refund.refund_id, admin_id)
        assert refund_selector.get(pending_refund.refund_id).status == RefundStatus.PENDING

    def test_unknown(self, refund_service, admin_id):
        with pytest.raises(RefundNotFoundError):
            refund_service.approve(uuid4(), admin_id)

    def test_logged(self, refund_service, pending_refund, admin_id, captured_logs):
        refund_service.approve(pending_refund.refund_id, admin_id)
        approved = [r for r in captured_logs() if r["message"] == "refund_approved"]
        assert approved[0]["refund_id"] == str(pending_refund.refund_id)
        assert approved[0]["transaction_type"] == "job_refund"


class TestReject:
    def test_reject(
        self, refund_service, balance_engine, company_account, pending_refund, admin_id
    ):
        rejected = refund_service.reject(pending_refund.refund_id, admin_id, " Outside window ")
        assert rejected.status == RefundStatus.REJECTED
        assert rejected.rejection_reason == "Outside window"
        assert rejected.credit_transaction_id is None
        assert balance_engine.get_account(company_account.id).balance == Decimal("10000.00")

    def test_reason_required(self, refund_service, pending_refund, admin_id):
        with pytest.raises(ReasonRequiredError):
            refund_service.reject(pending_refund.refund_id, admin_id, None)

    def test_cannot_approve_after_reject(self, refund_service, pending_refund, admin_id):
        refund_service.reject(pending_refund.refund_id, admin_id, "Not eligible")
        with pytest.raises(InvalidStateError):
            refund_service.approve(pending_refund.refund_id, admin_id)


class TestRefundSelector:
    def test_pending_queue_oldest_first(
        self, refund_service, refund_selector, deterministic_clock, test_actor_id, admin_id
    ):
        ids = []
        for company in ("company-a", "company-b", "company-a"):
            deterministic_clock.tick()
            ids.append(
                refund_service.create(
                    company, "tx", "job_payment", "5.00", "Duplicate", test_actor_id
                ).refund_id
            )
        refund_service.reject(ids[1], admin_id, "Not eligible")

        queue = refund_selector.pending()
        assert [r.refund_id for r in queue.items] == [ids[0], ids[2]]
        assert queue.total == 2
        assert refund_selector.pending("company-b").total == 0

    def test_company_history_newest_first(
        self, refund_service, refund_selector, deterministic_clock, test_actor_id
    ):
        ids = []
        for _ in range(3):
            deterministic_clock.tick()
            ids.append(
                refund_service.create(
                    "company-h", "tx", "job_payment", "5.00", "Duplicate", test_actor_id
                ).refund_id
            )
        page = refund_selector.list_for_company("company-h", limit=2)
        assert [r.refund_id for r in page.items] == [ids[2], ids[1]]
        assert page.has_more
