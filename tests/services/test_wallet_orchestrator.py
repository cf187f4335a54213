"""
Tests for WalletOrchestrator -- transaction boundary and payout execution.

Covers:
- WalletResult mapping: kernel errors roll back and return a failure with
  the error code and structured details; other errors propagate
- Ledger, commission and withdrawal operations end to end
- execute_withdrawal(): success, definitive refusal, unknown outcome
  resolved by the reconcile sweep, pending outcome settled by webhook
- Refund review and subscription billing through the transaction boundary
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from tests.conftest import CONSULTANT_ID, STRIPE_DESTINATION
from wallet_kernel.adapters.scripted_rail import ScriptedPayoutRail
from wallet_kernel.domain.payout import PayoutNotification, PayoutOutcome
from wallet_kernel.models.commission import CommissionStatus
from wallet_kernel.models.ledger_account import OwnerType
from wallet_kernel.models.ledger_transaction import TransactionType
from wallet_kernel.models.refund_request import RefundStatus
from wallet_kernel.models.withdrawal import PaymentMethod, WithdrawalStatus
from wallet_kernel.services.wallet_orchestrator import (
    WalletOrchestrator,
    WalletResult,
    WalletResultStatus,
)


@pytest.fixture
def confirmed_commissions(session, make_commission):
    """Two committed CONFIRMED commissions: 100.00 and 50.00."""
    commissions = [make_commission("100.00"), make_commission("50.00")]
    session.commit()
    return commissions


@pytest.fixture
def approved(orchestrator, confirmed_commissions, test_actor_id, admin_id):
    """Id of a committed APPROVED 150.00 withdrawal."""
    requested = orchestrator.request_withdrawal(
        CONSULTANT_ID, Decimal("150.00"), PaymentMethod.STRIPE_CONNECT,
        [c.id for c in confirmed_commissions], test_actor_id,
        payment_details=STRIPE_DESTINATION,
    )
    assert requested.is_success, requested.message
    wid = requested.value.withdrawal_id
    assert orchestrator.approve_withdrawal(wid, admin_id).is_success
    return wid


class TestResultMapping:
    def test_success(self, orchestrator, test_actor_id):
        result = orchestrator.open_account("company", "company-010", test_actor_id, Decimal("500"))
        assert result.is_success
        assert result.status == WalletResultStatus.SUCCEEDED
        assert result.value.balance == Decimal("500")

    def test_kernel_error_becomes_failure(self, orchestrator, test_actor_id):
        account = orchestrator.open_account("company", "company-011", test_actor_id, Decimal("20")).value
        result = orchestrator.debit(
            account.account_id, Decimal("25"), TransactionType.JOB_POSTING_FEE, "Fee", test_actor_id
        )
        assert not result.is_success
        assert result.error_code == "INSUFFICIENT_BALANCE"
        assert Decimal(result.details["available"]) == Decimal("20")
        assert result.details["required"] == "25"

    def test_failure_rolls_back_only_the_failed_operation(
        self, orchestrator, session, test_actor_id
    ):
        account = orchestrator.open_account("company", "company-012", test_actor_id).value
        orchestrator.credit(
            account.account_id, Decimal("10"), TransactionType.ADMIN_ADJUSTMENT, "Top up", test_actor_id
        )
        failed = orchestrator.transfer(account.account_id, uuid4(), Decimal("5"), "Lost", test_actor_id)
        assert failed.error_code == "ACCOUNT_NOT_FOUND"
        balance = orchestrator.get_balance("company", "company-012").value
        assert balance.balance == Decimal("10")

    def test_unexpected_error_propagates(
        self, orchestrator, captured_logs, monkeypatch, test_actor_id
    ):
        def boom(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(orchestrator.balance_engine, "credit_account", boom)
        with pytest.raises(RuntimeError):
            orchestrator.credit(uuid4(), Decimal("1"), "admin_adjustment", "x", test_actor_id)
        assert any(r["message"] == "wallet_operation_failed" for r in captured_logs())

    def test_rejection_logged_with_correlation_id(self, orchestrator, captured_logs):
        orchestrator.get_balance("company", "nobody")
        rejected = [r for r in captured_logs() if r["message"] == "wallet_operation_rejected"]
        assert rejected[-1]["operation"] == "get_balance"
        assert rejected[-1]["error_code"] == "ACCOUNT_NOT_FOUND"
        assert rejected[-1]["correlation_id"]

    def test_failure_helper(self):
        from wallet_kernel.exceptions import ReasonRequiredError

        result = WalletResult.failure(ReasonRequiredError("reject withdrawal", "w-1"))
        assert result.status == WalletResultStatus.FAILED
        assert result.details == {"operation": "reject withdrawal", "entity_id": "w-1"}


class TestLedgerOperations:
    def test_history_with_filters(self, orchestrator, deterministic_clock, test_actor_id):
        account = orchestrator.open_account(
            "company", "company-020", test_actor_id, Decimal("10000")
        ).value
        for title in ("A", "B", "C"):
            deterministic_clock.tick()
            orchestrator.pay_for_job("company-020", f"job-{title}", "shortlisting", test_actor_id, title)

        page = orchestrator.list_transactions(
            account.account_id, {"type": "job_posting_fee", "limit": 2}
        ).value
        assert page.total == 3
        assert len(page.items) == 2
        assert page.has_more
        assert page.items[0].description == "Job posting: C (shortlisting)"

    def test_invalid_filter(self, orchestrator, test_actor_id):
        account = orchestrator.open_account("company", "company-021", test_actor_id).value
        result = orchestrator.list_transactions(account.account_id, {"limit": 10_000})
        assert result.error_code == "INVALID_FILTER"
        assert result.details["field"] == "limit"

    def test_reverse_and_verify(self, orchestrator, test_actor_id):
        account = orchestrator.open_account(
            "company", "company-022", test_actor_id, Decimal("5990")
        ).value
        fee = orchestrator.pay_for_job(
            "company-022", "job-1", "full_service", test_actor_id, "Head of Sales"
        ).value
        assert orchestrator.get_balance("company", "company-022").value.balance == Decimal("0")

        orchestrator.reverse_transaction(fee.transaction_id, "Job cancelled", test_actor_id)
        report = orchestrator.verify_integrity(account.account_id).value
        assert report.is_consistent
        assert report.stored_balance == Decimal("5990")

    def test_frozen_account(self, orchestrator, test_actor_id):
        account = orchestrator.open_account("company", "company-023", test_actor_id, Decimal("9")).value
        orchestrator.set_account_status(account.account_id, "frozen", test_actor_id)
        result = orchestrator.debit(
            account.account_id, Decimal("1"), "admin_adjustment", "x", test_actor_id
        )
        assert result.error_code == "ACCOUNT_FROZEN"

    def test_check_can_post_job(self, orchestrator, test_actor_id):
        check = orchestrator.check_can_post_job("company-024", "full_service", test_actor_id).value
        assert not check.can_post
        assert check.shortfall == Decimal("5990")


class TestCommissionOperations:
    def test_job_lifecycle(self, orchestrator, test_actor_id):
        accrued = orchestrator.accrue_for_job_assignment(
            "job-9", CONSULTANT_ID, "region-eu", "full_service", test_actor_id
        ).value
        assert accrued.amount == Decimal("1198.00")

        summary = orchestrator.withdrawal_balance(CONSULTANT_ID).value
        assert summary.pending_balance == Decimal("1198.00")
        assert summary.available_balance == Decimal("0")

        orchestrator.confirm_commissions_for_job("job-9", test_actor_id)
        summary = orchestrator.withdrawal_balance(CONSULTANT_ID).value
        assert summary.available_balance == Decimal("1198.00")
        assert summary.can_withdraw

    def test_accrue_and_cancel(self, orchestrator, test_actor_id):
        record = orchestrator.accrue_commission(
            CONSULTANT_ID, Decimal("40.00"), "subscription_sale", test_actor_id,
            description="Starter plan",
        ).value
        cancelled = orchestrator.cancel_commission(record.commission_id, test_actor_id, "refund")
        assert cancelled.value.status == CommissionStatus.CANCELLED

    def test_confirm_unknown(self, orchestrator, test_actor_id):
        assert orchestrator.confirm_commission(uuid4(), test_actor_id).error_code == "COMMISSION_NOT_FOUND"

    def test_expire(self, orchestrator, make_commission, expiry_in, session):
        stale = make_commission(status=CommissionStatus.PENDING, expiry_date=expiry_in(-2))
        session.commit()
        assert orchestrator.expire_commissions().value == [stale.id]


class TestWithdrawalOperations:
    def test_request_rejected_for_locked_commission(
        self, orchestrator, approved, confirmed_commissions, test_actor_id
    ):
        result = orchestrator.request_withdrawal(
            CONSULTANT_ID, Decimal("100.00"), "stripe_connect",
            [confirmed_commissions[0].id], test_actor_id,
        )
        assert result.error_code == "COMMISSION_ALREADY_LOCKED"
        assert result.details["withdrawal_id"] == str(approved)

    def test_reject_requires_reason(self, orchestrator, confirmed_commissions, test_actor_id, admin_id):
        wid = orchestrator.request_withdrawal(
            CONSULTANT_ID, Decimal("100.00"), "bank_transfer",
            [confirmed_commissions[0].id], test_actor_id,
        ).value.withdrawal_id
        assert orchestrator.reject_withdrawal(wid, admin_id, "").error_code == "REASON_REQUIRED"
        assert orchestrator.get_withdrawal(wid).value.status == WithdrawalStatus.PENDING

    def test_pending_queue_by_region(self, orchestrator, session, make_commission, test_actor_id):
        eu = make_commission("60.00", region_id="region-eu")
        us = make_commission("70.00", region_id="region-us")
        session.commit()
        for c in (eu, us):
            orchestrator.request_withdrawal(
                CONSULTANT_ID, c.amount, "bank_transfer", [c.id], test_actor_id
            )
        assert len(orchestrator.pending_withdrawals().value) == 2
        queue = orchestrator.pending_withdrawals("region-us").value
        assert [w.commission_ids for w in queue] == [(us.id,)]

    def test_get_unknown(self, orchestrator):
        assert orchestrator.get_withdrawal("nope").error_code == "WITHDRAWAL_NOT_FOUND"
        assert orchestrator.get_withdrawal(uuid4()).error_code == "WITHDRAWAL_NOT_FOUND"

    def test_cancel(self, orchestrator, approved):
        assert orchestrator.cancel_withdrawal(approved, "someone-else").error_code == "UNAUTHORIZED"
        cancelled = orchestrator.cancel_withdrawal(approved, CONSULTANT_ID).value
        assert cancelled.status == WithdrawalStatus.CANCELLED
        summary = orchestrator.withdrawal_balance(CONSULTANT_ID).value
        assert summary.available_balance == Decimal("150.00")

    def test_manual_payment(self, orchestrator, approved, admin_id):
        result = orchestrator.process_payment(approved, "wire-2025-001", admin_id)
        assert result.value.status == WithdrawalStatus.PAID
        summary = orchestrator.withdrawal_balance(CONSULTANT_ID).value
        assert summary.total_withdrawn == Decimal("150.00")
        assert summary.total_earned == Decimal("150.00")
        assert summary.available_balance == Decimal("0")


class TestExecuteWithdrawal:
    def test_paid(self, orchestrator, scripted_rail, approved, test_actor_id):
        result = orchestrator.execute_withdrawal(approved, test_actor_id)
        assert result.is_success, result.message
        record = result.value
        assert record.status == WithdrawalStatus.PAID
        assert record.payment_reference == "tr_000001"
        assert scripted_rail.submissions == [f"withdrawal-{approved}-attempt-1"]

        account = orchestrator.get_balance(OwnerType.CONSULTANT, CONSULTANT_ID).value
        assert account.total_credits == Decimal("150.00")
        assert account.balance == Decimal("0")

        again = orchestrator.execute_withdrawal(approved, test_actor_id)
        assert again.error_code == "INVALID_STATE"
        assert len(scripted_rail.transfers) == 1

    def test_rail_refusal_reverts_to_approved(
        self, orchestrator, scripted_rail, approved, test_actor_id
    ):
        scripted_rail.fail_next("destination account closed")
        result = orchestrator.execute_withdrawal(approved, test_actor_id)
        assert result.error_code == "PAYOUT_RAIL_ERROR"
        assert result.value.status == WithdrawalStatus.APPROVED
        assert result.value.failure_reason == "destination account closed"
        assert len(result.value.commission_ids) == 2

        retry = orchestrator.execute_withdrawal(approved, test_actor_id)
        assert retry.value.status == WithdrawalStatus.PAID
        assert retry.value.payout_attempt == 2
        assert scripted_rail.submissions[-1].endswith("attempt-2")

    def test_unknown_outcome_then_sweep(
        self, orchestrator, scripted_rail, approved, test_actor_id
    ):
        scripted_rail.timeout_next()
        result = orchestrator.execute_withdrawal(approved, test_actor_id)
        assert result.error_code == "PAYOUT_OUTCOME_UNKNOWN"
        assert result.value.status == WithdrawalStatus.PROCESSING
        assert result.value.payment_reference is None

        summary = orchestrator.reconcile_processing(actor_id=test_actor_id).value
        assert summary.paid == 1
        assert len(scripted_rail.transfers) == 1
        assert orchestrator.get_withdrawal(approved).value.status == WithdrawalStatus.PAID

    def test_pending_outcome_settled_by_webhook(
        self, session, deterministic_clock, wallet_config, approved, test_actor_id
    ):
        rail = ScriptedPayoutRail(default_outcome=PayoutOutcome.PENDING)
        orchestrator = WalletOrchestrator(session, deterministic_clock, wallet_config, rail)
        result = orchestrator.execute_withdrawal(approved, test_actor_id)
        assert result.value.status == WithdrawalStatus.PROCESSING
        reference = result.value.payment_reference

        notification = PayoutNotification(
            event_id="evt_paid",
            event_type="transfer.paid",
            withdrawal_id=str(approved),
            payment_reference=reference,
            outcome=PayoutOutcome.SUCCEEDED,
        )
        applied = orchestrator.handle_payout_notification(notification)
        assert applied.value.applied
        duplicate = orchestrator.handle_payout_notification(notification)
        assert not duplicate.value.applied
        assert orchestrator.get_withdrawal(approved).value.status == WithdrawalStatus.PAID

    def test_not_approved(self, orchestrator, scripted_rail, confirmed_commissions, test_actor_id):
        wid = orchestrator.request_withdrawal(
            CONSULTANT_ID, Decimal("150.00"), "stripe_connect",
            [c.id for c in confirmed_commissions], test_actor_id,
            payment_details=STRIPE_DESTINATION,
        ).value.withdrawal_id
        assert orchestrator.execute_withdrawal(wid, test_actor_id).error_code == "INVALID_STATE"
        assert scripted_rail.submissions == []

    def test_missing_destination(
        self, orchestrator, scripted_rail, confirmed_commissions, test_actor_id, admin_id
    ):
        wid = orchestrator.request_withdrawal(
            CONSULTANT_ID, Decimal("100.00"), "bank_transfer",
            [confirmed_commissions[0].id], test_actor_id,
        ).value.withdrawal_id
        orchestrator.approve_withdrawal(wid, admin_id)
        result = orchestrator.execute_withdrawal(wid, test_actor_id)
        assert result.error_code == "PAYOUT_DESTINATION_MISSING"
        assert orchestrator.get_withdrawal(wid).value.status == WithdrawalStatus.APPROVED
        assert scripted_rail.submissions == []

    def test_requires_rail(self, session, deterministic_clock, wallet_config, test_actor_id):
        orchestrator = WalletOrchestrator(session, deterministic_clock, wallet_config)
        with pytest.raises(ValueError):
            orchestrator.execute_withdrawal(uuid4(), test_actor_id)
        with pytest.raises(ValueError):
            orchestrator.reconcile_processing()


class TestRefunds:
    def test_request_then_approve(self, orchestrator, test_actor_id, admin_id):
        orchestrator.open_account("company", "company-020", test_actor_id, Decimal("100"))
        requested = orchestrator.request_refund(
            "company-020", "tx-1", "job_payment", Decimal("40.00"), "Posting withdrawn",
            test_actor_id,
        )
        assert requested.is_success, requested.message
        refund_id = requested.value.refund_id
        assert [r.refund_id for r in orchestrator.pending_refunds().value.items] == [refund_id]

        approved = orchestrator.approve_refund(refund_id, admin_id)
        assert approved.value.status == RefundStatus.APPROVED
        assert orchestrator.get_balance("company", "company-020").value.balance == Decimal("140.00")
        assert orchestrator.pending_refunds().value.total == 0

        again = orchestrator.approve_refund(refund_id, admin_id)
        assert again.error_code == "INVALID_STATE"
        assert orchestrator.get_balance("company", "company-020").value.balance == Decimal("140.00")

    def test_reject_without_reason(self, orchestrator, test_actor_id, admin_id):
        refund_id = orchestrator.request_refund(
            "company-021", "tx-2", "addon_service_charge", "9.00", "Not delivered", test_actor_id
        ).value.refund_id
        result = orchestrator.reject_refund(refund_id, admin_id, "")
        assert result.error_code == "REASON_REQUIRED"
        assert orchestrator.get_refund(refund_id).value.status == RefundStatus.PENDING

    def test_get_unknown(self, orchestrator):
        assert orchestrator.get_refund(uuid4()).error_code == "REFUND_NOT_FOUND"
        assert orchestrator.get_refund("not-a-uuid").error_code == "REFUND_NOT_FOUND"


class TestSubscriptionBilling:
    def test_purchase_then_renew(self, orchestrator, test_actor_id):
        bought = orchestrator.purchase_subscription(
            "company-030", "sub-30", Decimal("299.00"), test_actor_id, "Starter"
        )
        assert bought.value.type == TransactionType.SUBSCRIPTION_PAYMENT
        renewed = orchestrator.renew_subscription(
            "company-030", "sub-30", Decimal("299.00"), test_actor_id, "Starter"
        )
        assert renewed.is_success
        assert orchestrator.get_balance("company", "company-030").value.balance == Decimal("0")

    def test_declined_renewal(self, orchestrator, test_actor_id):
        orchestrator.open_account("company", "company-031", test_actor_id, Decimal("10"))
        result = orchestrator.renew_subscription(
            "company-031", "sub-31", Decimal("299.00"), test_actor_id, "Starter"
        )
        assert result.error_code == "INSUFFICIENT_BALANCE"
        assert orchestrator.get_balance("company", "company-031").value.balance == Decimal("10")

    def test_addon(self, orchestrator, test_actor_id):
        orchestrator.open_account("company", "company-032", test_actor_id, Decimal("100"))
        result = orchestrator.purchase_addon(
            "company-032", "job-32", "reference_check", Decimal("25.00"), test_actor_id
        )
        assert result.value.type == TransactionType.ADDON_SERVICE_CHARGE
        assert orchestrator.get_balance("company", "company-032").value.balance == Decimal("75.00")
