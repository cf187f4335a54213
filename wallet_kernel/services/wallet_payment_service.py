"""
WalletPaymentService -- company wallet charges and subscription billing.

Responsibility:
    Prices a job posting from the configured service fees, answers whether
    the company wallet can cover it, and debits the fee.  Also credits
    subscription purchases into the wallet, debits renewals, and charges
    add-on services.

Architecture position:
    Kernel > Services.  The only ledger writer it uses is BalanceEngine.

Invariants enforced:
    - Free packages (fee 0) never touch the ledger.
    - The balance check and the debit are one guarded UPDATE inside
      BalanceEngine; the pre-check is advisory only.
    - A declined renewal writes nothing; the caller decides what happens
      to the subscription.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from wallet_config.schema import CommissionPolicy, WalletSettings
from wallet_kernel.domain.clock import Clock
from wallet_kernel.domain.commission_rates import HiringMode
from wallet_kernel.domain.dtos import TransactionRecord
from wallet_kernel.exceptions import AccountNotFoundError, InsufficientBalanceError
from wallet_kernel.logging_config import get_logger
from wallet_kernel.models.ledger_account import LedgerAccount, OwnerType
from wallet_kernel.models.ledger_transaction import TransactionType
from wallet_kernel.services.balance_engine import BalanceEngine
from wallet_kernel.services.base import BaseService

logger = get_logger("services.wallet_payment")

JOB_ENTITY = "job"
SUBSCRIPTION_ENTITY = "subscription"


@dataclass(frozen=True)
class JobPaymentCheck:
    can_post: bool
    balance: Decimal
    required: Decimal
    shortfall: Decimal
    currency: str


class WalletPaymentService(BaseService[LedgerAccount]):
    """Charges against the company wallet."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: WalletSettings | None = None,
        policy: CommissionPolicy | None = None,
        balance_engine: BalanceEngine | None = None,
    ):
        super().__init__(session, clock)
        self._settings = settings or WalletSettings()
        self._policy = policy or CommissionPolicy()
        self._balance_engine = balance_engine or BalanceEngine(
            session, self._clock, self._settings
        )

    def _company_account(self, company_id: str) -> LedgerAccount:
        account = self._balance_engine.find_account_by_owner(OwnerType.COMPANY, company_id)
        if account is None:
            raise AccountNotFoundError(f"{OwnerType.COMPANY.value}:{company_id}")
        return account

    def posting_fee(self, service_package: HiringMode | str) -> Decimal:
        package = HiringMode(service_package)
        return self._policy.service_fees.get(package.value, Decimal("0"))

    def check_can_post_job(
        self,
        company_id: str,
        service_package: HiringMode | str,
        actor_id: UUID,
    ) -> JobPaymentCheck:
        """Compare the company balance with the package fee."""
        required = self.posting_fee(service_package)
        if required <= 0:
            return JobPaymentCheck(
                can_post=True,
                balance=Decimal("0"),
                required=Decimal("0"),
                shortfall=Decimal("0"),
                currency=self._settings.currency,
            )
        account = self._balance_engine.get_or_create_account(
            OwnerType.COMPANY, company_id, actor_id
        )
        can_post = account.balance >= required
        return JobPaymentCheck(
            can_post=can_post,
            balance=account.balance,
            required=required,
            shortfall=Decimal("0") if can_post else required - account.balance,
            currency=account.currency,
        )

    def charge_job_posting_fee(
        self,
        company_id: str,
        job_id: str,
        service_package: HiringMode | str,
        actor_id: UUID,
        job_title: str,
    ) -> TransactionRecord | None:
        """
        Debit the posting fee from the company wallet.

        Returns:
            The JOB_POSTING_FEE transaction, or None for a free package.

        Raises:
            AccountNotFoundError: The company has no wallet.
            InsufficientBalanceError: Balance below the fee; nothing written.
            AccountFrozenError: Wallet is not ACTIVE.
        """
        package = HiringMode(service_package)
        fee = self.posting_fee(package)
        if fee <= 0:
            logger.debug("job_posting_free", extra={"job_id": job_id, "package": package.value})
            return None

        account = self._company_account(company_id)
        record = self._balance_engine.debit_account(
            account.id,
            fee,
            TransactionType.JOB_POSTING_FEE,
            f"Job posting: {job_title} ({package.value})",
            actor_id,
            related_entity_type=JOB_ENTITY,
            related_entity_id=job_id,
            metadata={"service_package": package.value},
        )
        logger.info(
            "job_posting_charged",
            extra={
                "account_id": str(account.id),
                "job_id": job_id,
                "package": package.value,
                "amount": str(fee),
            },
        )
        return record

    def credit_subscription_purchase(
        self,
        company_id: str,
        subscription_id: str,
        amount: Decimal | int | str,
        actor_id: UUID,
        plan_name: str,
    ) -> TransactionRecord:
        """Credit a purchased subscription's prepaid amount to the company wallet."""
        account = self._balance_engine.get_or_create_account(
            OwnerType.COMPANY, company_id, actor_id
        )
        record = self._balance_engine.credit_account(
            account.id,
            amount,
            TransactionType.SUBSCRIPTION_PAYMENT,
            f"{plan_name} subscription purchase",
            actor_id,
            related_entity_type=SUBSCRIPTION_ENTITY,
            related_entity_id=subscription_id,
        )
        logger.info(
            "subscription_credited",
            extra={
                "account_id": str(account.id),
                "subscription_id": subscription_id,
                "amount": str(record.amount),
            },
        )
        return record

    def charge_subscription_renewal(
        self,
        company_id: str,
        subscription_id: str,
        amount: Decimal | int | str,
        actor_id: UUID,
        plan_name: str,
    ) -> TransactionRecord:
        """
        Debit a subscription renewal from the company wallet.

        Raises:
            AccountNotFoundError: The company has no wallet.
            InsufficientBalanceError: Balance below the renewal price.
        """
        account = self._company_account(company_id)
        try:
            record = self._balance_engine.debit_account(
                account.id,
                amount,
                TransactionType.SUBSCRIPTION_PAYMENT,
                f"Subscription renewal: {plan_name}",
                actor_id,
                related_entity_type=SUBSCRIPTION_ENTITY,
                related_entity_id=subscription_id,
            )
        except InsufficientBalanceError:
            logger.warning(
                "subscription_renewal_declined",
                extra={"account_id": str(account.id), "subscription_id": subscription_id},
            )
            raise
        logger.info(
            "subscription_renewed",
            extra={
                "account_id": str(account.id),
                "subscription_id": subscription_id,
                "amount": str(record.amount),
            },
        )
        return record

    def charge_addon_service(
        self,
        company_id: str,
        job_id: str,
        service_type: str,
        amount: Decimal | int | str,
        actor_id: UUID,
        description: str | None = None,
    ) -> TransactionRecord:
        """Debit an add-on service bought for a job."""
        account = self._company_account(company_id)
        record = self._balance_engine.debit_account(
            account.id,
            amount,
            TransactionType.ADDON_SERVICE_CHARGE,
            description or f"Add-on service: {service_type}",
            actor_id,
            related_entity_type=JOB_ENTITY,
            related_entity_id=job_id,
            metadata={"service_type": service_type},
        )
        logger.info(
            "addon_service_charged",
            extra={
                "account_id": str(account.id),
                "job_id": job_id,
                "service_type": service_type,
                "amount": str(record.amount),
            },
        )
        return record
