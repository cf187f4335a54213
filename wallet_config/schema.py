"""
Wallet configuration schema.

Frozen dataclasses parsed from YAML by the loader.  Every monetary value is
a Decimal; no floats survive parsing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

# Recorded as the actor of webhook and polling settlements.
SYSTEM_ACTOR_ID = UUID("00000000-0000-4000-8000-000000000001")


@dataclass(frozen=True)
class WalletSettings:
    """Ledger-wide settings."""

    currency: str = "USD"
    minimum_withdrawal: Decimal = Decimal("50.00")
    overdraft_owner_types: frozenset[str] = frozenset()
    transaction_page_default: int = 50
    transaction_page_max: int = 500


@dataclass(frozen=True)
class CommissionPolicy:
    """Commission pricing and expiry.

    rates and service_fees are keyed by hiring mode / service package
    (self_managed, shortlisting, full_service, executive_search).
    """

    rates: dict[str, Decimal] = field(default_factory=dict)
    service_fees: dict[str, Decimal] = field(default_factory=dict)
    subscription_expiry_months: int = 12


@dataclass(frozen=True)
class PayoutSettings:
    """External payout rail settings."""

    provider: str = "stripe_connect"
    currency: str = "usd"
    description_template: str = "Commission withdrawal {withdrawal_id}"
    reconcile_batch_size: int = 100
    max_network_retries: int = 2
    system_actor_id: UUID = SYSTEM_ACTOR_ID


@dataclass(frozen=True)
class WalletConfig:
    """The runtime artifact returned by get_active_config()."""

    config_id: str
    version: int
    wallet: WalletSettings
    commissions: CommissionPolicy
    payouts: PayoutSettings
    checksum: str = ""
