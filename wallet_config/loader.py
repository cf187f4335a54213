"""
YAML loader for wallet configuration.

Parses the YAML document into the frozen dataclasses in schema.py.

* Missing file    -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad values      -> ``ValueError`` with the offending key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any
from uuid import UUID

import yaml

from wallet_config.schema import (
    SYSTEM_ACTOR_ID,
    CommissionPolicy,
    PayoutSettings,
    WalletConfig,
    WalletSettings,
)

_OWNER_TYPES = frozenset({"company", "consultant", "sales_agent"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, key: str) -> Decimal:
    """Parse a Decimal from YAML, refusing floats."""
    if isinstance(value, float):
        raise ValueError(f"{key}: quote decimal values in YAML, got float {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key}: not a decimal: {value!r}") from None


def parse_wallet(data: dict[str, Any]) -> WalletSettings:
    currency = str(data.get("currency", "USD")).upper()
    if len(currency) != 3:
        raise ValueError(f"wallet.currency: not an ISO 4217 code: {currency!r}")

    minimum = parse_decimal(data.get("minimum_withdrawal", "50.00"), "wallet.minimum_withdrawal")
    if minimum <= 0:
        raise ValueError("wallet.minimum_withdrawal: must be positive")

    overdraft = frozenset(str(t).lower() for t in data.get("overdraft_owner_types") or [])
    unknown = overdraft - _OWNER_TYPES
    if unknown:
        raise ValueError(f"wallet.overdraft_owner_types: unknown owner types {sorted(unknown)}")

    page_default = int(data.get("transaction_page_default", 50))
    page_max = int(data.get("transaction_page_max", 500))
    if not 1 <= page_default <= page_max:
        raise ValueError("wallet.transaction_page_default: must be between 1 and transaction_page_max")

    return WalletSettings(
        currency=currency,
        minimum_withdrawal=minimum,
        overdraft_owner_types=overdraft,
        transaction_page_default=page_default,
        transaction_page_max=page_max,
    )


def parse_commissions(data: dict[str, Any]) -> CommissionPolicy:
    rates = {
        str(mode).lower(): parse_decimal(rate, f"commissions.rates.{mode}")
        for mode, rate in (data.get("rates") or {}).items()
    }
    for mode, rate in rates.items():
        if not Decimal("0") <= rate <= Decimal("1"):
            raise ValueError(f"commissions.rates.{mode}: must be between 0 and 1")

    fees = {
        str(mode).lower(): parse_decimal(fee, f"commissions.service_fees.{mode}")
        for mode, fee in (data.get("service_fees") or {}).items()
    }
    for mode, fee in fees.items():
        if fee < 0:
            raise ValueError(f"commissions.service_fees.{mode}: must not be negative")

    months = int(data.get("subscription_expiry_months", 12))
    if months < 1:
        raise ValueError("commissions.subscription_expiry_months: must be >= 1")

    return CommissionPolicy(
        rates=rates,
        service_fees=fees,
        subscription_expiry_months=months,
    )


def parse_payouts(data: dict[str, Any]) -> PayoutSettings:
    template = str(data.get("description_template", "Commission withdrawal {withdrawal_id}"))
    if "{withdrawal_id}" not in template:
        raise ValueError("payouts.description_template: must contain {withdrawal_id}")
    batch = int(data.get("reconcile_batch_size", 100))
    if batch < 1:
        raise ValueError("payouts.reconcile_batch_size: must be >= 1")
    try:
        system_actor = UUID(str(data.get("system_actor_id", SYSTEM_ACTOR_ID)))
    except ValueError:
        raise ValueError(
            f"payouts.system_actor_id: not a UUID: {data.get('system_actor_id')!r}"
        ) from None
    return PayoutSettings(
        provider=str(data.get("provider", "stripe_connect")),
        currency=str(data.get("currency", "usd")).lower(),
        description_template=template,
        reconcile_batch_size=batch,
        max_network_retries=int(data.get("max_network_retries", 2)),
        system_actor_id=system_actor,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of the raw document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_config(data: dict[str, Any]) -> WalletConfig:
    """Parse a whole configuration document."""
    return WalletConfig(
        config_id=str(data.get("config_id", "wallet-default")),
        version=int(data.get("version", 1)),
        wallet=parse_wallet(data.get("wallet") or {}),
        commissions=parse_commissions(data.get("commissions") or {}),
        payouts=parse_payouts(data.get("payouts") or {}),
        checksum=compute_checksum(data),
    )
