"""Tests for wallet configuration loading and validation."""
from __future__ import annotations

from decimal import Decimal

import pytest
import yaml

from wallet_config import DEFAULT_CONFIG_PATH, get_active_config
from wallet_config.loader import (
    compute_checksum,
    parse_commissions,
    parse_config,
    parse_decimal,
    parse_payouts,
    parse_wallet,
)


class TestBundledDefaults:
    """The shipped defaults.yaml parses into the documented values."""

    def test_wallet_section(self):
        config = get_active_config()
        assert config.wallet.currency == "USD"
        assert config.wallet.minimum_withdrawal == Decimal("50.00")
        assert config.wallet.overdraft_owner_types == frozenset()

    def test_commission_rates_are_decimals(self):
        rates = get_active_config().commissions.rates
        assert rates["shortlisting"] == Decimal("0.15")
        assert rates["full_service"] == Decimal("0.20")
        assert rates["executive_search"] == Decimal("0.25")
        assert all(isinstance(r, Decimal) for r in rates.values())

    def test_payout_section(self):
        payouts = get_active_config().payouts
        assert payouts.provider == "stripe_connect"
        assert payouts.currency == "usd"
        assert "{withdrawal_id}" in payouts.description_template
        assert str(payouts.system_actor_id) == "00000000-0000-4000-8000-000000000001"

    def test_checksum_matches_document(self):
        with open(DEFAULT_CONFIG_PATH) as f:
            raw = yaml.safe_load(f)
        assert get_active_config().checksum == compute_checksum(raw)

    def test_trace_logged(self, captured_logs):
        config = get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "WALLET_CONFIG_TRACE"]
        assert traces[-1]["checksum"] == config.checksum


class TestLoadFromPath:
    def test_custom_file(self, tmp_path):
        path = tmp_path / "wallet.yaml"
        path.write_text(
            "config_id: staging\n"
            "version: 3\n"
            "wallet:\n"
            "  currency: eur\n"
            '  minimum_withdrawal: "25.00"\n'
        )
        config = get_active_config(path)
        assert config.config_id == "staging"
        assert config.version == 3
        assert config.wallet.currency == "EUR"
        assert config.wallet.minimum_withdrawal == Decimal("25.00")

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_empty_document_uses_defaults(self):
        config = parse_config({})
        assert config.config_id == "wallet-default"
        assert config.wallet.minimum_withdrawal == Decimal("50.00")
        assert config.payouts.reconcile_batch_size == 100


class TestValidation:
    def test_float_rejected(self):
        with pytest.raises(ValueError, match="float"):
            parse_decimal(0.15, "commissions.rates.shortlisting")

    def test_float_minimum_rejected(self):
        with pytest.raises(ValueError, match="minimum_withdrawal"):
            parse_wallet({"minimum_withdrawal": 50.0})

    @pytest.mark.parametrize("minimum", ["0", "-10"])
    def test_non_positive_minimum(self, minimum):
        with pytest.raises(ValueError):
            parse_wallet({"minimum_withdrawal": minimum})

    def test_bad_currency(self):
        with pytest.raises(ValueError, match="currency"):
            parse_wallet({"currency": "dollars"})

    def test_unknown_overdraft_owner(self):
        with pytest.raises(ValueError, match="overdraft_owner_types"):
            parse_wallet({"overdraft_owner_types": ["vendor"]})

    def test_page_default_above_max(self):
        with pytest.raises(ValueError):
            parse_wallet({"transaction_page_default": 600, "transaction_page_max": 500})

    def test_rate_above_one(self):
        with pytest.raises(ValueError, match="rates"):
            parse_commissions({"rates": {"shortlisting": "1.5"}})

    def test_negative_fee(self):
        with pytest.raises(ValueError, match="service_fees"):
            parse_commissions({"service_fees": {"shortlisting": "-1"}})

    def test_expiry_months(self):
        with pytest.raises(ValueError):
            parse_commissions({"subscription_expiry_months": 0})

    def test_system_actor_must_be_uuid(self):
        with pytest.raises(ValueError, match="system_actor_id"):
            parse_payouts({"system_actor_id": "system"})

    def test_system_actor_override(self):
        payouts = parse_payouts({"system_actor_id": "11111111-1111-4111-8111-111111111111"})
        assert str(payouts.system_actor_id) == "11111111-1111-4111-8111-111111111111"

    def test_description_template_needs_placeholder(self):
        with pytest.raises(ValueError, match="description_template"):
            parse_payouts({"description_template": "Payout"})

    def test_settings_are_frozen(self):
        config = get_active_config()
        with pytest.raises(AttributeError):
            config.wallet.currency = "EUR"
