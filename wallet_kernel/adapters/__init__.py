"""Payout rail implementations."""

from wallet_kernel.adapters.scripted_rail import ScriptedPayoutRail
from wallet_kernel.adapters.stripe_connect import StripeConnectRail, parse_webhook_event

__all__ = ["ScriptedPayoutRail", "StripeConnectRail", "parse_webhook_event"]
