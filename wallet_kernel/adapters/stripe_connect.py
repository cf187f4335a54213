"""
Stripe Connect payout rail.

Responsibility:
    Implements PayoutRail with Stripe Transfers into a consultant's
    connected account, and parses Stripe webhook deliveries into
    PayoutNotification objects.

Architecture position:
    Kernel > Adapters.  The only module that imports ``stripe``.
    Injected into WalletOrchestrator at startup.  Each rail owns its
    StripeClient.

Failure modes:
    - stripe.APIConnectionError -> PayoutOutcomeUnknownError (the transfer
      may exist; retry with the same idempotency key).
    - any other stripe.StripeError -> PayoutRailError.
    - bad signature or payload -> PayoutRailError from parse_webhook_event.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import stripe

from wallet_config.schema import PayoutSettings
from wallet_kernel.domain.payout import PayoutNotification, PayoutOutcome, PayoutRail
from wallet_kernel.exceptions import PayoutOutcomeUnknownError, PayoutRailError
from wallet_kernel.logging_config import get_logger

logger = get_logger("adapters.stripe_connect")

_EVENT_OUTCOMES: dict[str, PayoutOutcome] = {
    "transfer.created": PayoutOutcome.PENDING,
    "transfer.paid": PayoutOutcome.SUCCEEDED,
    "transfer.failed": PayoutOutcome.FAILED,
    "transfer.reversed": PayoutOutcome.FAILED,
}


def to_minor_units(amount: Decimal) -> int:
    """Stripe amounts are integers in the currency's smallest unit."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeConnectRail(PayoutRail):
    """Payouts as Stripe Transfers to connected accounts."""

    name = "stripe_connect"

    def __init__(
        self,
        api_key: str,
        description_template: str = "Commission withdrawal {withdrawal_id}",
        max_network_retries: int = 2,
        client: stripe.StripeClient | None = None,
    ):
        if not api_key:
            raise ValueError("Stripe api_key is required")
        self._description_template = description_template
        self._client = client or stripe.StripeClient(
            api_key, max_network_retries=max_network_retries
        )

    @classmethod
    def from_settings(cls, settings: PayoutSettings, api_key: str) -> "StripeConnectRail":
        return cls(
            api_key,
            description_template=settings.description_template,
            max_network_retries=settings.max_network_retries,
        )

    def submit(
        self,
        amount: Decimal,
        currency: str,
        destination: str,
        idempotency_key: str,
        metadata: dict[str, str] | None = None,
    ) -> str:
        metadata = dict(metadata or {})
        description = self._description_template.format(
            withdrawal_id=metadata.get("withdrawal_id", "")
        )
        try:
            transfer = self._client.transfers.create(
                params={
                    "amount": to_minor_units(amount),
                    "currency": currency.lower(),
                    "destination": destination,
                    "description": description,
                    "metadata": metadata,
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.APIConnectionError as exc:
            raise PayoutOutcomeUnknownError(idempotency_key, str(exc)) from exc
        except stripe.StripeError as exc:
            logger.warning(
                "stripe_transfer_refused",
                extra={"idempotency_key": idempotency_key, "stripe_code": exc.code},
            )
            raise PayoutRailError(exc.user_message or str(exc)) from exc

        logger.info(
            "stripe_transfer_created",
            extra={"idempotency_key": idempotency_key, "payment_reference": transfer["id"]},
        )
        return transfer["id"]

    def status(self, reference: str) -> PayoutOutcome:
        try:
            transfer = self._client.transfers.retrieve(reference)
        except stripe.APIConnectionError as exc:
            raise PayoutOutcomeUnknownError(reference, str(exc)) from exc
        except stripe.StripeError as exc:
            raise PayoutRailError(exc.user_message or str(exc), reference) from exc
        # A transfer that exists has moved funds unless it was reversed.
        if transfer.get("reversed"):
            return PayoutOutcome.FAILED
        return PayoutOutcome.SUCCEEDED


def parse_webhook_event(
    payload: bytes | str, sig_header: str, secret: str
) -> PayoutNotification | None:
    """
    Authenticate a Stripe webhook delivery and map it to a notification.

    Returns:
        PayoutNotification, or None for events unrelated to payouts or
        transfers not created by this kernel (no withdrawal_id metadata).

    Raises:
        PayoutRailError: Invalid payload or signature.
    """
    try:
        event = stripe.Webhook.construct_event(
            payload=payload, sig_header=sig_header, secret=secret
        )
    except (ValueError, stripe.SignatureVerificationError) as exc:
        logger.warning("stripe_webhook_rejected", extra={"reason": str(exc)})
        raise PayoutRailError(f"invalid webhook: {exc}") from exc

    event_type = event["type"]
    outcome = _EVENT_OUTCOMES.get(event_type)
    if outcome is None:
        logger.debug("stripe_webhook_ignored", extra={"event_type": event_type})
        return None

    transfer: dict[str, Any] = event["data"]["object"]
    metadata = transfer.get("metadata") or {}
    withdrawal_id = metadata.get("withdrawal_id")
    if not withdrawal_id:
        logger.info(
            "stripe_webhook_unmatched",
            extra={"event_type": event_type, "payment_reference": transfer.get("id")},
        )
        return None

    return PayoutNotification(
        event_id=event["id"],
        event_type=event_type,
        withdrawal_id=withdrawal_id,
        payment_reference=transfer["id"],
        outcome=outcome,
        failure_reason=f"Stripe {event_type}" if outcome == PayoutOutcome.FAILED else None,
        raw=dict(transfer),
    )
