"""Stripe integration: webhook verification, checkout sessions and fee payouts"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import stripe

from roomgate.core.errors import UpstreamFailure, ValidationError
from roomgate.models.room import Room

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")


# ============================================================================
# WEBHOOK VERIFICATION
# ============================================================================

def construct_webhook_event(payload: bytes, sig_header: Optional[str], webhook_secret: str) -> Dict[str, Any]:
    """Verify a webhook delivery and return the parsed event.

    Raises:
        ValueError: secret not configured or payload is not valid JSON
        stripe.SignatureVerificationError: signature does not match
    """
    if not webhook_secret:
        logger.error("Webhook secret not configured")
        raise ValueError("Webhook secret not configured")
    if not sig_header:
        raise stripe.SignatureVerificationError("Missing stripe-signature header", sig_header)

    return stripe.Webhook.construct_event(payload, sig_header, webhook_secret)


def get_stripe_value(obj: Any, key: str, default=None):
    """Read a field from a Stripe object or a plain dict"""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


# ============================================================================
# PAYOUTS
# ============================================================================

@dataclass
class PayoutResult:
    success: bool
    transfer_id: Optional[str] = None
    error: Optional[str] = None


class StripePayoutClient:
    """Credits the platform fee to the operator's connected Stripe account.

    Constructed once at startup and shared by the payment worker.
    """

    def __init__(self, api_key: str, destination_account: str):
        self.api_key = api_key
        self.destination_account = destination_account

    def payout(self, amount: int, currency: str, idempotency_key: Optional[str] = None) -> PayoutResult:
        if amount <= 0:
            # Nothing to move (e.g. zero fee rate)
            return PayoutResult(success=True)
        if not self.api_key or not self.destination_account:
            payments_logger.error("Payout requested but Stripe payouts are not configured")
            return PayoutResult(success=False, error="Stripe payouts not configured")

        params = {
            "amount": amount,
            "currency": currency,
            "destination": self.destination_account,
            "api_key": self.api_key,
        }
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        try:
            transfer = stripe.Transfer.create(**params)
        except stripe.StripeError as e:
            payments_logger.error(f"Platform fee transfer of {amount} {currency} failed: {e}")
            return PayoutResult(success=False, error=str(e))

        transfer_id = get_stripe_value(transfer, "id")
        payments_logger.info(f"Transferred platform fee {amount} {currency} ({transfer_id})")
        return PayoutResult(success=True, transfer_id=transfer_id)


# ============================================================================
# CHECKOUT
# ============================================================================

def price_to_minor_units(price: Decimal) -> int:
    return int((Decimal(price) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def create_room_checkout_session(
    room: Room,
    buyer_external_id: str,
    success_url: str,
    cancel_url: str,
    api_key: str,
    buyer_email: Optional[str] = None
) -> Dict[str, str]:
    """Create a one-off payment Checkout Session for a room.

    The room id and buyer id travel as PaymentIntent metadata so the
    ``payment_intent.succeeded`` webhook can unlock the right room.
    """
    if not api_key:
        raise ValidationError("Stripe not configured")

    metadata = {"room_id": room.id, "user_id": buyer_external_id}
    params = {
        "mode": "payment",
        "line_items": [{
            "price_data": {
                "currency": room.currency,
                "unit_amount": price_to_minor_units(room.price),
                "product_data": {"name": room.name},
            },
            "quantity": 1,
        }],
        "payment_intent_data": {"metadata": metadata},
        "metadata": metadata,
        "success_url": success_url,
        "cancel_url": cancel_url,
        "api_key": api_key,
    }
    if buyer_email:
        params["customer_email"] = buyer_email

    try:
        session = stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.error(f"Failed to create checkout session for room {room.id}: {e}")
        raise UpstreamFailure("Failed to create checkout session") from e

    return {"id": get_stripe_value(session, "id"), "url": get_stripe_value(session, "url")}
