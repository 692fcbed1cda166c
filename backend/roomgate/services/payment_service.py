"""Payment webhook processing

Two halves:

* ``accept_payment_webhook`` runs inside the HTTP request. It verifies the
  delivery, extracts a payment job and hands it to the task queue. It never
  touches the ledger, so the commerce platform gets its ACK promptly.
* ``process_payment`` runs in the payment worker. It records the purchase,
  pays the platform fee out to the operator and settles the purchase status.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from roomgate.core.config import settings, PAYMENT_SUCCEEDED_EVENT, DEFAULT_CURRENCY
from roomgate.core.metrics import payments_processed_counter, webhook_events_counter
from roomgate.db.task_queue import enqueue_task, PAYMENT_TASK_TYPE
from roomgate.models.purchase import Purchase, PURCHASE_STATUS_PROCESSING
from roomgate.services.ledger_service import mark_completed, mark_failed, record_payment
from roomgate.services.stripe_service import (
    PayoutResult, StripePayoutClient, construct_webhook_event, get_stripe_value
)

logger = logging.getLogger(__name__)
payments_logger = logging.getLogger("payments")


def extract_payment_job(event: Any) -> Optional[Dict[str, Any]]:
    """Turn a verified ``payment_intent.succeeded`` event into a job payload.

    Returns None for other event types and for payments that carry no room
    or buyer context; those are acknowledged without touching the ledger.
    """
    if event["type"] != PAYMENT_SUCCEEDED_EVENT:
        return None

    intent = event["data"]["object"]
    metadata = get_stripe_value(intent, "metadata", {})
    room_id = get_stripe_value(metadata, "room_id")
    user_id = get_stripe_value(metadata, "user_id") or get_stripe_value(intent, "customer")
    payment_id = get_stripe_value(intent, "id")
    amount = get_stripe_value(intent, "amount_received") or get_stripe_value(intent, "amount")
    currency = get_stripe_value(intent, "currency", DEFAULT_CURRENCY)

    payments_logger.info(f"Payment {payment_id} succeeded for {user_id} with amount {amount} {currency}")

    if not isinstance(room_id, str) or not room_id.strip():
        payments_logger.info(f"Payment {payment_id} has no room_id metadata, nothing to unlock")
        return None
    if not isinstance(user_id, str) or not user_id.strip():
        payments_logger.info(f"Payment {payment_id} has no buyer id, nothing to unlock")
        return None
    try:
        amount = int(amount) if amount is not None else 0
    except (TypeError, ValueError):
        payments_logger.warning(f"Payment {payment_id} has unreadable amount {amount!r}, nothing to unlock")
        return None

    return {
        "external_user_id": user_id.strip(),
        "room_id": room_id.strip(),
        "amount": amount,
        "currency": currency,
        "payment_id": payment_id,
        "email": get_stripe_value(intent, "receipt_email"),
    }


def accept_payment_webhook(payload: bytes, sig_header: Optional[str]) -> Optional[str]:
    """Verify a delivery and enqueue its payment job.

    Returns:
        The queued task id, or None when the event needs no ledger work

    Raises:
        ValueError: invalid payload or webhook secret not configured
        stripe.SignatureVerificationError: invalid signature
    """
    event = construct_webhook_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)

    job = extract_payment_job(event)
    if job is None:
        webhook_events_counter.labels(outcome="ignored").inc()
        return None

    task_id = enqueue_task(PAYMENT_TASK_TYPE, job)
    webhook_events_counter.labels(outcome="queued").inc()
    payments_logger.info(f"Queued payment {job['payment_id']} for room {job['room_id']} as task {task_id}")
    return task_id


def _fee_idempotency_key(purchase: Purchase) -> Optional[str]:
    if not purchase.payment_id:
        return None
    return f"platform-fee-{purchase.room_id}-{purchase.payment_id}"


def process_payment(job: Dict[str, Any], db: Session, payout_client: StripePayoutClient) -> Purchase:
    """Drive one payment to a terminal ledger state.

    A payment that already reached ``completed`` or ``failed`` is returned as
    is, so duplicate deliveries never pay out twice.
    """
    purchase = record_payment(
        external_user_id=job.get("external_user_id"),
        room_id=job.get("room_id"),
        amount=job.get("amount"),
        currency=job.get("currency"),
        db=db,
        payment_id=job.get("payment_id"),
        email=job.get("email"),
    )

    payment_id = job.get("payment_id")
    replayed = isinstance(payment_id, str) and payment_id.strip() and purchase.payment_id != payment_id.strip()
    if purchase.status != PURCHASE_STATUS_PROCESSING or replayed:
        payments_processed_counter.labels(status="duplicate").inc()
        return purchase

    try:
        result = payout_client.payout(
            purchase.platform_fee,
            purchase.currency,
            idempotency_key=_fee_idempotency_key(purchase)
        )
    except Exception as e:
        payments_logger.error(f"Payout raised for purchase {purchase.id}: {e}", exc_info=True)
        result = PayoutResult(success=False, error=str(e))

    if not result.success:
        payments_logger.error(f"Platform fee payout failed for purchase {purchase.id}: {result.error}")
        purchase = mark_failed(purchase.id, db, payment_id=purchase.payment_id)
        payments_processed_counter.labels(status="failed").inc()
        return purchase

    purchase = mark_completed(purchase.id, db, payment_id=purchase.payment_id)
    payments_processed_counter.labels(status="completed").inc()
    return purchase
