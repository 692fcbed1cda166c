"""Purchase routes: commerce webhook, manual payment handling and token redemption"""
import logging

import stripe
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from roomgate.api.deps import get_payout_client
from roomgate.core.errors import UpstreamFailure, ValidationError
from roomgate.core.metrics import webhook_events_counter
from roomgate.core.security import require_internal_key
from roomgate.db.session import get_db
from roomgate.models.purchase import PURCHASE_STATUS_FAILED
from roomgate.schemas.purchases import HandlePaymentRequest
from roomgate.services.ledger_service import resolve_by_token
from roomgate.services.payment_service import accept_payment_webhook, process_payment
from roomgate.services.stripe_service import StripePayoutClient

router = APIRouter(prefix="/api/purchases", tags=["purchases"])
logger = logging.getLogger(__name__)


@router.post("/webhook")
async def payment_webhook(request: Request):
    """Handle commerce webhook deliveries

    Reads the body as raw bytes for signature verification, queues the payment
    job and acknowledges immediately. Ledger work happens in the payment worker.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        accept_payment_webhook(payload, sig_header)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        webhook_events_counter.labels(outcome="rejected").inc()
        raise ValidationError("Invalid payload") from e
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid webhook signature: {e}")
        webhook_events_counter.labels(outcome="rejected").inc()
        raise ValidationError("Invalid signature") from e
    except Exception as e:
        # Signature already verified: acknowledge so the platform does not redeliver forever
        logger.error(f"Unexpected error queueing webhook: {e}", exc_info=True)
        webhook_events_counter.labels(outcome="error").inc()

    return PlainTextResponse("OK")


@router.post("/handle-payment", dependencies=[Depends(require_internal_key)])
def handle_payment(
    request_data: HandlePaymentRequest,
    db: Session = Depends(get_db),
    payout_client: StripePayoutClient = Depends(get_payout_client)
):
    """Server-to-server trigger that settles a payment synchronously"""
    job = {
        "external_user_id": request_data.user_id,
        "room_id": request_data.room_id,
        "amount": request_data.payment_amount,
        "currency": request_data.currency,
        "payment_id": request_data.payment_id,
        "email": request_data.email,
    }
    purchase = process_payment(job, db, payout_client)
    if purchase.status == PURCHASE_STATUS_FAILED:
        raise UpstreamFailure("Platform fee payout failed")
    return {"success": True, "purchaseId": purchase.id, "status": purchase.status}


@router.get("/resolve")
def resolve_access_token(token: str = Query(""), db: Session = Depends(get_db)):
    """Redeem a deep-link access token for the room id and password"""
    room_id, password = resolve_by_token(token, db)
    return {"roomId": room_id, "password": password}
