"""Checkout routes"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from roomgate.core.config import settings
from roomgate.core.errors import ValidationError
from roomgate.core.security import require_auth
from roomgate.db.session import get_db
from roomgate.schemas.purchases import CheckoutStartRequest
from roomgate.services.identity_service import ExternalIdentity
from roomgate.services.room_service import get_room
from roomgate.services.stripe_service import create_room_checkout_session

router = APIRouter(prefix="/api/checkout", tags=["checkout"])
logger = logging.getLogger(__name__)


@router.post("/start")
def start_checkout(
    request_data: CheckoutStartRequest,
    identity: ExternalIdentity = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Start a Stripe Checkout Session for a room purchase"""
    room_id = request_data.room_id.strip()
    if not room_id:
        raise ValidationError("roomId is required")
    room = get_room(room_id, db)

    frontend_url = settings.FRONTEND_URL.rstrip("/")
    session = create_room_checkout_session(
        room,
        identity.id,
        success_url=f"{frontend_url}/rooms/{room.id}?checkout=success",
        cancel_url=f"{frontend_url}/rooms/{room.id}?checkout=cancel",
        api_key=settings.STRIPE_SECRET_KEY,
        buyer_email=identity.email,
    )
    logger.info(f"Started checkout {session['id']} for room {room.id} by {identity.id}")
    return {
        "checkoutUrl": session["url"],
        "room": {"id": room.id, "name": room.name, "price": float(room.price)},
    }
