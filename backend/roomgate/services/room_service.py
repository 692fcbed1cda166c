"""Room catalogue and room-ownership authorization"""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roomgate.core.config import DEFAULT_CURRENCY
from roomgate.core.errors import Forbidden, InternalError, NotFound, ValidationError
from roomgate.models.room import Room
from roomgate.services.account_service import find_user, get_or_create_user

logger = logging.getLogger(__name__)

MAX_ROOM_NAME_LENGTH = 255
MAX_ROOM_PRICE = Decimal("1000000")
CENT = Decimal("0.01")


def normalize_price(price: Any) -> Decimal:
    """Coerce a price to a two-decimal Decimal, rejecting anything not > 0"""
    if isinstance(price, bool) or price is None:
        raise ValidationError("price is required")
    try:
        value = Decimal(str(price))
    except (InvalidOperation, ValueError):
        raise ValidationError("price must be a number")
    if not value.is_finite():
        raise ValidationError("price must be a number")

    value = value.quantize(CENT, rounding=ROUND_HALF_UP)
    if value <= 0:
        raise ValidationError("price must be greater than 0")
    if value >= MAX_ROOM_PRICE:
        raise ValidationError("price must be less than 1,000,000")
    return value


def room_to_dict(room: Room) -> Dict[str, Any]:
    return {
        "id": room.id,
        "name": room.name,
        "price": float(room.price),
        "currency": room.currency,
        "creatorId": room.creator_id,
        "createdAt": room.created_at.isoformat() if room.created_at else None,
        "updatedAt": room.updated_at.isoformat() if room.updated_at else None,
    }


def create_room(
    creator_external_id: str,
    name: str,
    price: Any,
    db: Session,
    email: Optional[str] = None,
    currency: str = DEFAULT_CURRENCY
) -> Room:
    """Create a priced room owned by the (possibly first-seen) creator"""
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        raise ValidationError("name cannot be empty")
    if len(name) > MAX_ROOM_NAME_LENGTH:
        raise ValidationError("name must be less than 255 characters")
    price = normalize_price(price)

    creator = get_or_create_user(creator_external_id, email, db)

    room = Room(name=name, price=price, currency=(currency or DEFAULT_CURRENCY).lower(), creator_id=creator.id)
    db.add(room)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to create room for creator {creator.id}: {e}", exc_info=True)
        raise InternalError("Failed to create room") from e

    db.refresh(room)
    logger.info(f"Creator {creator.id} created room {room.id} ({room.name}, {room.price})")
    return room


def get_room(room_id: str, db: Session) -> Room:
    room = db.query(Room).filter(Room.id == room_id).first() if room_id else None
    if not room:
        raise NotFound("Room not found")
    return room


def list_rooms_for_creator(creator_external_id: str, db: Session) -> List[Room]:
    """Rooms owned by a creator, newest first. Unknown creators own nothing."""
    creator = find_user(creator_external_id, db)
    if not creator:
        return []
    return (
        db.query(Room)
        .filter(Room.creator_id == creator.id)
        .order_by(Room.created_at.desc())
        .all()
    )


def assert_owns_room(user_id: str, room_id: str, db: Session) -> Room:
    """Single authorization check for every creator-scoped operation.

    Raises:
        NotFound: room does not exist
        Forbidden: room exists but belongs to someone else
    """
    room = get_room(room_id, db)
    if room.creator_id != user_id:
        logger.warning(f"User {user_id} attempted creator action on room {room_id} owned by {room.creator_id}")
        raise Forbidden("You do not own this room")
    return room
