"""Room catalogue and password validation routes"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from roomgate.core.security import require_auth
from roomgate.db.session import get_db
from roomgate.schemas.rooms import CreateRoomRequest, ValidatePasswordRequest
from roomgate.services.identity_service import ExternalIdentity
from roomgate.services.ledger_service import validate
from roomgate.services.room_service import create_room, get_room, list_rooms_for_creator, room_to_dict

router = APIRouter(prefix="/api/rooms", tags=["rooms"])
logger = logging.getLogger(__name__)


@router.post("", status_code=201)
def create_room_route(
    request_data: CreateRoomRequest,
    identity: ExternalIdentity = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Create a paid room owned by the caller"""
    room = create_room(
        identity.id,
        request_data.name,
        request_data.price,
        db,
        email=identity.email,
        currency=request_data.currency,
    )
    return {"success": True, "room": room_to_dict(room)}


@router.get("")
def list_my_rooms(identity: ExternalIdentity = Depends(require_auth), db: Session = Depends(get_db)):
    return {"rooms": [room_to_dict(room) for room in list_rooms_for_creator(identity.id, db)]}


@router.post("/validate-password")
def validate_password(request_data: ValidatePasswordRequest, db: Session = Depends(get_db)):
    """Check a room password against the active purchases of the room"""
    validate(request_data.room_id, request_data.password, db)
    return {"success": True}


@router.get("/{room_id}")
def get_room_route(room_id: str, db: Session = Depends(get_db)):
    return room_to_dict(get_room(room_id, db))
