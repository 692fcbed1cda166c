"""Media routes: join tokens for purchasers and room creation"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from roomgate.api.deps import get_media_service
from roomgate.core.errors import InvalidCredentials, ValidationError
from roomgate.core.metrics import media_tokens_counter
from roomgate.core.security import require_auth
from roomgate.db.session import get_db
from roomgate.schemas.media import CreateMediaRoomRequest, MediaTokenRequest
from roomgate.services.identity_service import ExternalIdentity
from roomgate.services.ledger_service import validate
from roomgate.services.media_service import MediaService

router = APIRouter(prefix="/api/media", tags=["media"])
logger = logging.getLogger(__name__)
access_logger = logging.getLogger("access")


@router.post("/token")
async def issue_media_token(
    request_data: MediaTokenRequest,
    db: Session = Depends(get_db),
    media: MediaService = Depends(get_media_service)
):
    """Issue a join token to a purchaser

    The password is re-validated on every call, so a revoked purchase can no
    longer mint tokens even if the client cached the password.
    """
    room_id = request_data.room_id.strip()
    user_id = request_data.user_id.strip()
    if not room_id or not request_data.password.strip() or not user_id:
        raise ValidationError("roomId, password, and userId are required")

    try:
        validate(room_id, request_data.password, db)
    except InvalidCredentials:
        raise InvalidCredentials("Invalid credentials")

    await media.ensure_room(room_id)
    token = media.create_join_token(room_id, user_id)
    media_tokens_counter.inc()
    access_logger.info(f"Issued media token for room {room_id} to {user_id}")
    return {"token": token}


@router.post("/rooms", status_code=201)
async def create_media_room(
    request_data: CreateMediaRoomRequest,
    identity: ExternalIdentity = Depends(require_auth),
    media: MediaService = Depends(get_media_service)
):
    """Create (or reuse) a media room and return a token for the caller"""
    room_id = request_data.room_id.strip()
    if not room_id:
        raise ValidationError("roomId is required")

    await media.ensure_room(room_id)
    token = media.create_join_token(room_id, identity.id)
    media_tokens_counter.inc()
    return {"success": True, "roomId": room_id, "token": token}
