"""Room chat and direct messages between room participants"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from roomgate.core.errors import InternalError, NotFound, ValidationError
from roomgate.models.message import DirectMessage, RoomMessage
from roomgate.models.user import User
from roomgate.services.account_service import find_user, get_or_create_user
from roomgate.services.room_service import get_room

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


def _clean_content(content: Any) -> str:
    content = content.strip() if isinstance(content, str) else ""
    if not content:
        raise ValidationError("content is required")
    if len(content) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"content must be at most {MAX_MESSAGE_LENGTH} characters")
    return content


def _save(message, db: Session, what: str):
    db.add(message)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save {what}: {e}", exc_info=True)
        raise InternalError("Failed to send message") from e
    db.refresh(message)
    return message


def room_message_to_dict(message: RoomMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "roomId": message.room_id,
        "userId": message.user_id,
        "content": message.content,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }


def direct_message_to_dict(message: DirectMessage) -> Dict[str, Any]:
    return {
        "id": message.id,
        "roomId": message.room_id,
        "senderId": message.sender_id,
        "receiverId": message.receiver_id,
        "content": message.content,
        "createdAt": message.created_at.isoformat() if message.created_at else None,
    }


def list_room_messages(room_id: str, db: Session) -> List[RoomMessage]:
    get_room(room_id, db)
    return (
        db.query(RoomMessage)
        .filter(RoomMessage.room_id == room_id)
        .order_by(RoomMessage.created_at.asc(), RoomMessage.id.asc())
        .all()
    )


def post_room_message(
    room_id: str,
    external_user_id: str,
    content: Any,
    db: Session,
    email: Optional[str] = None
) -> RoomMessage:
    content = _clean_content(content)
    get_room(room_id, db)
    user = get_or_create_user(external_user_id, email, db)
    return _save(RoomMessage(room_id=room_id, user_id=user.id, content=content), db, "room message")


def _resolve_pair(room_id: str, external_user_id: str, peer_id: str, db: Session, email: Optional[str] = None):
    get_room(room_id, db)
    peer = db.query(User).filter(User.id == peer_id).first() if peer_id else None
    if not peer:
        raise NotFound("User not found")
    me = get_or_create_user(external_user_id, email, db)
    return me, peer


def list_direct_messages(room_id: str, external_user_id: str, peer_id: str, db: Session) -> List[DirectMessage]:
    """Both directions of the conversation between the caller and ``peer_id`` in one room"""
    get_room(room_id, db)
    me = find_user(external_user_id, db)
    if me is None:
        return []
    return (
        db.query(DirectMessage)
        .filter(
            DirectMessage.room_id == room_id,
            or_(
                and_(DirectMessage.sender_id == me.id, DirectMessage.receiver_id == peer_id),
                and_(DirectMessage.sender_id == peer_id, DirectMessage.receiver_id == me.id),
            )
        )
        .order_by(DirectMessage.created_at.asc(), DirectMessage.id.asc())
        .all()
    )


def send_direct_message(
    room_id: str,
    external_user_id: str,
    peer_id: str,
    content: Any,
    db: Session,
    email: Optional[str] = None
) -> DirectMessage:
    content = _clean_content(content)
    me, peer = _resolve_pair(room_id, external_user_id, peer_id, db, email)
    message = DirectMessage(room_id=room_id, sender_id=me.id, receiver_id=peer.id, content=content)
    return _save(message, db, "direct message")
