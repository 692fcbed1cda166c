"""Room chat and direct message routes"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from roomgate.core.security import require_auth
from roomgate.db.session import get_db
from roomgate.schemas.chat import MessageRequest
from roomgate.services.chat_service import (
    direct_message_to_dict, list_direct_messages, list_room_messages,
    post_room_message, room_message_to_dict, send_direct_message
)
from roomgate.services.identity_service import ExternalIdentity

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.get("/rooms/{room_id}/messages")
def get_room_messages(room_id: str, db: Session = Depends(get_db)):
    return {"messages": [room_message_to_dict(m) for m in list_room_messages(room_id, db)]}


@router.post("/rooms/{room_id}/messages", status_code=201)
def send_room_message(
    room_id: str,
    request_data: MessageRequest,
    identity: ExternalIdentity = Depends(require_auth),
    db: Session = Depends(get_db)
):
    message = post_room_message(room_id, identity.id, request_data.content, db, email=identity.email)
    return {"message": room_message_to_dict(message)}


@router.get("/rooms/{room_id}/dm/{peer_id}")
def get_direct_messages(
    room_id: str,
    peer_id: str,
    identity: ExternalIdentity = Depends(require_auth),
    db: Session = Depends(get_db)
):
    messages = list_direct_messages(room_id, identity.id, peer_id, db)
    return {"messages": [direct_message_to_dict(m) for m in messages]}


@router.post("/rooms/{room_id}/dm/{peer_id}", status_code=201)
def send_direct_message_route(
    room_id: str,
    peer_id: str,
    request_data: MessageRequest,
    identity: ExternalIdentity = Depends(require_auth),
    db: Session = Depends(get_db)
):
    message = send_direct_message(room_id, identity.id, peer_id, request_data.content, db, email=identity.email)
    return {"message": direct_message_to_dict(message)}
