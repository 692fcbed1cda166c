"""Chat message models"""
from sqlalchemy import Column, String, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from roomgate.models.base import Base, generate_id, utcnow


class RoomMessage(Base):
    """Message posted to a room's shared chat"""
    __tablename__ = "room_messages"

    id = Column(String(36), primary_key=True, default=generate_id)
    room_id = Column(String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    user = relationship("User")

    __table_args__ = (
        Index('ix_room_messages_room_created', 'room_id', 'created_at'),
    )


class DirectMessage(Base):
    """Private message between two participants of a room"""
    __tablename__ = "direct_messages"

    id = Column(String(36), primary_key=True, default=generate_id)
    room_id = Column(String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    receiver_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_direct_messages_room_created', 'room_id', 'created_at'),
    )
