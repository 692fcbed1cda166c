"""Purchase (room entitlement) model"""
from sqlalchemy import Column, String, DateTime, Boolean, Integer, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import relationship
from roomgate.models.base import Base, generate_id, utcnow

PURCHASE_STATUS_PROCESSING = "processing"
PURCHASE_STATUS_COMPLETED = "completed"
PURCHASE_STATUS_FAILED = "failed"

TERMINAL_STATUSES = (PURCHASE_STATUS_COMPLETED, PURCHASE_STATUS_FAILED)


class Purchase(Base):
    """Grants one user access to one room"""
    __tablename__ = "purchases"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    room_id = Column(String(36), ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    password = Column(String(64), nullable=False)
    access_token = Column(String(64), unique=True, nullable=False, index=True)
    revoked = Column(Boolean, default=False, nullable=False)  # Never reset once True
    status = Column(String(20), default=PURCHASE_STATUS_PROCESSING, nullable=False)  # 'processing', 'completed', 'failed'
    payment_amount = Column(Integer, nullable=True)  # Minor currency units (e.g. cents)
    platform_fee = Column(Integer, nullable=True)
    creator_share = Column(Integer, nullable=True)
    currency = Column(String(10), nullable=True)
    payment_id = Column(String(255), nullable=True)  # Idempotency key from the commerce platform
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    user = relationship("User", back_populates="purchases")
    room = relationship("Room", back_populates="purchases")

    __table_args__ = (
        UniqueConstraint("user_id", "room_id", name="unique_user_room"),
        Index("ix_purchases_room_payment", "room_id", "payment_id"),
    )
