"""Room model"""
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from roomgate.models.base import Base, generate_id, utcnow


class Room(Base):
    """A priced room owned by a creator"""
    __tablename__ = "rooms"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(10), nullable=False, default="usd")
    creator_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    creator = relationship("User", back_populates="rooms")
    purchases = relationship("Purchase", back_populates="room", cascade="all, delete-orphan")

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_rooms_price_positive"),
    )
