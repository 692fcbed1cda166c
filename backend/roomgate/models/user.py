"""User model"""
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from roomgate.models.base import Base, generate_id, utcnow


class User(Base):
    """Internal account mapped from an external identity"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_id)
    external_id = Column(String(255), unique=True, nullable=False, index=True)  # Identity provider user id
    email = Column(String(255), nullable=True)  # Backfilled when first learned
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    rooms = relationship("Room", back_populates="creator", cascade="all, delete-orphan")
    purchases = relationship("Purchase", back_populates="user", cascade="all, delete-orphan")
