"""ProcessedPayment model"""
from sqlalchemy import Column, Integer, String, DateTime
from roomgate.models.base import Base, utcnow


class ProcessedPayment(Base):
    """Commerce payments that reached a terminal status, for idempotency

    Outlives the purchase row's ``payment_id``, which a repeat purchase overwrites.
    """
    __tablename__ = "processed_payments"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(String(255), unique=True, nullable=False, index=True)
    room_id = Column(String(36), nullable=False)
    purchase_id = Column(String(36), nullable=False)
    status = Column(String(20), nullable=False)  # 'completed' or 'failed'
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
