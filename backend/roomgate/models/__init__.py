"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from roomgate.models.base import Base
from roomgate.models.user import User
from roomgate.models.room import Room
from roomgate.models.purchase import Purchase
from roomgate.models.message import RoomMessage, DirectMessage
from roomgate.models.processed_payment import ProcessedPayment

# Export all for convenience
__all__ = ["Base", "User", "Room", "Purchase", "RoomMessage", "DirectMessage", "ProcessedPayment"]
