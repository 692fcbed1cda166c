"""Pydantic schemas for purchases, checkout and revocation"""
from typing import Optional

from roomgate.schemas.base import CamelModel


class HandlePaymentRequest(CamelModel):
    user_id: str
    room_id: str
    payment_amount: int  # smallest currency unit
    currency: Optional[str] = None
    payment_id: Optional[str] = None
    email: Optional[str] = None


class RevokePurchaseRequest(CamelModel):
    purchase_id: str


class CheckoutStartRequest(CamelModel):
    room_id: str
