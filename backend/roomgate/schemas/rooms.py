"""Pydantic schemas for rooms"""
from decimal import Decimal
from typing import Optional

from roomgate.schemas.base import CamelModel


class CreateRoomRequest(CamelModel):
    name: str
    price: Decimal
    currency: Optional[str] = None


class ValidatePasswordRequest(CamelModel):
    room_id: str
    password: str
