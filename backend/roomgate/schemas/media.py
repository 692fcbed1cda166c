"""Pydantic schemas for media rooms and tokens"""
from roomgate.schemas.base import CamelModel


class MediaTokenRequest(CamelModel):
    room_id: str
    password: str
    user_id: str


class CreateMediaRoomRequest(CamelModel):
    room_id: str
