"""Pydantic schemas for chat"""
from roomgate.schemas.base import CamelModel


class MessageRequest(CamelModel):
    content: str
