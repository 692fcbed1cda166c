"""Declarative base shared by all models"""
import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def generate_id() -> str:
    """Primary keys are opaque UUID strings (room ids double as media room names)"""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
