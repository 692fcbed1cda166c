"""Database engine and per-request sessions"""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from roomgate.models.base import Base
from roomgate.core.config import settings


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        # Worker threads share the connection with the request that created it
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 3600}


engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints; one session per request"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create missing tables (production schema changes go through Alembic)"""
    Base.metadata.create_all(bind=engine)
