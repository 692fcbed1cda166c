"""Shared pytest fixtures for test suite"""
import os
import sys
from decimal import Decimal
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, Mock, patch

# Settings are read at import time; configure the environment first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LIVEKIT_API_KEY", "lk_test_key")
os.environ.setdefault("LIVEKIT_API_SECRET", "lk_test_secret_that_is_long_enough_for_hs256")
os.environ.setdefault("LIVEKIT_URL", "wss://media.test")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_123")
os.environ.setdefault("STRIPE_OPERATOR_ACCOUNT_ID", "acct_operator_123")
os.environ.setdefault("INTERNAL_API_KEY", "internal_test_key")
os.environ.setdefault("PAYMENT_WORKER_ENABLED", "false")

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from roomgate.main import app
from roomgate.api.deps import get_media_service, get_payout_client
from roomgate.core.errors import AuthenticationRequired
from roomgate.core.security import get_identity_client
from roomgate.db import redis as redis_module
from roomgate.db.session import get_db
from roomgate.models import Base
from roomgate.models.purchase import Purchase
from roomgate.models.room import Room
from roomgate.models.user import User
from roomgate.services.identity_service import ExternalIdentity
from roomgate.services.ledger_service import mark_completed, record_payment
from roomgate.services.room_service import create_room
from roomgate.services.stripe_service import PayoutResult


# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

CREATOR_TOKEN = "creator-token"
BUYER_TOKEN = "buyer-token"
OTHER_TOKEN = "other-token"

# User token -> identity the fake identity provider resolves it to
TEST_IDENTITIES = {
    CREATOR_TOKEN: ExternalIdentity(id="user_creator", email="creator@example.com"),
    BUYER_TOKEN: ExternalIdentity(id="user_buyer", email="buyer@example.com"),
    OTHER_TOKEN: ExternalIdentity(id="user_other", email="other@example.com"),
}


class FakeIdentityClient:
    """Resolves the fixed test tokens without calling the identity provider"""

    async def resolve(self, token: str) -> ExternalIdentity:
        identity = TEST_IDENTITIES.get(token)
        if identity is None:
            raise AuthenticationRequired()
        return identity


def auth_headers(token: str) -> dict:
    return {"x-user-token": token}


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def session_factory(db_session):
    """Session factory bound to the test database, for code that opens its own sessions"""
    return TestSessionLocal


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Replace the Redis client with fakeredis for every test"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def payout_client():
    """Payout client stub; succeeds unless a test says otherwise"""
    client = Mock()
    client.payout = Mock(return_value=PayoutResult(success=True, transfer_id="tr_test123"))
    return client


@pytest.fixture(scope="function")
def media_service():
    """Media service stub with a real-looking token and an async ensure_room"""
    service = Mock()
    service.ensure_room = AsyncMock(return_value=True)
    service.create_join_token = Mock(side_effect=lambda room_id, identity: f"jwt-{room_id}-{identity}")
    return service


@pytest.fixture(scope="function")
def client(db_session: Session, payout_client, media_service) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, fake identity provider and stubbed SDK clients"""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_client] = lambda: FakeIdentityClient()
    app.dependency_overrides[get_payout_client] = lambda: payout_client
    app.dependency_overrides[get_media_service] = lambda: media_service

    try:
        with patch("roomgate.main.initialize_tracing", return_value=False):
            with TestClient(app) as test_client:
                yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def creator(db_session: Session) -> User:
    user = User(external_id="user_creator", email="creator@example.com")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture(scope="function")
def room(db_session: Session, creator: User) -> Room:
    return create_room(creator.external_id, "Friday Session", Decimal("50.00"), db_session)


@pytest.fixture(scope="function")
def other_room(db_session: Session) -> Room:
    """Room owned by a different creator"""
    return create_room("user_other", "Someone Else's Room", Decimal("10.00"), db_session)


@pytest.fixture(scope="function")
def completed_purchase(db_session: Session, room: Room) -> Purchase:
    """A settled purchase of ``room`` by the buyer identity"""
    purchase = record_payment("user_buyer", room.id, 5000, "usd", db_session, payment_id="pi_test_completed")
    return mark_completed(purchase.id, db_session, payment_id="pi_test_completed")


@pytest.fixture(scope="function", autouse=True)
def auto_mock_stripe():
    """Automatically mock outbound Stripe API calls so no test talks to Stripe"""
    with patch("roomgate.services.stripe_service.stripe.Transfer.create") as transfer_create:
        with patch("roomgate.services.stripe_service.stripe.checkout.Session.create") as session_create:
            transfer_create.return_value = Mock(id="tr_test123")
            session_create.return_value = Mock(id="cs_test123", url="https://checkout.stripe.com/c/test")
            yield {"transfer_create": transfer_create, "session_create": session_create}


@pytest.fixture
def creator_headers() -> dict:
    return auth_headers(CREATOR_TOKEN)


@pytest.fixture
def buyer_headers() -> dict:
    return auth_headers(BUYER_TOKEN)


@pytest.fixture
def other_headers() -> dict:
    return auth_headers(OTHER_TOKEN)
