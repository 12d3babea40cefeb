"""Shared pytest fixtures for test suite"""
import hashlib
import hmac
import json
import os
import sys
import time
import uuid
from pathlib import Path
from typing import Callable, Generator, Optional
from unittest.mock import patch

# Settings are read at import time, so the environment must be in place first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/15"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["ENVIRONMENT"] = "test"

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

from paddock.main import app
from paddock.db.session import get_db, get_session_factory
from paddock.db import redis as redis_module
from paddock.models import Base


WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
ADMIN_HEADERS = {"Authorization": "Bearer test-admin-token"}

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


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header the way Stripe does"""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def build_event(event_type: str, obj: dict, event_id: Optional[str] = None, created: Optional[int] = None) -> dict:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:24]}",
        "object": "event",
        "type": event_type,
        "created": created if created is not None else int(time.time()),
        "livemode": False,
        "data": {"object": obj},
    }


def checkout_session(
    payment_intent: Optional[str],
    amount_total: int,
    metadata: dict,
    mode: str = "payment",
    session_id: Optional[str] = None
) -> dict:
    return {
        "id": session_id or f"cs_test_{uuid.uuid4().hex[:16]}",
        "object": "checkout.session",
        "mode": mode,
        "payment_intent": payment_intent,
        "customer": "cus_test123",
        "amount_total": amount_total,
        "currency": "usd",
        "payment_status": "paid",
        "metadata": metadata,
    }


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def session_factory(db_session: Session) -> Callable[[], Session]:
    """Factory for work that opens its own session (metrics recompute)"""
    return TestSessionLocal


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeStrictRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function")
def client(db_session: Session, mock_redis) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and mocked Redis"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: TestSessionLocal

    try:
        # Disable OpenTelemetry instrumentation in tests
        with patch("paddock.main.initialize_otel", return_value=False):
            with patch("paddock.main.instrument_sqlalchemy"):
                with TestClient(app) as test_client:
                    yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def deliver(client: TestClient) -> Callable:
    """POST an event to the webhook endpoint with a valid (or deliberately broken) signature"""

    def _deliver(event: dict, secret: str = WEBHOOK_SECRET, sig_header: Optional[str] = None, body: Optional[str] = None):
        payload = json.dumps(event)
        header = sig_header if sig_header is not None else sign_payload(payload, secret)
        return client.post(
            "/api/stripe/webhook",
            content=(body if body is not None else payload).encode("utf-8"),
            headers={"Stripe-Signature": header, "Content-Type": "application/json"},
        )

    return _deliver
