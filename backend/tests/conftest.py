"""Shared pytest fixtures for test suite"""
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import Mock, patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["OTEL_EXPORTER_OTLP_ENDPOINT"] = ""
os.environ["SUPABASE_URL"] = "https://auth.example.test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["STRIPE_WEEKLY_PRICE_ID"] = "price_weekly"
os.environ["STRIPE_MONTHLY_PRICE_ID"] = "price_monthly"
os.environ["MERCADOPAGO_ACCESS_TOKEN"] = "TEST-token"
os.environ["CRON_SECRET"] = "cron-secret"
os.environ["GEMINI_API_KEY"] = "test-gemini-key"

from kitchen_ai.main import app
from kitchen_ai.core.security import AuthUser, require_auth
from kitchen_ai.db import redis as redis_module
from kitchen_ai.db.session import get_db
from kitchen_ai.models import Base
from kitchen_ai.models.profile import UserProfile
from kitchen_ai.models.subscription import UserSubscription
from kitchen_ai.services.exchange_rate import rate_cache

TEST_USER_ID = "user-1"
TEST_USER_EMAIL = "cook@example.com"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite emits its own BEGIN lazily, which breaks SAVEPOINT; take over transaction control
@event.listens_for(test_engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


@event.listens_for(test_engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


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


@pytest.fixture(scope="function", autouse=True)
def mock_redis():
    """Mock Redis client using fakeredis"""
    fake_redis = fakeredis.FakeRedis(decode_responses=True)
    with patch.object(redis_module, "_client", fake_redis):
        yield fake_redis


@pytest.fixture(scope="function", autouse=True)
def fixed_exchange_rate():
    """Keep the exchange rate lookup off the network"""
    rate_cache.clear()
    api_body = {"compra": 1180.0, "venta": 1200.0, "fechaActualizacion": "2025-01-06T12:00:00Z"}
    with patch("kitchen_ai.services.exchange_rate.fetch_rate_from_api", return_value=api_body) as mock_fetch:
        yield mock_fetch
    rate_cache.clear()


@pytest.fixture(scope="function")
def auth_user() -> AuthUser:
    return AuthUser(id=TEST_USER_ID, email=TEST_USER_EMAIL)


def _build_client(db_session: Session, user: AuthUser = None, **client_kwargs):
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    if user is not None:
        app.dependency_overrides[require_auth] = lambda: user
    return TestClient(app, **client_kwargs)


@pytest.fixture(scope="function")
def client(db_session: Session, auth_user: AuthUser) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database and an authenticated user"""
    try:
        # Disable OpenTelemetry and the real database bootstrap in tests
        with patch("kitchen_ai.main.initialize_otel", return_value=False):
            with patch("kitchen_ai.main.init_db"):
                with _build_client(db_session, auth_user) as test_client:
                    yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def anonymous_client(db_session: Session) -> Generator[TestClient, None, None]:
    """Client without an auth override; bearer tokens go through require_auth"""
    try:
        with patch("kitchen_ai.main.initialize_otel", return_value=False):
            with patch("kitchen_ai.main.init_db"):
                with _build_client(db_session) as test_client:
                    yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def make_subscription(db_session: Session):
    """Factory for the user's subscription row"""
    def _make(user_id: str = TEST_USER_ID, **fields) -> UserSubscription:
        now = datetime.now(timezone.utc)
        values = {
            "plan": "weekly",
            "status": "active",
            "payment_gateway": "mercadopago",
            "current_period_start": now - timedelta(days=1),
            "current_period_end": now + timedelta(days=6),
            "is_recurring": False,
        }
        values.update(fields)
        record = UserSubscription(user_id=user_id, **values)
        db_session.add(record)
        db_session.commit()
        db_session.refresh(record)
        return record
    return _make


@pytest.fixture(scope="function")
def test_profile(db_session: Session) -> UserProfile:
    """Onboarded profile for the default test user"""
    profile = UserProfile(
        user_id=TEST_USER_ID,
        name="Lucía",
        age=30,
        height=165.0,
        weight=60.0,
        bmi=22.0,
        gender="female",
        country="AR",
        fitness_goal="eat_healthy",
        dietary_restrictions=[],
        allergies=["maní"],
        cuisine_preferences=["argentina"],
        diet_type="casera_normal",
        snack_preference="3meals",
        flexible_mode=True,
        daily_calorie_goal=2000,
        household_size=2,
        max_prep_time=30,
    )
    db_session.add(profile)
    db_session.commit()
    db_session.refresh(profile)
    return profile


class StripeTestError(Exception):
    pass


class StripeSignatureTestError(StripeTestError):
    pass


@pytest.fixture(scope="function", autouse=True)
def auto_mock_stripe():
    """Automatically mock Stripe for all tests to prevent calling the real API"""
    with patch("kitchen_ai.services.stripe_service.stripe") as mock_stripe_module:
        # Exception types are used in except clauses and must stay real classes
        mock_stripe_module.StripeError = StripeTestError
        mock_stripe_module.SignatureVerificationError = StripeSignatureTestError

        # No existing customer by default
        mock_stripe_module.Customer.list = Mock(return_value={"data": []})
        mock_stripe_module.Customer.create = Mock(return_value={"id": "cus_test123"})

        mock_stripe_module.checkout.Session.create = Mock(
            return_value={"id": "cs_test123", "url": "https://checkout.stripe.test/cs_test123"}
        )
        mock_stripe_module.Subscription.list = Mock(return_value={"data": []})
        mock_stripe_module.Subscription.modify = Mock(return_value={"id": "sub_test123"})

        yield mock_stripe_module


@pytest.fixture(scope="function")
def mock_mercadopago():
    """Mercado Pago client double returned by get_mercadopago_client"""
    mp_client = Mock()
    mp_client.create_preference.return_value = {
        "id": "pref_123",
        "init_point": "https://www.mercadopago.test/checkout?pref_id=pref_123",
    }
    mp_client.create_preapproval.return_value = {
        "id": "preapproval_123",
        "init_point": "https://www.mercadopago.test/subscriptions?preapproval_id=preapproval_123",
    }
    mp_client.cancel_preapproval.return_value = {"id": "preapproval_123", "status": "cancelled"}
    with patch("kitchen_ai.services.mercadopago_service.get_mercadopago_client", return_value=mp_client):
        yield mp_client
