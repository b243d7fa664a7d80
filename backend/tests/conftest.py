"""Shared pytest fixtures for test suite"""
import os
import pytest
import sys
from pathlib import Path
from typing import Generator
from unittest.mock import patch
from urllib.parse import urlencode
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time: keep the app off PostgreSQL and give the admin API a key
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("RESEND_API_KEY", "re_test_key")

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.main import app
from app.db.session import get_db
from app.models import Base


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

ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


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
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db

    try:
        # Tables come from db_session; disable OpenTelemetry in tests
        with patch('app.main.init_db'):
            with patch('app.main.initialize_otel', return_value=False):
                with patch('app.main.instrument_sqlalchemy'):
                    with TestClient(app) as test_client:
                        yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def admin_client(client: TestClient) -> TestClient:
    """Test client that sends the admin API key on every request"""
    client.headers.update(ADMIN_HEADERS)
    return client


@pytest.fixture(scope="function")
def mock_resend():
    """Mock Resend email sending; every send succeeds unless reconfigured"""
    with patch('app.services.email_service.resend.Emails.send') as mock_send:
        mock_send.return_value = {"id": "test-email-id"}
        yield mock_send


@pytest.fixture
def order_payload() -> dict:
    """A WooCommerce order.created body as the store posts it"""
    return {
        "id": 1001,
        "number": "1001",
        "status": "processing",
        "currency": "DKK",
        "date_created": "2024-01-15T10:30:00",
        "date_completed": "",
        "total": "149.00",
        "customer_id": 42,
        "customer_note": "Please activate quickly",
        "billing": {
            "first_name": "Mette",
            "last_name": "Jensen",
            "address_1": "Vestergade 12",
            "address_2": "",
            "city": "Aarhus",
            "state": "",
            "postcode": "8000",
            "country": "DK",
            "email": "mette@example.com",
            "phone": "+4512345678"
        },
        "shipping": {
            "first_name": "Mette",
            "last_name": "Jensen",
            "address_1": "Vestergade 12",
            "city": "Aarhus",
            "postcode": "8000",
            "country": "DK"
        },
        "payment_method": "mobilepay",
        "payment_method_title": "MobilePay",
        "transaction_id": "tx-77",
        "line_items": [
            {
                "id": 5001,
                "name": "IPTV Premium",
                "product_id": 301,
                "variation_id": 0,
                "quantity": 1,
                "subtotal": "149.00",
                "total": "149.00",
                "sku": "IPTV-PREM",
                "price": 149,
                "meta_data": []
            }
        ],
        "meta_data": []
    }


@pytest.fixture
def subscription_payload(order_payload: dict) -> dict:
    """Order that renews a subscription, with one monthly subscription item"""
    order_payload["meta_data"] = [{"id": 1, "key": "_subscription_renewal", "value": "9001"}]
    order_payload["line_items"][0]["meta_data"] = [
        {"id": 11, "key": "_subscription_period", "value": "month"},
        {"id": 12, "key": "_subscription_interval", "value": "1"}
    ]
    return order_payload


def flatten_form(value, prefix=""):
    """PHP http_build_query style flattening, as the store sends form bodies"""
    pairs = []
    if isinstance(value, dict):
        for key, item in value.items():
            pairs.extend(flatten_form(item, f"{prefix}[{key}]" if prefix else str(key)))
    elif isinstance(value, list):
        for index, item in enumerate(value):
            pairs.extend(flatten_form(item, f"{prefix}[{index}]"))
    elif value is None:
        pairs.append((prefix, ""))
    else:
        pairs.append((prefix, str(value)))
    return pairs


@pytest.fixture
def form_body():
    """Encode a payload dict the way a form-posting store would"""
    def encode(payload: dict) -> bytes:
        return urlencode(flatten_form(payload)).encode("utf-8")
    return encode
