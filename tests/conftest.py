"""
Pytest configuration and fixtures for testing
"""
import os
import tempfile

# Settings are read once per process; configure the test environment first.
_TEST_DIR = tempfile.mkdtemp(prefix="chat-billing-tests-")
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "test_razorpay_secret"
os.environ["IDENTITY_PROVIDER"] = "local"
os.environ["SECRET_KEY"] = "test-secret-key-for-local-id-tokens"
os.environ["PAYMENT_CURRENCY"] = "USD"
os.environ["RAZORPAY_RECONCILE_ORDERS"] = "true"
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DIR}/test.db"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app import models  # noqa: E402,F401
from app.config import get_settings  # noqa: E402
from app.database import Base, SessionLocal, get_engine  # noqa: E402
from app.errors import GatewayError  # noqa: E402
from app.identity import LocalJwtIdentityVerifier  # noqa: E402
from app.main import app  # noqa: E402
from app.services.razorpay_client import get_razorpay_client  # noqa: E402
from app.store import SubscriptionStore  # noqa: E402
from app.utils.rate_limiter import rate_limiter  # noqa: E402
from app.utils.signatures import compute_payment_signature  # noqa: E402


class FakeRazorpayClient:
    """In-memory stand-in for the Razorpay orders API."""

    def __init__(self):
        self.orders = {}
        self.created = []
        self.fetched = []
        self.fail_with = None
        self.next_order_id = None
        self._counter = 0

    def create_order(self, amount, currency, receipt, notes):
        if self.fail_with is not None:
            raise self.fail_with
        self._counter += 1
        order_id = self.next_order_id or f"order_Test{self._counter}"
        self.next_order_id = None
        order = {
            "id": order_id,
            "entity": "order",
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": dict(notes),
            "status": "created",
        }
        self.orders[order_id] = order
        self.created.append(order)
        return dict(order)

    def fetch_order(self, order_id):
        self.fetched.append(order_id)
        if self.fail_with is not None:
            raise self.fail_with
        if order_id not in self.orders:
            raise GatewayError("Payment provider rejected the request")
        return dict(self.orders[order_id])


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def test_db():
    """
    Fixture that provides a clean database session for each test.
    Tables are recreated before every test.
    """
    engine = get_engine()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(test_db):
    return SubscriptionStore(test_db)


@pytest.fixture
def token_issuer(settings):
    return LocalJwtIdentityVerifier(settings.secret_key, settings.algorithm)


@pytest.fixture
def fake_gateway():
    return FakeRazorpayClient()


@pytest.fixture
def sign(settings):
    def _sign(order_id, payment_id):
        return compute_payment_signature(settings.razorpay_key_secret, order_id, payment_id)

    return _sign


@pytest.fixture
def client(test_db, fake_gateway):
    """FastAPI TestClient with the payment gateway replaced by the in-memory fake."""
    rate_limiter.reset()
    app.dependency_overrides[get_razorpay_client] = lambda: fake_gateway

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    rate_limiter.reset()
