"""Pytest fixtures for integration tests."""
import base64
import json
import os
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from src.storefront import database
from src.storefront.config import Settings, get_settings
from src.storefront.main import app, get_notifier, get_payment_provider
from src.storefront.models import Base
from src.storefront.notifications import Notifier
from src.storefront.provider import CheckoutSession, PaymentProvider, ProviderRequestError
from src.storefront.security import compute_signature

SIGNING_KEY = b"storefront-integration-signing-key"
WEBHOOK_SECRET = "whsec_" + base64.b64encode(SIGNING_KEY).decode()
WEBHOOK_PATH = "/yoco-webhook-receiver"


class FakeProvider(PaymentProvider):
    """In-memory stand-in for the hosted checkout API."""

    def __init__(self):
        self.created = []
        self.sessions = {}
        self.fail_with = None
        self.lookup_error = None

    async def create_checkout(self, amount, currency, success_url, cancel_url, failure_url,
                              order_reference, items, metadata=None):
        self.created.append({
            "amount": amount,
            "currency": currency,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "failure_url": failure_url,
            "order_reference": order_reference,
            "items": [(i.product_id, i.quantity, i.unit_price) for i in items],
            "metadata": metadata,
        })
        if self.fail_with is not None:
            raise self.fail_with
        checkout_id = f"ch_test_{len(self.created)}"
        session = CheckoutSession(id=checkout_id, redirect_url=f"https://pay.test/{checkout_id}", status="created")
        self.sessions[checkout_id] = session
        return session

    async def get_checkout(self, checkout_id):
        if self.lookup_error is not None:
            raise self.lookup_error
        if checkout_id not in self.sessions:
            raise ProviderRequestError("unknown checkout")
        return self.sessions[checkout_id]


class RecordingNotifier(Notifier):
    def __init__(self):
        self.paid = []

    def order_paid(self, order):
        self.paid.append(order.reference)


@pytest.fixture(scope="function")
def db():
    """Create an in-memory SQLite database for integration testing."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(
        yoco_secret_key="sk_test_integration",
        yoco_webhook_secret=WEBHOOK_SECRET,
        public_base_url="http://testserver",
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope="function")
def client(db, settings, provider, notifier):
    """Create a test client with a test database session and fake collaborators."""
    def override_get_db():
        yield db

    app.dependency_overrides[database.get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_payment_provider] = lambda: provider
    app.dependency_overrides[get_notifier] = lambda: notifier
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


def signed_headers(body, key=SIGNING_KEY, timestamp=None, delivery_id="msg_test"):
    ts = str(int(time.time()) if timestamp is None else timestamp)
    return {
        "webhook-id": delivery_id,
        "webhook-timestamp": ts,
        "webhook-signature": "v1," + compute_signature(key, delivery_id, ts, body),
        "Content-Type": "application/json",
    }


def payment_event(checkout_id, order_reference=None, event_type="payment.succeeded", event_id="evt_1",
                  amount=6499, currency="ZAR", items=(("P1", 1),), payment_id="p_1"):
    metadata = {"checkoutId": checkout_id, "items": json.dumps([{"id": pid, "quantity": q} for pid, q in items])}
    if order_reference:
        metadata["order_reference"] = order_reference
    return {
        "id": event_id,
        "type": event_type,
        "payload": {"id": payment_id, "amount": amount, "currency": currency, "status": "succeeded", "metadata": metadata},
    }


@pytest.fixture
def post_webhook(client):
    """POST an event as the provider would: compact JSON body, signed over the exact bytes."""
    def _post(event, key=SIGNING_KEY, timestamp=None, body=None, headers=None):
        raw = body if body is not None else json.dumps(event, separators=(",", ":")).encode()
        sent_headers = headers if headers is not None else signed_headers(raw, key=key, timestamp=timestamp)
        return client.post(WEBHOOK_PATH, content=raw, headers=sent_headers)
    return _post


@pytest.fixture
def seed_product(client):
    def _seed(product_id="P1", stock=10, price="64.99", name="Maize Meal 5kg"):
        response = client.post("/products/", json={"id": product_id, "name": name, "price": price, "stock": stock})
        assert response.status_code == 201
        return response.json()
    return _seed


@pytest.fixture
def start_checkout(client):
    def _start(amount="64.99", items=None, **extra):
        payload = {
            "amount": amount,
            "currency": "ZAR",
            "metadata": {"items": items or [{"id": "P1", "name": "Maize Meal 5kg", "quantity": 1, "price": 64.99}]},
        }
        payload.update(extra)
        return client.post("/create-checkout", json=payload)
    return _start


@pytest.fixture
def make_event():
    return payment_event


@pytest.fixture
def sign():
    return signed_headers
