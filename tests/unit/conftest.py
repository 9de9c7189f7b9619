"""Pytest fixtures for unit tests."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.storefront import crud, schemas
from src.storefront.models import Base


@pytest.fixture(scope="function")
def db():
    """Create an in-memory SQLite database for unit testing."""
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
def make_product(db):
    """Create a catalog product. Price in major units."""
    def _make(product_id="P1", stock=10, price="64.99", name="Maize Meal 5kg"):
        return crud.create_product(
            db, schemas.ProductCreate(id=product_id, name=name, price=price, stock=stock)
        )
    return _make


@pytest.fixture
def make_order(db):
    """Create a pending order with a checkout id attached.

    `lines` is a list of (product_id, quantity, unit_price) tuples; the amount
    is their total.
    """
    def _make(lines=(("P1", 1, "64.99"),), checkout_id="ch_1", currency="ZAR"):
        items = [{"id": pid, "name": pid, "quantity": qty, "price": price} for pid, qty, price in lines]
        total = sum(qty * schemas.CartItem(id=pid, quantity=qty, price=price).unit_price_minor for pid, qty, price in lines)
        request = schemas.CheckoutRequest.model_validate({
            "amount": f"{total // 100}.{total % 100:02d}",
            "currency": currency,
            "metadata": {"items": items},
        })
        order = crud.create_pending_order(db, request)
        if checkout_id:
            crud.attach_checkout_id(db, order.reference, checkout_id)
        return crud.get_order_by_reference(db, order.reference)
    return _make


@pytest.fixture
def succeeded_event():
    def _event(event_id="evt_1", checkout_id="ch_1", amount=6499, currency="ZAR", payment_id="p_1", items=()):
        return schemas.PaymentEvent(
            event_id=event_id,
            type=schemas.PAYMENT_SUCCEEDED,
            payment_id=payment_id,
            amount=amount,
            currency=currency,
            checkout_id=checkout_id,
            items=[schemas.EventItem(id=pid, quantity=qty) for pid, qty in items],
        )
    return _event
