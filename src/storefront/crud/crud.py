from sqlalchemy.orm import Session, selectinload
from sqlalchemy.exc import IntegrityError
from datetime import datetime
import logging
import uuid

from .. import models, schemas
from ..database import run_transaction

logger = logging.getLogger(__name__)


# Domain exceptions for deterministic error handling

class ProductExistsError(Exception):
    pass


class ReconciliationError(Exception):
    """Consistency failure while applying a payment. The transaction is rolled back."""

    status_code = 500


class OrderNotFoundError(ReconciliationError):
    status_code = 404


class ProductNotFoundError(ReconciliationError):
    pass


class InvalidStockError(ReconciliationError):
    pass


class InsufficientStockError(ReconciliationError):
    def __init__(self, product_ids):
        super().__init__("Insufficient stock for " + ", ".join(product_ids))
        self.product_ids = list(product_ids)


class PaymentMismatchError(ReconciliationError):
    status_code = 409


def get_product(db: Session, product_id: str):
    return db.query(models.Product).filter(models.Product.id == product_id).first()


def get_products(db: Session, skip: int = 0, limit: int = 100, active_only: bool = True):
    query = db.query(models.Product)
    if active_only:
        query = query.filter(models.Product.active.is_(True))
    return query.order_by(models.Product.id).offset(skip).limit(limit).all()


def count_products(db: Session, active_only: bool = True):
    query = db.query(models.Product)
    if active_only:
        query = query.filter(models.Product.active.is_(True))
    return query.count()


def create_product(db: Session, product: schemas.ProductCreate):
    if get_product(db, product.id) is not None:
        raise ProductExistsError(f"product {product.id} already exists")
    db_product = models.Product(
        id=product.id,
        name=product.name,
        price=product.price_minor,
        stock=product.stock,
        active=product.active,
    )
    db.add(db_product)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    db.refresh(db_product)
    return db_product


def new_order_reference() -> str:
    return f"ORD-{uuid.uuid4().hex[:16].upper()}"


def get_order_by_reference(db: Session, reference: str):
    return (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.reference == reference)
        .first()
    )


def get_order_by_checkout_id(db: Session, checkout_id: str):
    return (
        db.query(models.Order)
        .options(selectinload(models.Order.items))
        .filter(models.Order.checkout_id == checkout_id)
        .first()
    )


def create_pending_order(db: Session, request: schemas.CheckoutRequest):
    """Persist a new pending order for a validated checkout request.

    Line item prices are converted to minor units here, once. The stored
    amount must equal the sum of the line item subtotals.
    """
    items = [
        models.OrderItem(
            position=position,
            product_id=item.id,
            name=item.name,
            quantity=item.quantity,
            unit_price=item.unit_price_minor,
        )
        for position, item in enumerate(request.metadata.items)
    ]
    amount = request.amount_minor
    if amount != sum(item.subtotal for item in items):
        raise ValueError("amount does not match line items total")

    db_order = models.Order(
        reference=new_order_reference(),
        status=models.OrderStatus.PENDING,
        amount=amount,
        currency=request.currency,
        customer_name=request.metadata.customer_name,
        customer_email=request.metadata.customer_email,
        customer_phone=request.metadata.customer_phone,
        items=items,
    )
    db.add(db_order)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(db_order)
    # load items now, callers use them outside this thread
    db_order.items
    logger.info("order %s created pending, amount=%d %s", db_order.reference, amount, db_order.currency)
    return db_order


def _set_checkout_id(db: Session, reference: str, checkout_id: str):
    db_order = db.query(models.Order).filter(models.Order.reference == reference).with_for_update().first()
    if db_order is None:
        raise OrderNotFoundError(f"order {reference} not found")
    db_order.checkout_id = checkout_id
    db_order.updated_at = datetime.now()
    return db_order


def attach_checkout_id(db: Session, reference: str, checkout_id: str):
    """Link a pending order to the provider checkout session created for it."""
    return run_transaction(db, _set_checkout_id, reference, checkout_id)


def _fail_pending(db: Session, reference: str, reason: str):
    db_order = db.query(models.Order).filter(models.Order.reference == reference).with_for_update().first()
    if db_order is None or db_order.status != models.OrderStatus.PENDING:
        return False
    db_order.status = models.OrderStatus.FAILED
    db_order.failure_reason = reason
    db_order.updated_at = datetime.now()
    return True


def mark_order_failed(db: Session, reference: str, reason: str) -> bool:
    """Move a pending order to FAILED. Returns False if the order is missing or no longer pending."""
    changed = run_transaction(db, _fail_pending, reference, reason)
    if changed:
        logger.warning("order %s marked failed: %s", reference, reason)
    return changed


def _expire_pending(db: Session, older_than: datetime):
    stale = (
        db.query(models.Order)
        .filter(
            models.Order.status == models.OrderStatus.PENDING,
            models.Order.checkout_id.is_(None),
            models.Order.created_at < older_than,
        )
        .with_for_update()
        .all()
    )
    now = datetime.now()
    for db_order in stale:
        db_order.status = models.OrderStatus.FAILED
        db_order.failure_reason = "checkout session never created"
        db_order.updated_at = now
    return [db_order.reference for db_order in stale]


def expire_stale_pending_orders(db: Session, older_than: datetime) -> int:
    """Fail pending orders that never got a checkout session.

    Creating the order and storing the provider checkout id are separate
    writes; a crash between them leaves a pending order no webhook can ever
    match. Orders that do have a checkout id are left alone since the
    provider may still deliver their outcome.
    """
    references = run_transaction(db, _expire_pending, older_than)
    for reference in references:
        logger.warning("order %s expired: checkout session never created", reference)
    return len(references)


def webhook_event_recorded(db: Session, event_id: str) -> bool:
    return db.query(models.WebhookEvent.id).filter(models.WebhookEvent.event_id == event_id).first() is not None


def record_webhook_event(db: Session, event_id: str, event_type: str, order_reference=None):
    """Stage a processed event id in the current transaction. Committed together with the order changes."""
    evt = models.WebhookEvent(event_id=event_id, event_type=event_type, order_reference=order_reference)
    db.add(evt)
    return evt
