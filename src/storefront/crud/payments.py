"""Idempotent reconciliation of verified payment events.

Each event is applied in a single transaction that performs every read
(order, processed-event ledger, products) before any write, so the store's
optimistic version check or row lock can detect a concurrent delivery and
`run_transaction` can replay the whole unit from a fresh read.

Order state machine::

    pending --payment.succeeded, stock available--> paid
    pending --payment.failed--> failed
    pending --payment.cancelled--> cancelled
    paid    --anything--> paid (no-op)

A success notification for a failed or cancelled order is not applied; it is
logged as an anomaly for someone to look at (for example to refund it).
"""
from collections import OrderedDict
from datetime import datetime
import enum
import logging

from sqlalchemy.orm import Session, selectinload

from .. import models
from ..database import run_transaction
from ..schemas import events
from .crud import (
    InsufficientStockError,
    InvalidStockError,
    OrderNotFoundError,
    PaymentMismatchError,
    ProductNotFoundError,
    record_webhook_event,
    webhook_event_recorded,
)

logger = logging.getLogger(__name__)


class ReconcileOutcome(enum.Enum):
    PAID = "paid"
    CLOSED = "closed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNHANDLED = "unhandled"


CLOSING_STATUS = {
    events.PAYMENT_FAILED: models.OrderStatus.FAILED,
    events.PAYMENT_CANCELLED: models.OrderStatus.CANCELLED,
}


def find_order_for_event(db: Session, event: events.PaymentEvent):
    """Load (and lock) the order an event refers to.

    The provider checkout id is authoritative; the order reference is only
    used when the event carries no checkout id.
    """
    query = db.query(models.Order).options(selectinload(models.Order.items)).with_for_update()
    if event.checkout_id:
        db_order = query.filter(models.Order.checkout_id == event.checkout_id).first()
        if db_order is not None and event.order_reference and db_order.reference != event.order_reference:
            logger.warning(
                "event %s: checkout %s belongs to order %s but metadata names %s",
                event.event_id, event.checkout_id, db_order.reference, event.order_reference,
            )
        return db_order
    return query.filter(models.Order.reference == event.order_reference).first()


def _require_order(db: Session, event: events.PaymentEvent):
    db_order = find_order_for_event(db, event)
    if db_order is None:
        logger.error(
            "event %s (%s): order not found for session %s / reference %s",
            event.event_id, event.type, event.checkout_id, event.order_reference,
        )
        raise OrderNotFoundError(f"order not found for session {event.checkout_id or event.order_reference}")
    return db_order


def _stock_of(product: models.Product) -> int:
    stock = product.stock
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        raise InvalidStockError(f"product {product.id} has invalid stock value {stock!r}")
    return stock


def _quantities_by_product(db_order: models.Order):
    quantities = OrderedDict()
    for item in db_order.items:
        quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity
    return quantities


def _check_event_items(event: events.PaymentEvent, quantities) -> None:
    if not event.items:
        return
    echoed = OrderedDict()
    for item in event.items:
        echoed[item.id] = echoed.get(item.id, 0) + item.quantity
    if dict(echoed) != dict(quantities):
        logger.warning("event %s: provider metadata items differ from stored order items", event.event_id)


def apply_payment_succeeded(db: Session, event: events.PaymentEvent) -> ReconcileOutcome:
    # reads
    db_order = _require_order(db, event)
    if webhook_event_recorded(db, event.event_id) or db_order.status == models.OrderStatus.PAID:
        logger.info("event %s: order %s already paid, nothing to do", event.event_id, db_order.reference)
        return ReconcileOutcome.DUPLICATE

    if db_order.status in (models.OrderStatus.FAILED, models.OrderStatus.CANCELLED):
        logger.error(
            "ANOMALY event %s: payment %s succeeded for order %s which is %s; not applied, needs review",
            event.event_id, event.payment_id, db_order.reference, db_order.status.value,
        )
        record_webhook_event(db, event.event_id, event.type, db_order.reference)
        return ReconcileOutcome.IGNORED

    if event.amount != db_order.amount or event.currency != db_order.currency:
        raise PaymentMismatchError(
            f"order {db_order.reference} expects {db_order.amount} {db_order.currency}, "
            f"payment reported {event.amount} {event.currency}"
        )

    quantities = _quantities_by_product(db_order)
    _check_event_items(event, quantities)

    products = {}
    for product_id in quantities:
        product = db.query(models.Product).filter(models.Product.id == product_id).with_for_update().first()
        if product is None:
            raise ProductNotFoundError(f"product {product_id} not found")
        products[product_id] = product

    new_stock = {product_id: _stock_of(products[product_id]) - qty for product_id, qty in quantities.items()}
    short = [product_id for product_id, stock in new_stock.items() if stock < 0]
    if short:
        raise InsufficientStockError(short)

    # writes
    now = datetime.now()
    for product_id, stock in new_stock.items():
        products[product_id].stock = stock
    db_order.status = models.OrderStatus.PAID
    db_order.provider_payment_id = event.payment_id
    db_order.paid_at = now
    db_order.updated_at = now
    record_webhook_event(db, event.event_id, event.type, db_order.reference)
    return ReconcileOutcome.PAID


def apply_payment_closed(db: Session, event: events.PaymentEvent) -> ReconcileOutcome:
    """Handle payment.failed / payment.cancelled: status change only, stock untouched."""
    target = CLOSING_STATUS[event.type]
    db_order = _require_order(db, event)
    if webhook_event_recorded(db, event.event_id) or db_order.status == target:
        return ReconcileOutcome.DUPLICATE
    if target not in models.ALLOWED_TRANSITIONS[db_order.status]:
        logger.warning(
            "event %s: order %s is %s, ignoring %s",
            event.event_id, db_order.reference, db_order.status.value, event.type,
        )
        return ReconcileOutcome.IGNORED

    db_order.status = target
    db_order.failure_reason = event.status or event.type
    db_order.updated_at = datetime.now()
    record_webhook_event(db, event.event_id, event.type, db_order.reference)
    return ReconcileOutcome.CLOSED


def apply_payment_event(db: Session, event: events.PaymentEvent) -> ReconcileOutcome:
    if event.type == events.PAYMENT_SUCCEEDED:
        return apply_payment_succeeded(db, event)
    if event.type in CLOSING_STATUS:
        return apply_payment_closed(db, event)
    logger.info("event %s: unhandled type %s acknowledged", event.event_id, event.type)
    return ReconcileOutcome.UNHANDLED


def reconcile_payment_event(db: Session, event: events.PaymentEvent) -> ReconcileOutcome:
    """Apply a verified event exactly once and commit. Safe to call repeatedly for the same event."""
    outcome = run_transaction(db, apply_payment_event, event)
    if outcome is ReconcileOutcome.PAID:
        logger.info("event %s: order for checkout %s paid", event.event_id, event.checkout_id or event.order_reference)
    return outcome
