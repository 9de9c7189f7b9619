"""Schemas package re-exports for easy imports from `src.storefront.schemas`."""
from .schemas import (
    CartItem,
    CheckoutMetadata,
    CheckoutRequest,
    CheckoutResponse,
    Product,
    ProductCreate,
    ProductList,
    Order,
    OrderItem,
    OrderStatus,
    validation_messages,
)
from .events import (
    EventItem,
    PaymentEvent,
    InvalidEventError,
    parse_payment_event,
    PAYMENT_SUCCEEDED,
    PAYMENT_FAILED,
    PAYMENT_CANCELLED,
)

__all__ = [
    "CartItem",
    "CheckoutMetadata",
    "CheckoutRequest",
    "CheckoutResponse",
    "Product",
    "ProductCreate",
    "ProductList",
    "Order",
    "OrderItem",
    "OrderStatus",
    "validation_messages",
    "EventItem",
    "PaymentEvent",
    "InvalidEventError",
    "parse_payment_event",
    "PAYMENT_SUCCEEDED",
    "PAYMENT_FAILED",
    "PAYMENT_CANCELLED",
]
