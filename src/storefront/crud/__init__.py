"""CRUD package re-exports for easy imports from `src.storefront.crud`."""
from .crud import (
    get_product,
    get_products,
    count_products,
    create_product,
    new_order_reference,
    get_order_by_reference,
    get_order_by_checkout_id,
    create_pending_order,
    attach_checkout_id,
    mark_order_failed,
    expire_stale_pending_orders,
    webhook_event_recorded,
    record_webhook_event,
)
from .payments import (
    ReconcileOutcome,
    apply_payment_event,
    find_order_for_event,
    reconcile_payment_event,
)
from .checkout import open_checkout, return_urls, with_query_param

__all__ = [
    "get_product",
    "get_products",
    "count_products",
    "create_product",
    "new_order_reference",
    "get_order_by_reference",
    "get_order_by_checkout_id",
    "create_pending_order",
    "attach_checkout_id",
    "mark_order_failed",
    "expire_stale_pending_orders",
    "webhook_event_recorded",
    "record_webhook_event",
    "ReconcileOutcome",
    "apply_payment_event",
    "find_order_for_event",
    "reconcile_payment_event",
    "open_checkout",
    "return_urls",
    "with_query_param",
]

# re-export exceptions
from .crud import (
    ProductExistsError,
    ReconciliationError,
    OrderNotFoundError,
    ProductNotFoundError,
    InvalidStockError,
    InsufficientStockError,
    PaymentMismatchError,
)
__all__.extend([
    "ProductExistsError",
    "ReconciliationError",
    "OrderNotFoundError",
    "ProductNotFoundError",
    "InvalidStockError",
    "InsufficientStockError",
    "PaymentMismatchError",
])
