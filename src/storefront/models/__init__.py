"""Models package re-exports for easy imports from `src.storefront.models`."""
from .models import Base, Product, Order, OrderItem, OrderStatus, WebhookEvent, ALLOWED_TRANSITIONS

__all__ = ["Base", "Product", "Order", "OrderItem", "OrderStatus", "WebhookEvent", "ALLOWED_TRANSITIONS"]
