"""Best-effort customer notifications (SMS / WhatsApp).

Delivery is a side call after the order is durably paid. A failure here is
logged and never changes the outcome of the reconciliation.
"""
import logging

from . import money

logger = logging.getLogger(__name__)


class Notifier:
    def order_paid(self, order) -> None:
        raise NotImplementedError


class LoggingNotifier(Notifier):
    """Default notifier: records the message that a gateway would send."""

    def order_paid(self, order) -> None:
        if not order.customer_phone:
            logger.info("order %s paid; no customer phone on file, nothing to send", order.reference)
            return
        logger.info(
            "order %s paid: would notify %s (%s)",
            order.reference,
            order.customer_phone,
            money.format_minor_units(order.amount, order.currency),
        )


def notify_order_paid(notifier: Notifier, order) -> bool:
    """Send the paid notification. Returns False when delivery failed."""
    try:
        notifier.order_paid(order)
        return True
    except Exception:
        logger.exception("notification for order %s failed", order.reference)
        return False
