"""Checkout session creation: pending order first, then the provider session.

The two writes (order row, provider checkout id) are not atomic with the
provider call between them. A provider failure marks the order failed right
away; a crash between the steps leaves a pending order without a checkout id,
which `expire_stale_pending_orders` later fails.
"""
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit
import logging

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from .. import schemas
from ..config import Settings
from ..provider import CheckoutSession, PaymentProvider, ProviderError
from .crud import attach_checkout_id, create_pending_order, mark_order_failed

logger = logging.getLogger(__name__)

REDIRECT_PATHS = {
    "success": "/success-redirect",
    "cancel": "/cancel-redirect",
    "failure": "/failure-redirect",
}


def with_query_param(url: str, name: str, value: str) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    if not any(key == name for key, _ in query):
        query.append((name, value))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def return_urls(settings: Settings, request: schemas.CheckoutRequest, reference: str) -> dict:
    """Success/cancel/failure URLs for the provider, each tagged with the order reference."""
    given = {"success": request.success_url, "cancel": request.cancel_url, "failure": request.failure_url}
    urls = {}
    for kind, path in REDIRECT_PATHS.items():
        url = given[kind] or f"{settings.public_base_url}{path}"
        urls[kind] = with_query_param(url, "order_reference", reference)
    return urls


async def open_checkout(
    db: Session,
    provider: PaymentProvider,
    settings: Settings,
    request: schemas.CheckoutRequest,
):
    """Create the pending order and its provider checkout session.

    Returns `(order_reference, session)`. Provider errors propagate after the
    order has been marked failed.
    """
    db_order = await run_in_threadpool(create_pending_order, db, request)
    reference = db_order.reference
    urls = return_urls(settings, request, reference)
    customer = {
        "customer_name": request.metadata.customer_name,
        "customer_email": request.metadata.customer_email,
        "customer_phone": request.metadata.customer_phone,
    }

    try:
        session: CheckoutSession = await provider.create_checkout(
            amount=db_order.amount,
            currency=db_order.currency,
            success_url=urls["success"],
            cancel_url=urls["cancel"],
            failure_url=urls["failure"],
            order_reference=reference,
            items=list(db_order.items),
            metadata=customer,
        )
    except ProviderError as e:
        logger.error("checkout session for order %s failed: %s", reference, e)
        await run_in_threadpool(mark_order_failed, db, reference, f"checkout session not created: {e}")
        raise

    if not session.redirect_url:
        await run_in_threadpool(mark_order_failed, db, reference, "checkout session has no redirect url")
        raise ProviderError("checkout session has no redirect url")

    await run_in_threadpool(attach_checkout_id, db, reference, session.id)
    return reference, session
