from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Optional
import logging

from fastapi import FastAPI, HTTPException, Depends, Response, status, APIRouter, Request
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from . import models, schemas, crud, database, pages
from .config import ConfigurationError, Settings, get_settings, report_secrets
from .notifications import LoggingNotifier, Notifier, notify_order_paid
from .provider import PaymentProvider, ProviderError, YocoClient
from .security import SignatureVerificationError, verify_webhook

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

_providers: dict = {}
_notifier = LoggingNotifier()


def get_payment_provider(settings: Settings = Depends(get_settings)) -> Optional[PaymentProvider]:
    """Process-wide provider client, or None when no API key is configured."""
    if not settings.yoco_secret_key:
        return None
    if settings not in _providers:
        _providers[settings] = YocoClient(
            settings.yoco_secret_key,
            base_url=settings.yoco_api_base_url,
            timeout=settings.provider_timeout_seconds,
            max_attempts=settings.provider_max_retries,
        )
    return _providers[settings]


def get_notifier() -> Notifier:
    return _notifier


@asynccontextmanager
async def lifespan(app: FastAPI):
    report_secrets(get_settings())
    yield
    for provider in _providers.values():
        await provider.aclose()
    _providers.clear()


app = FastAPI(title="Storefront Payments", lifespan=lifespan)

# Create tables on startup
models.Base.metadata.create_all(bind=database.engine)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.critical("configuration error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": "server configuration error"})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "payment provider error", "retry_recommended": exc.retry_recommended},
    )


def validation_failed(details: list) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "validation failed", "details": details})


@app.get("/health", include_in_schema=False)
def health():
    return {"status": "ok"}


@app.post(
    "/products/",
    status_code=status.HTTP_201_CREATED,
    response_model=schemas.Product,
    responses={
        409: {"description": "Conflict - product id exists", "content": {"application/json": {"example": {"detail": "product id already exists"}}}},
    },
)
def create_product(product: schemas.ProductCreate, response: Response, db: Session = Depends(database.get_db)):
    """Seed a catalog product. Price is given in major units and stored in minor units."""
    try:
        db_product = crud.create_product(db, product)
    except (crud.ProductExistsError, IntegrityError):
        raise HTTPException(status_code=409, detail="product id already exists")
    response.headers["Location"] = f"/products/{db_product.id}"
    return db_product


@app.get(
    "/products/",
    response_model=schemas.ProductList,
    responses={
        400: {"description": "Bad Request", "content": {"application/json": {"example": {"detail": "page and size must be >= 1"}}}},
    },
)
def read_products(page: int = 1, size: int = 10, db: Session = Depends(database.get_db)):
    if page < 1 or size < 1:
        raise HTTPException(status_code=400, detail="page and size must be >= 1")
    skip = (page - 1) * size
    items = crud.get_products(db, skip=skip, limit=size)
    total = crud.count_products(db)
    return {"items": items, "page": page, "size": size, "total": total}


@app.get(
    "/products/{product_id}",
    response_model=schemas.Product,
    responses={404: {"description": "Not Found", "content": {"application/json": {"example": {"detail": "Product not found"}}}}},
)
def read_product(product_id: str, db: Session = Depends(database.get_db)):
    db_product = crud.get_product(db, product_id)
    if not db_product:
        raise HTTPException(status_code=404, detail="Product not found")
    return db_product


@app.post(
    "/create-checkout",
    response_model=schemas.CheckoutResponse,
    response_model_by_alias=True,
    responses={
        200: {"description": "Checkout session created", "content": {"application/json": {"example": {"redirectUrl": "https://c.yoco.com/checkout/ch_8a7b6c", "order_reference": "ORD-3F2A9C0D1E4B5A6C", "checkout_id": "ch_8a7b6c"}}}},
        400: {"description": "Validation failed", "content": {"application/json": {"example": {"error": "validation failed", "details": ["amount must be positive"]}}}},
        503: {"description": "Provider unavailable", "content": {"application/json": {"example": {"error": "payment provider error", "retry_recommended": True}}}},
    },
)
async def create_checkout(
    request: Request,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
):
    """Create a pending order and a hosted checkout session for it.

    Every invalid field is reported in one 400 response. The buyer should be
    sent to `redirectUrl`; the order only becomes paid through the webhook.
    """
    if provider is None:
        raise ConfigurationError("YOCO_SECRET_KEY is not set")
    try:
        payload = await request.json()
    except ValueError:
        return validation_failed(["body must be a JSON object"])
    if not isinstance(payload, dict):
        return validation_failed(["body must be a JSON object"])
    try:
        checkout_request = schemas.CheckoutRequest.model_validate(payload)
    except ValidationError as e:
        details = schemas.validation_messages(e)
        logger.info("create-checkout rejected: %s", details)
        return validation_failed(details)

    reference, session = await crud.open_checkout(db, provider, settings, checkout_request)
    return schemas.CheckoutResponse(redirect_url=session.redirect_url, order_reference=reference, checkout_id=session.id)


@app.post(
    get_settings().webhook_path,
    responses={
        200: {"description": "Webhook applied", "content": {"application/json": {"example": {"detail": "paid"}}}},
        400: {"description": "Bad Request", "content": {"application/json": {"example": {"detail": "invalid signature"}}}},
        403: {"description": "Signature mismatch", "content": {"application/json": {"example": {"detail": "invalid signature"}}}},
        500: {"description": "Not applied, provider should retry", "content": {"application/json": {"example": {"detail": "Insufficient stock for P1"}}}},
    },
)
async def payment_webhook(
    request: Request,
    db: Session = Depends(database.get_db),
    settings: Settings = Depends(get_settings),
    notifier: Notifier = Depends(get_notifier),
):
    """Webhook receiver for the payment provider.

    Security:
    - `webhook-id`, `webhook-timestamp` and `webhook-signature` headers; the
      signature is an HMAC-SHA256 over `{id}.{timestamp}.{raw body}`.
    - Deliveries older or newer than the tolerance window are rejected.

    Answers 200 only once the outcome is committed; any 5xx makes the
    provider deliver again later.
    """
    body = await request.body()  # raw bytes, verified before parsing

    try:
        verify_webhook(body, request.headers, settings.yoco_webhook_secret, settings.webhook_tolerance_seconds)
    except SignatureVerificationError as e:
        logger.warning("webhook rejected with %d: %s", e.status_code, e.reason)
        raise HTTPException(status_code=e.status_code, detail="invalid signature")

    try:
        event = schemas.parse_payment_event(body)
    except schemas.InvalidEventError as e:
        logger.warning("webhook payload rejected: %s", e)
        raise HTTPException(status_code=400, detail="invalid payload")

    if not event.is_payment_event:
        logger.info("webhook event %s of type %s ignored", event.event_id, event.type)
        return {"detail": "ignored"}

    try:
        outcome = await run_in_threadpool(crud.reconcile_payment_event, db, event)
    except crud.ReconciliationError as e:
        logger.error("webhook event %s not applied: %s", event.event_id, e)
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except SQLAlchemyError:
        logger.exception("webhook event %s: transaction failed", event.event_id)
        raise HTTPException(status_code=500, detail="transaction failed")

    if outcome is crud.ReconcileOutcome.PAID:
        if event.checkout_id:
            db_order = await run_in_threadpool(crud.get_order_by_checkout_id, db, event.checkout_id)
        else:
            db_order = await run_in_threadpool(crud.get_order_by_reference, db, event.order_reference)
        if db_order is not None:
            await run_in_threadpool(notify_order_paid, notifier, db_order)
    return {"detail": outcome.value}


async def _status_page(kind: str, request: Request, db: Session, provider: Optional[PaymentProvider]) -> HTMLResponse:
    """Render a redirect landing page. Reads only; never changes order state."""
    checkout_id = request.query_params.get("checkout_id") or request.query_params.get("checkoutId")
    order_reference = request.query_params.get("order_reference")

    db_order = None
    if checkout_id:
        db_order = await run_in_threadpool(crud.get_order_by_checkout_id, db, checkout_id)
    if db_order is None and order_reference:
        db_order = await run_in_threadpool(crud.get_order_by_reference, db, order_reference)

    provider_status = None
    if checkout_id and provider is not None:
        try:
            session = await provider.get_checkout(checkout_id)
            provider_status = session.status
        except ProviderError as e:
            logger.info("status lookup for checkout %s failed: %s", checkout_id, e)

    logger.info("%s redirect: checkout=%s order=%s", kind, checkout_id, db_order.reference if db_order else order_reference)
    return pages.PAGES[kind](order=db_order, provider_status=provider_status)


@app.get("/success-redirect", response_class=HTMLResponse)
async def success_redirect(
    request: Request,
    db: Session = Depends(database.get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
):
    return await _status_page("success", request, db, provider)


@app.get("/cancel-redirect", response_class=HTMLResponse)
async def cancel_redirect(
    request: Request,
    db: Session = Depends(database.get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
):
    return await _status_page("cancel", request, db, provider)


@app.get("/failure-redirect", response_class=HTMLResponse)
async def failure_redirect(
    request: Request,
    db: Session = Depends(database.get_db),
    provider: Optional[PaymentProvider] = Depends(get_payment_provider),
):
    return await _status_page("failure", request, db, provider)


@app.get(
    "/orders/{reference}",
    response_model=schemas.Order,
    responses={404: {"description": "Not Found", "content": {"application/json": {"example": {"detail": "Order not found"}}}}},
)
def read_order(reference: str, db: Session = Depends(database.get_db)):
    """Order status for polling by the app. Authoritative once the webhook has been applied."""
    db_order = crud.get_order_by_reference(db, reference)
    if not db_order:
        raise HTTPException(status_code=404, detail="Order not found")
    return db_order


router = APIRouter(prefix="/maintenance", tags=["maintenance"])


@router.post("/expire-pending", include_in_schema=False)
def expire_pending(db: Session = Depends(database.get_db), settings: Settings = Depends(get_settings)):
    """Fail pending orders whose checkout session was never created."""
    older_than = datetime.now() - timedelta(seconds=settings.pending_order_ttl_seconds)
    return {"expired": crud.expire_stale_pending_orders(db, older_than)}


app.include_router(router)
