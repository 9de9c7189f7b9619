"""Inbound payment-provider webhook events.

Provider payloads vary between API versions: the checkout id shows up either
in ``payload.metadata.checkoutId`` or as ``payload.checkoutId`` /
``payload.checkout_id``, the order reference as ``order_reference`` or the
legacy ``firebase_order_id``, and line items either as a list or as a JSON
string (the provider only accepts flat string metadata values). The
``parse_payment_event`` adapter folds all of that into one strict
``PaymentEvent`` and fails loudly on anything it does not recognise.
"""
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator
from typing import Optional
import json

from .schemas import validation_messages

PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_FAILED = "payment.failed"
PAYMENT_CANCELLED = "payment.cancelled"

# the provider has used both spellings
EVENT_TYPE_ALIASES = {"payment.canceled": PAYMENT_CANCELLED}

PAYMENT_EVENT_TYPES = {PAYMENT_SUCCEEDED, PAYMENT_FAILED, PAYMENT_CANCELLED}


class InvalidEventError(Exception):
    """The verified webhook body does not have a recognised shape."""


class EventItem(BaseModel):
    id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)

    model_config = ConfigDict(extra="ignore")

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class _RawPayload(BaseModel):
    id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    checkout_id: Optional[str] = Field(None, validation_alias=AliasChoices("checkoutId", "checkout_id"))
    metadata: dict = Field(default_factory=dict)

    model_config = ConfigDict(extra="ignore")


class _RawEvent(BaseModel):
    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    payload: _RawPayload

    model_config = ConfigDict(extra="ignore")


class PaymentEvent(BaseModel):
    event_id: str
    type: str
    payment_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    checkout_id: Optional[str] = None
    order_reference: Optional[str] = None
    items: list[EventItem] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)

    @property
    def is_payment_event(self) -> bool:
        return self.type in PAYMENT_EVENT_TYPES


_items_adapter = TypeAdapter(list[EventItem])


def _parse_items(raw_items) -> list[EventItem]:
    if raw_items is None or raw_items == "":
        return []
    if isinstance(raw_items, str):
        try:
            raw_items = json.loads(raw_items)
        except ValueError:
            raise InvalidEventError("metadata.items is not valid JSON")
    if not isinstance(raw_items, list):
        raise InvalidEventError("metadata.items must be a list")
    try:
        return _items_adapter.validate_python(raw_items)
    except ValidationError as e:
        raise InvalidEventError("invalid metadata.items: " + "; ".join(validation_messages(e)))


def _optional_str(value) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, (str, int)) or isinstance(value, bool):
        raise InvalidEventError("metadata references must be strings")
    return str(value)


def parse_payment_event(body: bytes) -> PaymentEvent:
    """Parse and normalise a webhook body that already passed signature verification."""
    try:
        document = json.loads(body)
    except ValueError:
        raise InvalidEventError("body is not valid JSON")
    if not isinstance(document, dict):
        raise InvalidEventError("body must be a JSON object")
    try:
        raw = _RawEvent.model_validate(document)
    except ValidationError as e:
        raise InvalidEventError("; ".join(validation_messages(e)))

    event_type = EVENT_TYPE_ALIASES.get(raw.type, raw.type)
    metadata = raw.payload.metadata
    event = PaymentEvent(
        event_id=raw.id,
        type=event_type,
        payment_id=raw.payload.id,
        amount=raw.payload.amount,
        currency=raw.payload.currency.upper() if raw.payload.currency else None,
        status=raw.payload.status,
        checkout_id=_optional_str(metadata.get("checkoutId")) or raw.payload.checkout_id,
        order_reference=_optional_str(metadata.get("order_reference") or metadata.get("firebase_order_id")),
        items=_parse_items(metadata.get("items")),
    )

    if not event.is_payment_event:
        return event
    if not event.checkout_id and not event.order_reference:
        raise InvalidEventError("event does not reference a checkout or an order")
    if event.type == PAYMENT_SUCCEEDED:
        missing = [name for name in ("payment_id", "amount", "currency") if getattr(event, name) is None]
        if missing:
            raise InvalidEventError("payment.succeeded event is missing " + ", ".join(missing))
    return event
