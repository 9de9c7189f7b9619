from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal
from urllib.parse import urlsplit
import re

from .. import money
from ..models import OrderStatus  # Import from models, not define locally

CURRENCY_RE = re.compile(r"[A-Za-z]{3}")

RETURN_URL_FIELDS = {
    "success_url": "successUrl",
    "cancel_url": "cancelUrl",
    "failure_url": "failureUrl",
}


def _coerce_id(v):
    # catalog ids arrive as numbers from the WebView cart
    if isinstance(v, int) and not isinstance(v, bool):
        return str(v)
    return v


def _check_price(v):
    # rejects prices that round to zero minor units or overflow the column
    try:
        minor = money.to_minor_units(v)
    except ValueError:
        raise ValueError("price is too large")
    if minor <= 0:
        raise ValueError("price must be positive")
    return v


class CartItem(BaseModel):
    id: str = Field(..., min_length=1)
    name: Optional[str] = None
    quantity: int = Field(..., gt=0)
    price: Decimal = Field(..., gt=0)

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        return _coerce_id(v)

    @field_validator("price")
    @classmethod
    def price_in_minor_units(cls, v):
        return _check_price(v)

    @property
    def unit_price_minor(self) -> int:
        return money.to_minor_units(self.price)

    @property
    def subtotal_minor(self) -> int:
        return self.quantity * self.unit_price_minor


class CheckoutMetadata(BaseModel):
    items: list[CartItem] = Field(default_factory=list, validate_default=True)
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None

    @field_validator("items")
    @classmethod
    def items_not_empty(cls, v):
        if not v:
            raise ValueError("items must not be empty")
        return v


class CheckoutRequest(BaseModel):
    """Body of `POST /create-checkout`.

    Fields are validated in order (amount, currency, return URLs, items) and
    every failure is collected, so one 400 response lists all of them.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "amount": "64.99",
                "currency": "ZAR",
                "successUrl": "https://shop.example.com/success-redirect",
                "cancelUrl": "https://shop.example.com/cancel-redirect",
                "failureUrl": "https://shop.example.com/failure-redirect",
                "metadata": {
                    "items": [{"id": "P1", "name": "Maize Meal 5kg", "quantity": 1, "price": "64.99"}],
                    "customer_name": "Thandi",
                    "customer_phone": "+27820000000",
                },
            }
        },
    )

    amount: Optional[Decimal] = Field(None, validate_default=True)
    currency: Optional[str] = Field(None, validate_default=True)
    success_url: Optional[str] = Field(None, alias="successUrl")
    cancel_url: Optional[str] = Field(None, alias="cancelUrl")
    failure_url: Optional[str] = Field(None, alias="failureUrl")
    metadata: CheckoutMetadata = Field(default_factory=dict, validate_default=True)

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        if v is None or v == "":
            raise ValueError("amount is required")
        try:
            amount = money.parse_decimal(v)
        except ValueError:
            raise ValueError("amount must be a number")
        if amount <= 0 or money.to_minor_units(amount) <= 0:
            raise ValueError("amount must be positive")
        return amount

    @field_validator("currency", mode="before")
    @classmethod
    def check_currency(cls, v):
        if not isinstance(v, str) or not CURRENCY_RE.fullmatch(v):
            raise ValueError("currency must be a 3-letter currency code")
        return v.upper()

    @field_validator("success_url", "cancel_url", "failure_url")
    @classmethod
    def check_url(cls, v, info):
        if v is None:
            return v
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(f"{RETURN_URL_FIELDS[info.field_name]} must be an absolute http(s) URL")
        return v

    @model_validator(mode="after")
    def amount_matches_items(self):
        items_total = sum(item.subtotal_minor for item in self.metadata.items)
        if self.amount_minor != items_total:
            raise ValueError("amount does not match line items total")
        return self

    @property
    def amount_minor(self) -> int:
        return money.to_minor_units(self.amount)


def validation_messages(exc: ValidationError) -> list[str]:
    """Flatten a pydantic ValidationError into readable messages, one per failing field."""
    messages = []
    for err in exc.errors():
        ctx_error = (err.get("ctx") or {}).get("error")
        if err["type"] == "value_error" and ctx_error is not None:
            messages.append(str(ctx_error))
            continue
        loc = ".".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return messages


class ProductCreate(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    price: Decimal = Field(..., gt=0)
    stock: int = Field(0, ge=0)
    active: bool = True

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"id": "P1", "name": "Maize Meal 5kg", "price": "64.99", "stock": 100, "active": True}
        }
    )

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v):
        return _coerce_id(v)

    @field_validator("price")
    @classmethod
    def price_in_minor_units(cls, v):
        return _check_price(v)

    @property
    def price_minor(self) -> int:
        return money.to_minor_units(self.price)


class Product(BaseModel):
    id: str
    name: str
    price: int
    stock: int
    active: bool

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {"id": "P1", "name": "Maize Meal 5kg", "price": 6499, "stock": 100, "active": True}
        },
    )


class ProductList(BaseModel):
    items: list[Product]
    page: int
    size: int
    total: int


class OrderItem(BaseModel):
    product_id: str
    name: Optional[str] = None
    quantity: int
    unit_price: int

    model_config = ConfigDict(from_attributes=True)


class Order(BaseModel):
    reference: str
    checkout_id: Optional[str] = None
    status: OrderStatus
    amount: int
    currency: str
    items: list[OrderItem]
    provider_payment_id: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    paid_at: Optional[datetime] = None

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "example": {
                "reference": "ORD-3f2a9c0d1e4b",
                "checkout_id": "ch_8a7b6c",
                "status": "paid",
                "amount": 6499,
                "currency": "ZAR",
                "items": [{"product_id": "P1", "name": "Maize Meal 5kg", "quantity": 1, "unit_price": 6499}],
                "provider_payment_id": "p_123",
                "failure_reason": None,
                "created_at": "2025-11-13T12:00:00Z",
                "updated_at": "2025-11-13T12:01:00Z",
                "paid_at": "2025-11-13T12:01:00Z",
            }
        },
    )


class CheckoutResponse(BaseModel):
    redirect_url: str = Field(..., alias="redirectUrl")
    order_reference: str
    checkout_id: str

    model_config = ConfigDict(populate_by_name=True)
