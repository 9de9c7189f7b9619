from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    String,
    CheckConstraint,
    UniqueConstraint,
    ForeignKey,
    Enum as SAEnum,
    DateTime,
)
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime
import enum

Base = declarative_base()


class OrderStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Forward-only transitions; PAID, FAILED and CANCELLED are terminal.
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.FAILED, OrderStatus.CANCELLED},
    OrderStatus.PAID: set(),
    OrderStatus.FAILED: set(),
    OrderStatus.CANCELLED: set(),
}


class Product(Base):
    __tablename__ = "products"
    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    price = Column(Integer, nullable=False)  # minor units
    stock = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("price > 0", name="ck_product_price_positive"),
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version}


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, index=True)
    reference = Column(String, nullable=False, index=True)
    checkout_id = Column(String, nullable=True, index=True)
    status = Column(SAEnum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    amount = Column(Integer, nullable=False)  # minor units
    currency = Column(String(3), nullable=False)
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)
    provider_payment_id = Column(String, nullable=True)
    failure_reason = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    items = relationship(
        "OrderItem",
        order_by="OrderItem.position",
        cascade="all, delete-orphan",
        back_populates="order",
    )

    __table_args__ = (
        UniqueConstraint("reference", name="uq_order_reference"),
        UniqueConstraint("checkout_id", name="uq_order_checkout_id"),
        CheckConstraint("amount > 0", name="ck_order_amount_positive"),
    )
    __mapper_args__ = {"version_id_col": version}


class OrderItem(Base):
    __tablename__ = "order_items"
    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(String, nullable=False)
    name = Column(String, nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)  # minor units

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
        CheckConstraint("unit_price > 0", name="ck_order_item_price_positive"),
    )

    @property
    def subtotal(self) -> int:
        return self.quantity * self.unit_price


class WebhookEvent(Base):
    __tablename__ = "webhook_events"
    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String, nullable=False, unique=True, index=True)
    event_type = Column(String, nullable=False)
    order_reference = Column(String, nullable=True)
    received_at = Column(DateTime, default=datetime.now, nullable=False)
