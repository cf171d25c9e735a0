import uuid

from sqlalchemy import (
    Boolean, Column, ForeignKey, Integer, JSON, Numeric, String, Text, TIMESTAMP, CheckConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from inventory_service.database import Base
from inventory_service.models import Product
from .statuses import OrderStatus, PaymentStatus


class Order(Base):
    """Order record; single source of truth for payment and order status."""

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # Best-effort unique: generated from a timestamp and a random suffix, not constrained
    order_number = Column(String(64), nullable=False, index=True)

    customer_email = Column(String(255), nullable=False)
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(64), nullable=True)
    shipping_address = Column(JSON, nullable=False)
    billing_address = Column(JSON, nullable=True)

    subtotal = Column(Numeric(10, 2), nullable=False)
    tax_amount = Column(Numeric(10, 2), nullable=False, default=0)
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)

    payment_status = Column(String(16), nullable=False, default=PaymentStatus.PENDING.value)
    order_status = Column("status", String(16), nullable=False, default=OrderStatus.PENDING.value)
    gateway_payment_reference = Column(String(255), nullable=True, unique=True)

    # Settlement economics; null until the gateway ledger entry has been read
    net_amount_received = Column(Numeric(10, 2), nullable=True)
    processor_fee = Column(Numeric(10, 2), nullable=True)

    delivery_quote_required = Column(Boolean, nullable=False, default=False)
    delivery_distance_miles = Column(Numeric(6, 1), nullable=True)
    notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    line_items = relationship(
        "OrderLineItem",
        back_populates="order",
        order_by="OrderLineItem.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return (
            f"<Order(id='{self.id}', number='{self.order_number}', "
            f"payment_status='{self.payment_status}', status='{self.order_status}')>"
        )


class OrderLineItem(Base):
    """Immutable order line priced at the authoritative unit price."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())

    order = relationship("Order", back_populates="line_items")
    product = relationship(Product)

    __table_args__ = (
        CheckConstraint('quantity > 0', name='order_items_quantity_positive'),
    )

    @property
    def product_name(self) -> str:
        return self.product.name if self.product is not None else "Product"


class ProcessedWebhookEvent(Base):
    """Idempotency set of gateway events that have already produced side effects."""

    __tablename__ = "processed_webhook_events"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(64), nullable=False)
    payment_reference = Column(String(255), nullable=True, index=True)
    processed_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


class PendingReconciliation(Base):
    """Gateway event received before its order existed; replayed later."""

    __tablename__ = "pending_reconciliations"

    event_id = Column(String(255), primary_key=True)
    event_type = Column(String(64), nullable=False)
    payment_reference = Column(String(255), nullable=False, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    received_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    last_attempt_at = Column(TIMESTAMP(timezone=True), nullable=True)
