from decimal import Decimal
from typing import Any, Dict, List, Literal
import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, conint
from pydantic.alias_generators import to_camel

from .statuses import OrderStatus, PaymentStatus


class Address(BaseModel):
    line1: str
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None


class CartItem(BaseModel):
    id: str
    quantity: conint(gt=0)
    price: Decimal | None = None # Client-side price; ignored, the catalog price wins


class CreateOrderRequest(BaseModel):
    """Checkout payload. Accepts the storefront's camelCase keys or snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    customer_email: str = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    customer_phone: str | None = None
    shipping_address: Address | str
    billing_address: Address | str | None = None
    items: List[CartItem] = Field(..., min_length=1)
    subtotal: Decimal | None = None
    tax_amount: Decimal = Field(ge=0, default=Decimal("0"))
    shipping_amount: Decimal = Field(ge=0, default=Decimal("0"))
    discount_amount: Decimal = Field(ge=0, default=Decimal("0"))
    total_amount: Decimal
    payment_reference: str = Field(
        min_length=1,
        validation_alias=AliasChoices("stripePaymentIntentId", "paymentReference", "payment_reference"),
    )
    # Degenerate path: the caller already knows the payment succeeded
    payment_status: Literal["pending", "paid"] = "pending"


class OrderLineItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class OrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    order_number: str
    customer_email: str
    customer_name: str
    customer_phone: str | None = None
    shipping_address: Any
    billing_address: Any = None
    line_items: List[OrderLineItemRead]
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    payment_status: PaymentStatus
    order_status: OrderStatus
    gateway_payment_reference: str | None = None
    net_amount_received: Decimal | None = None
    processor_fee: Decimal | None = None
    delivery_quote_required: bool
    delivery_distance_miles: Decimal | None = None
    version: int
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None


class OrderEnvelope(BaseModel):
    order: OrderRead


class OrderList(BaseModel):
    orders: List[OrderRead]


class UpdateOrderStatusRequest(BaseModel):
    order_status: OrderStatus
    notify: bool = True
    restock: bool = False # Return line-item quantities to stock on cancellation
    message: str = "" # Courier note or cancellation reason for the customer email


class WebhookAck(BaseModel):
    received: bool = True
    status: str | None = None


class SettlementBackfillResult(BaseModel):
    total: int
    processed: int
    failed: int
    errors: List[str] = Field(default_factory=list)


class OrderStatusUpdateEvent(BaseModel):
    order_id: str
    order_number: str
    payment_status: str
    order_status: str
    timestamp: float # e.g., time.time()
    details: Dict[str, Any] | None = None
