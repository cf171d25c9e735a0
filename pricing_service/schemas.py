from decimal import Decimal
from pydantic import BaseModel, Field, conint
from typing import List


class PricingItem(BaseModel):
    item_id: str
    quantity: conint(gt=0) # Quantity > 0
    price: Decimal = Field(ge=0) # Authoritative price per item


class PriceCalculationRequest(BaseModel):
    order_id: str | None = None # For correlation/logging
    items: List[PricingItem] = Field(..., min_length=1) # Must have at least one item
    shipping_amount: Decimal = Field(ge=0, default=Decimal("0"))
    tax_amount: Decimal = Field(ge=0, default=Decimal("0"))
    discount_amount: Decimal = Field(ge=0, default=Decimal("0"))


class PricedLine(BaseModel):
    item_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class PriceCalculationResponse(BaseModel):
    order_id: str | None = None
    lines: List[PricedLine]
    base_total: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    discount_applied: Decimal
    final_total: Decimal
