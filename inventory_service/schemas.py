from decimal import Decimal
from pydantic import BaseModel, ConfigDict, Field, conint
from typing import List
import datetime


class StockRequest(BaseModel):
    product_id: str
    quantity: conint(gt=0)


class AvailabilityRequest(BaseModel):
    lines: List[StockRequest] = Field(..., min_length=1)


class LineAvailability(BaseModel):
    product_id: str
    requested: int
    stock_count: int = 0 # 0 for unknown products
    available: bool
    reason: str | None = None # "unknown_product" or "insufficient_stock"


class AvailabilityResponse(BaseModel):
    all_available: bool
    lines: List[LineAvailability]


class ProductBase(BaseModel):
    id: str
    name: str
    price: Decimal = Field(ge=0, decimal_places=2)
    stock_count: conint(ge=0) # Allows 0


class ProductCreate(ProductBase):
    pass


class ProductRead(ProductBase):
    model_config = ConfigDict(from_attributes=True)

    in_stock: bool
    status: str
    updated_at: datetime.datetime | None = None


class StockAdjustment(BaseModel):
    quantity: conint(gt=0)


class StockLevel(BaseModel):
    product_id: str
    stock_count: int
    in_stock: bool
