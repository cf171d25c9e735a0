from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from shared.exceptions import ProductNotFoundError
from . import crud, schemas
from .database import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Inventory"])


@router.post(
    "/check_inventory",
    response_model=schemas.AvailabilityResponse,
    summary="Check Stock Availability"
)
async def check_inventory_endpoint(
    request_data: schemas.AvailabilityRequest,
    db: AsyncSession = Depends(get_db_session)
):
    """Reports per product whether the requested quantity is currently in stock."""
    return await crud.check_availability(db, request_data.lines)


@router.post(
    "/items/",
    response_model=schemas.ProductRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create or Update Product"
)
async def create_or_update_product(
    product: schemas.ProductCreate,
    db: AsyncSession = Depends(get_db_session)
):
    """Creates a new product or updates its price and stock if it already exists."""
    return await crud.create_or_update_product(db=db, product=product)


@router.get(
    "/items/{product_id}",
    response_model=schemas.ProductRead,
    summary="Get Product Stock"
)
async def read_product(product_id: str, db: AsyncSession = Depends(get_db_session)):
    """Retrieves price and stock for a specific product."""
    return await crud.current_stock(db, product_id)


@router.post(
    "/items/{product_id}/restore",
    response_model=schemas.StockLevel,
    summary="Return Units To Stock"
)
async def restore_product_stock(
    product_id: str,
    adjustment: schemas.StockAdjustment,
    db: AsyncSession = Depends(get_db_session)
):
    new_stock = await crud.restore_stock(db, product_id, adjustment.quantity)
    await db.commit()
    logger.info(f"Returned {adjustment.quantity} unit(s) of '{product_id}' to stock, now {new_stock}")
    return schemas.StockLevel(product_id=product_id, stock_count=new_stock, in_stock=new_stock > 0)


@router.delete(
    "/items/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Product"
)
async def delete_product(product_id: str, db: AsyncSession = Depends(get_db_session)):
    deleted = await crud.delete_product(db, product_id=product_id)
    if not deleted:
        raise ProductNotFoundError(product_id)
    return None
