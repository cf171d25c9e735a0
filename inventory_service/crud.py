from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from shared.exceptions import InsufficientStockError, ProductNotFoundError
from . import schemas, models
import logging

logger = logging.getLogger(__name__)


async def check_availability(db: AsyncSession, lines: list[schemas.StockRequest]) -> schemas.AvailabilityResponse:
    """
    Reports whether each requested quantity could be decremented right now.
    Read-only: a positive answer reserves nothing, intake still decrements conditionally.
    """
    stock = {product.id: product.stock_count for product in await get_products(db, [line.product_id for line in lines])}

    results = []
    for line in lines:
        if line.product_id not in stock:
            results.append(schemas.LineAvailability(
                product_id=line.product_id, requested=line.quantity, available=False, reason="unknown_product"
            ))
            continue
        enough = stock[line.product_id] >= line.quantity
        results.append(schemas.LineAvailability(
            product_id=line.product_id,
            requested=line.quantity,
            stock_count=stock[line.product_id],
            available=enough,
            reason=None if enough else "insufficient_stock",
        ))

    all_available = all(result.available for result in results)
    if not all_available:
        logger.info(f"Availability check failed for: {[r.product_id for r in results if not r.available]}")
    return schemas.AvailabilityResponse(all_available=all_available, lines=results)


async def get_product(db: AsyncSession, product_id: str) -> models.Product | None:
    result = await db.execute(select(models.Product).where(models.Product.id == product_id))
    return result.scalars().first()


async def get_products(db: AsyncSession, product_ids: list[str]) -> list[models.Product]:
    if not product_ids:
        return []
    result = await db.execute(select(models.Product).where(models.Product.id.in_(product_ids)))
    return list(result.scalars().all())


async def current_stock(db: AsyncSession, product_id: str) -> models.Product:
    """Returns the product row or raises ProductNotFoundError."""
    product = await get_product(db, product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


async def decrement_stock(db: AsyncSession, product_id: str, quantity: int) -> int:
    """
    Atomically removes ``quantity`` units of a product and returns the new stock count.

    The update only applies while ``stock_count >= quantity``, so two racing
    decrements can never drive stock below zero. Does not commit; the caller
    owns the transaction.
    """
    stmt = (
        update(models.Product)
        .where(models.Product.id == product_id, models.Product.stock_count >= quantity)
        .values(
            stock_count=models.Product.stock_count - quantity,
            in_stock=(models.Product.stock_count - quantity) > 0,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        product = await get_product(db, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        logger.warning(f"Conditional decrement refused for '{product_id}'. Requested: {quantity}, Stock: {product.stock_count}")
        raise InsufficientStockError(product_id, quantity, product.stock_count)

    new_stock = await _read_stock_count(db, product_id)
    logger.info(f"Decremented '{product_id}' by {quantity}, stock now {new_stock}")
    return new_stock


async def restore_stock(db: AsyncSession, product_id: str, quantity: int) -> int:
    """Compensating counterpart of decrement_stock. Does not commit."""
    stmt = (
        update(models.Product)
        .where(models.Product.id == product_id)
        .values(
            stock_count=models.Product.stock_count + quantity,
            in_stock=(models.Product.stock_count + quantity) > 0,
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        raise ProductNotFoundError(product_id)

    new_stock = await _read_stock_count(db, product_id)
    logger.info(f"Restored {quantity} units of '{product_id}', stock now {new_stock}")
    return new_stock


async def _read_stock_count(db: AsyncSession, product_id: str) -> int:
    result = await db.execute(select(models.Product.stock_count).where(models.Product.id == product_id))
    return result.scalar_one()


# --- CRUD for managing products directly ---

async def create_or_update_product(db: AsyncSession, product: schemas.ProductCreate) -> models.Product:
    db_product = await get_product(db, product.id)
    if db_product:
        db_product.name = product.name
        db_product.price = product.price
        db_product.stock_count = product.stock_count
        db_product.in_stock = product.stock_count > 0
        logger.info(f"Updating product '{product.id}' stock to {product.stock_count}")
    else:
        db_product = models.Product(**product.model_dump(), in_stock=product.stock_count > 0)
        db.add(db_product)
        logger.info(f"Creating new product '{product.id}' with stock {product.stock_count}")
    await db.commit()
    await db.refresh(db_product)
    return db_product


async def delete_product(db: AsyncSession, product_id: str) -> bool:
    db_product = await get_product(db, product_id)
    if db_product:
        await db.delete(db_product)
        await db.commit()
        logger.info(f"Deleted product '{product_id}'")
        return True
    logger.warning(f"Attempted to delete non-existent product '{product_id}'")
    return False
