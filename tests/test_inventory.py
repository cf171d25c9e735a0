"""Tests for the inventory ledger's conditional stock operations."""

import asyncio

import pytest

from inventory_service import crud, schemas
from shared.exceptions import InsufficientStockError, ProductNotFoundError

pytestmark = pytest.mark.anyio


async def _stock(session_factory, product_id):
    async with session_factory() as db:
        product = await crud.get_product(db, product_id)
        return product.stock_count, product.in_stock


class TestDecrementStock:
    async def test_decrement_returns_new_stock(self, session_factory, products):
        async with session_factory() as db:
            new_stock = await crud.decrement_stock(db, "fire-1", 2)
            await db.commit()

        assert new_stock == 3
        assert await _stock(session_factory, "fire-1") == (3, True)

    async def test_decrement_to_zero_clears_in_stock(self, session_factory, products):
        async with session_factory() as db:
            assert await crud.decrement_stock(db, "surround-1", 2) == 0
            await db.commit()

        assert await _stock(session_factory, "surround-1") == (0, False)

    async def test_decrement_beyond_stock_is_refused(self, session_factory, products):
        async with session_factory() as db:
            with pytest.raises(InsufficientStockError) as exc_info:
                await crud.decrement_stock(db, "surround-1", 3)
            await db.rollback()

        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        assert await _stock(session_factory, "surround-1") == (2, True)

    async def test_decrement_unknown_product(self, session_factory, products):
        async with session_factory() as db:
            with pytest.raises(ProductNotFoundError):
                await crud.decrement_stock(db, "missing", 1)

    async def test_concurrent_decrements_never_oversell(self, session_factory, products):
        """Five buyers race for two units; exactly two succeed."""

        async def buy():
            async with session_factory() as db:
                try:
                    await crud.decrement_stock(db, "surround-1", 1)
                    await db.commit()
                    return True
                except InsufficientStockError:
                    await db.rollback()
                    return False

        results = await asyncio.gather(*(buy() for _ in range(5)))

        assert results.count(True) == 2
        assert await _stock(session_factory, "surround-1") == (0, False)


class TestRestoreStock:
    async def test_restore_adds_units_back(self, session_factory, products):
        async with session_factory() as db:
            await crud.decrement_stock(db, "surround-1", 2)
            assert await crud.restore_stock(db, "surround-1", 2) == 2
            await db.commit()

        assert await _stock(session_factory, "surround-1") == (2, True)

    async def test_restore_unknown_product(self, session_factory, products):
        async with session_factory() as db:
            with pytest.raises(ProductNotFoundError):
                await crud.restore_stock(db, "missing", 1)


class TestAvailability:
    async def test_check_availability(self, session_factory, products):
        lines = [
            schemas.StockRequest(product_id="fire-1", quantity=5),
            schemas.StockRequest(product_id="surround-1", quantity=3),
            schemas.StockRequest(product_id="missing", quantity=1),
        ]
        async with session_factory() as db:
            result = await crud.check_availability(db, lines)

        assert result.all_available is False
        by_product = {line.product_id: line for line in result.lines}
        assert by_product["fire-1"].available is True
        assert (by_product["surround-1"].stock_count, by_product["surround-1"].reason) == (2, "insufficient_stock")
        assert (by_product["missing"].stock_count, by_product["missing"].reason) == (0, "unknown_product")

    async def test_create_or_update_product_recomputes_in_stock(self, session_factory, products):
        async with session_factory() as db:
            product = await crud.create_or_update_product(
                db, schemas.ProductCreate(id="fire-1", name="Electric Fire", price="110.00", stock_count=0)
            )

        assert product.in_stock is False
        assert str(product.price) == "110.00"
