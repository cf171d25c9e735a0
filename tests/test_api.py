"""Tests for the FastAPI HTTP surface."""

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from inventory_service.database import get_db_session
from order_manager import main, status_cache
from order_manager.admin import OrderAdminService

pytestmark = pytest.mark.anyio


@pytest.fixture
async def api_client(session_factory, products, intake_service, reconciliation_service, dispatcher):
    """HTTP client bound to the app, with services and sessions pointed at the test store."""

    async def test_db_session():
        async with session_factory() as session:
            yield session

    main.app.dependency_overrides[get_db_session] = test_db_session
    main.app.dependency_overrides[main.get_intake_service] = lambda: intake_service
    main.app.dependency_overrides[main.get_reconciliation_service] = lambda: reconciliation_service
    main.app.dependency_overrides[main.get_admin_service] = lambda: OrderAdminService(
        session_factory=session_factory, dispatcher=dispatcher
    )
    transport = httpx.ASGITransport(app=main.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    main.app.dependency_overrides.clear()


async def _create(api_client, order_payload, **overrides):
    response = await api_client.post("/orders", json=order_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()["order"]


class TestHealth:
    async def test_health(self, api_client):
        response = await api_client.get("/health")
        assert response.json() == {"status": "ok"}


class TestCreateOrderEndpoint:
    async def test_created(self, api_client, order_payload):
        order = await _create(api_client, order_payload)

        assert order["payment_status"] == "pending"
        assert order["total_amount"] == "125.50"
        assert [item["product_name"] for item in order["line_items"]] == ["Electric Fire", "Oak Surround"]

    async def test_total_mismatch(self, api_client, order_payload):
        response = await api_client.post("/orders", json=order_payload(totalAmount="1.00"))

        assert response.status_code == 400
        assert response.json()["code"] == "TOTAL_MISMATCH"

    async def test_unknown_product(self, api_client, order_payload):
        response = await api_client.post("/orders", json=order_payload(items=[{"id": "ghost", "quantity": 1}]))

        assert response.status_code == 404
        assert response.json()["code"] == "PRODUCT_NOT_FOUND"

    async def test_insufficient_stock(self, api_client, order_payload):
        response = await api_client.post(
            "/orders", json=order_payload(items=[{"id": "surround-1", "quantity": 3}], totalAmount="76.50")
        )

        assert response.status_code == 409
        assert response.json() == {
            "error": "Insufficient stock for product 'surround-1': requested 3, available 2",
            "code": "INSUFFICIENT_STOCK",
        }

    async def test_validation_error_shape(self, api_client, order_payload):
        response = await api_client.post("/orders", json=order_payload(items=[]))

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestWebhookEndpoint:
    async def test_succeeded(self, api_client, order_payload, webhook):
        order = await _create(api_client, order_payload)
        payload, signature = webhook("evt_1", "payment_intent.succeeded", "pi_123")

        response = await api_client.post("/payments/webhook", content=payload, headers={"Stripe-Signature": signature})

        assert response.status_code == 200
        assert response.json() == {"received": True, "status": "applied"}
        fetched = (await api_client.get(f"/orders/{order['id']}")).json()["order"]
        assert fetched["payment_status"] == "paid"
        assert fetched["processor_fee"] == "2.07"

    async def test_bad_signature(self, api_client, webhook):
        payload, _ = webhook("evt_1", "payment_intent.succeeded", "pi_123")

        response = await api_client.post("/payments/webhook", content=payload, headers={"Stripe-Signature": "t=1,v1=bad"})

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_SIGNATURE"


class TestOrderQueries:
    async def test_get_missing_order(self, api_client):
        response = await api_client.get("/orders/does-not-exist")

        assert response.status_code == 404
        assert response.json()["code"] == "ORDER_NOT_FOUND"

    async def test_list_by_status(self, api_client, order_payload):
        await _create(api_client, order_payload, reference="pi_a", items=[{"id": "fire-1", "quantity": 1}], totalAmount="100.00")
        await _create(api_client, order_payload, reference="pi_b", items=[{"id": "fire-1", "quantity": 1}], totalAmount="100.00", paymentStatus="paid")

        pending = (await api_client.get("/orders", params={"status": "pending"})).json()["orders"]
        everything = (await api_client.get("/orders", params={"status": "all"})).json()["orders"]

        assert [o["gateway_payment_reference"] for o in pending] == ["pi_a"]
        assert len(everything) == 2

    async def test_cached_status(self, api_client, monkeypatch):
        monkeypatch.setattr(status_cache, "get_order_status", AsyncMock(return_value={"payment_status": "paid", "order_status": "processing"}))

        response = await api_client.get("/orders/abc/status")

        assert response.json()["payment_status"] == "paid"


class TestUpdateOrderStatus:
    async def test_ship_then_deliver(self, api_client, order_payload, email_outbox):
        order = await _create(api_client, order_payload, paymentStatus="paid")
        email_outbox.clear()

        shipped = await api_client.patch(f"/orders/{order['id']}/status", json={"order_status": "shipped", "message": "Courier: DPD"})
        delivered = await api_client.patch(f"/orders/{order['id']}/status", json={"order_status": "delivered"})

        assert shipped.json()["order"]["order_status"] == "shipped"
        assert delivered.json()["order"]["version"] == order["version"] + 2
        assert [email["subject"].split(" - ")[0] for email in email_outbox] == [
            "Your Order is Out for Delivery",
            "Order Delivered",
        ]
        assert "Courier: DPD" in email_outbox[0]["html"]

    async def test_illegal_transition(self, api_client, order_payload):
        order = await _create(api_client, order_payload)

        response = await api_client.patch(f"/orders/{order['id']}/status", json={"order_status": "delivered"})

        assert response.status_code == 409
        assert response.json()["code"] == "INVALID_TRANSITION"

    async def test_cancel_with_restock(self, api_client, order_payload):
        order = await _create(api_client, order_payload)

        response = await api_client.patch(
            f"/orders/{order['id']}/status", json={"order_status": "cancelled", "restock": True, "notify": False}
        )

        assert response.json()["order"]["order_status"] == "cancelled"
        stock = (await api_client.get("/items/surround-1")).json()
        assert stock["stock_count"] == 2


class TestInventoryEndpoints:
    async def test_check_inventory(self, api_client):
        response = await api_client.post(
            "/check_inventory", json={"lines": [{"product_id": "fire-1", "quantity": 6}, {"product_id": "surround-1", "quantity": 1}]}
        )

        body = response.json()
        assert body["all_available"] is False
        assert [line["reason"] for line in body["lines"]] == ["insufficient_stock", None]

    async def test_delete_missing_product(self, api_client):
        response = await api_client.delete("/items/ghost")

        assert response.status_code == 404
        assert response.json()["code"] == "PRODUCT_NOT_FOUND"


class TestPricingEndpoint:
    async def test_calculate_price(self, api_client):
        response = await api_client.post(
            "/calculate_price",
            json={
                "items": [
                    {"item_id": "fire-1", "quantity": 2, "price": "100.00"},
                    {"item_id": "surround-1", "quantity": 1, "price": "25.50"},
                ],
                "shipping_amount": "10.00",
                "discount_amount": "5.00",
            },
        )

        assert Decimal(response.json()["final_total"]) == Decimal("230.50")


class TestSettlementBackfillEndpoint:
    async def test_backfill(self, api_client, order_payload):
        await _create(api_client, order_payload, paymentStatus="paid")

        response = await api_client.post("/admin/settlements/backfill")

        assert response.json() == {"total": 1, "processed": 1, "failed": 0, "errors": []}
