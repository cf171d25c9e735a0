"""Tests for email rendering and the Resend-backed dispatcher."""

import json
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from order_manager.notifications import NotificationDispatcher
from order_manager.templates import NotificationKind, format_address, render


def _order(**overrides):
    """Helper: an order snapshot with the attributes the templates read."""
    fields = {
        "order_number": "ORD-1700000000000-ABC123XYZ",
        "customer_email": "jane@example.com",
        "customer_name": "Jane <Doe>",
        "customer_phone": None,
        "shipping_address": {"line1": "1 High Street", "city": "Southend-on-Sea", "postal_code": "SS1 1AA"},
        "billing_address": None,
        "line_items": [
            SimpleNamespace(product_name="Electric Fire", quantity=2, unit_price=Decimal("100.00"), total_price=Decimal("200.00")),
        ],
        "shipping_amount": Decimal("10.00"),
        "tax_amount": Decimal("0"),
        "discount_amount": Decimal("5.00"),
        "total_amount": Decimal("205.00"),
        "delivery_quote_required": False,
        "delivery_distance_miles": None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestFormatAddress:
    def test_structured(self):
        assert format_address({"line1": "1 High St", "city": "Leigh", "postal_code": "SS9"}) == "1 High St<br>Leigh<br>SS9"

    def test_json_string(self):
        assert format_address(json.dumps({"line1": "1 High St", "country": "GB"}), separator=", ") == "1 High St, GB"

    def test_free_form_is_escaped(self):
        assert format_address("Flat <1>, Leigh") == "Flat &lt;1&gt;, Leigh"

    def test_unescaped_for_plain_text(self):
        assert format_address({"line1": "A & B Mews"}, escape=False) == "A & B Mews"

    @pytest.mark.parametrize("address", [None, "", {}, {"line2": None}])
    def test_missing(self, address):
        assert format_address(address) == "Address not provided"


class TestRender:
    def test_confirmation(self):
        message = render(NotificationKind.CONFIRMATION, _order())

        assert message.to == "jane@example.com"
        assert message.subject == "Order Confirmation - ORD-1700000000000-ABC123XYZ"
        assert "Electric Fire" in message.html
        assert "£200.00" in message.html  # subtotal from line totals
        assert "-£5.00" in message.html
        assert "£205.00" in message.html
        assert "Jane &lt;Doe&gt;" in message.html

    def test_merchant_notification_goes_to_shop(self):
        message = render(NotificationKind.MERCHANT_NOTIFICATION, _order())

        assert message.to != "jane@example.com"
        assert message.subject == "New Order: ORD-1700000000000-ABC123XYZ - £205.00"
        assert "Not provided" in message.html

    def test_delivery_quote_note(self):
        order = _order(delivery_quote_required=True, delivery_distance_miles=Decimal("34.2"))

        customer = render(NotificationKind.CONFIRMATION, order)
        merchant = render(NotificationKind.MERCHANT_NOTIFICATION, order)

        assert "34.2 miles away" in customer.html
        assert "provide a quote" in merchant.html

    def test_cancellation_includes_message(self):
        message = render(NotificationKind.CANCELLED, _order(), message="Out of stock <sorry>")

        assert message.subject == "Order Cancelled - ORD-1700000000000-ABC123XYZ"
        assert "Out of stock &lt;sorry&gt;" in message.html


@pytest.mark.anyio
class TestNotificationDispatcher:
    async def test_send_posts_once(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={"id": "msg_1"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = NotificationDispatcher(client=client, api_key="re_test", from_email="shop@example.com")
            result = await dispatcher.send(NotificationKind.PROCESSING, _order())

        assert result.ok
        assert result.message_id == "msg_1"
        assert len(requests) == 1
        assert requests[0].headers["Authorization"] == "Bearer re_test"
        body = json.loads(requests[0].content)
        assert body["from"] == "shop@example.com"
        assert body["subject"] == "Payment Processing - ORD-1700000000000-ABC123XYZ"

    async def test_invalid_recipient(self):
        handler = AsyncMock()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = NotificationDispatcher(client=client, api_key="re_test")
            result = await dispatcher.send(NotificationKind.CONFIRMATION, _order(customer_email="not-an-email"))

        assert result.error == "Invalid email address"
        handler.assert_not_called()

    async def test_unconfigured(self):
        result = await NotificationDispatcher(api_key="").send(NotificationKind.CONFIRMATION, _order())

        assert result.error == "Email service not configured"

    async def test_provider_error_is_returned(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(429, text="slow down"))) as client:
            result = await NotificationDispatcher(client=client, api_key="re_test").send(NotificationKind.DELIVERED, _order())

        assert not result.ok
        assert "429" in result.error

    async def test_network_error_is_returned(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await NotificationDispatcher(client=client, api_key="re_test").send(NotificationKind.DELIVERED, _order())

        assert "connection error" in result.error

    async def test_sequence_is_ordered_and_spaced(self):
        subjects = []

        def handler(request):
            subjects.append(json.loads(request.content)["subject"])
            return httpx.Response(200, json={"id": "msg"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            dispatcher = NotificationDispatcher(client=client, api_key="re_test", min_interval_seconds=0.6)
            with patch("order_manager.notifications.asyncio.sleep", new=AsyncMock()) as sleep:
                results = await dispatcher.send_sequence(
                    [NotificationKind.CONFIRMATION, NotificationKind.MERCHANT_NOTIFICATION], _order()
                )

        assert [r.kind for r in results] == [NotificationKind.CONFIRMATION, NotificationKind.MERCHANT_NOTIFICATION]
        assert subjects[0].startswith("Order Confirmation")
        assert subjects[1].startswith("New Order")
        sleep.assert_awaited_once_with(0.6)
