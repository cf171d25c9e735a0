"""Pytest fixtures for the storefront order service tests."""

import hashlib
import hmac
import json
import os
import time
from decimal import Decimal
from unittest.mock import AsyncMock

# Must be set before the service modules read their config
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["RESEND_API_KEY"] = ""
os.environ["GOOGLE_GEOCODING_API_KEY"] = ""

import httpx
import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from inventory_service.database import Base
from inventory_service.models import Product
from order_manager import kafka_client, models, status_cache  # noqa: F401 (registers tables)
from order_manager.delivery import DeliveryGeocoder
from order_manager.gateway import StripeGateway
from order_manager.intake import OrderIntakeService
from order_manager.notifications import NotificationDispatcher
from order_manager.reconciliation import PaymentReconciliationService

WEBHOOK_SECRET = "whsec_test_secret"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session_factory(tmp_path, anyio_backend):
    """File-backed SQLite store, so concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    # Writers queue on the busy timeout instead of deadlocking on lock upgrade
    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def products(session_factory):
    """Two catalog products: a fire at 100.00 (5 in stock) and a surround at 25.50 (2 in stock)."""
    async with session_factory() as db:
        db.add_all([
            Product(id="fire-1", name="Electric Fire", price=Decimal("100.00"), stock_count=5, in_stock=True),
            Product(id="surround-1", name="Oak Surround", price=Decimal("25.50"), stock_count=2, in_stock=True),
        ])
        await db.commit()


@pytest.fixture(autouse=True)
def published(monkeypatch):
    """Replaces Kafka and Redis with mocks; returns the Kafka send mock."""
    send = AsyncMock()
    monkeypatch.setattr(kafka_client, "send_message", send)
    monkeypatch.setattr(status_cache, "set_order_status", AsyncMock())
    return send


@pytest.fixture
def email_outbox():
    """Every payload POSTed to the email provider, in order."""
    return []


@pytest.fixture
async def dispatcher(email_outbox, anyio_backend):
    def handler(request: httpx.Request) -> httpx.Response:
        email_outbox.append(json.loads(request.content))
        return httpx.Response(200, json={"id": f"msg_{len(email_outbox)}"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield NotificationDispatcher(client=client, api_key="re_test", min_interval_seconds=0)


@pytest.fixture
def settlement_data():
    """Balance transaction returned by the fake Stripe API, in minor units."""
    return {"amount": 12550, "net": 12343, "fee": 207}


@pytest.fixture
def stripe_requests():
    return []


@pytest.fixture
async def gateway(settlement_data, stripe_requests, anyio_backend):
    def handler(request: httpx.Request) -> httpx.Response:
        stripe_requests.append(request.url.path)
        path = request.url.path
        if path.startswith("/v1/payment_intents/"):
            return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "latest_charge": "ch_1"})
        if path == "/v1/charges/ch_1":
            return httpx.Response(200, json={"id": "ch_1", "balance_transaction": "txn_1"})
        if path == "/v1/balance_transactions/txn_1":
            return httpx.Response(200, json={"id": "txn_1", **settlement_data})
        return httpx.Response(404, json={"error": {"message": "No such object"}})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield StripeGateway(
            client=client,
            api_key="sk_test",
            base_url="https://stripe.test",
            retry_attempts=3,
            retry_backoff_seconds=0,
        )


@pytest.fixture
def reconciliation_service(session_factory, gateway, dispatcher):
    return PaymentReconciliationService(
        session_factory=session_factory,
        gateway=gateway,
        dispatcher=dispatcher,
        webhook_secret=WEBHOOK_SECRET,
        lookup_attempts=2,
        lookup_delay_seconds=0,
    )


@pytest.fixture
def intake_service(session_factory, dispatcher, reconciliation_service):
    return OrderIntakeService(
        session_factory=session_factory,
        dispatcher=dispatcher,
        geocoder=DeliveryGeocoder(api_key=""),
        reconciler=reconciliation_service,
    )


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Builds a Stripe-Signature header value for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


@pytest.fixture
def webhook():
    """Returns a builder for signed (payload, signature) webhook deliveries."""

    def build(event_id: str, event_type: str, reference: str, secret: str = WEBHOOK_SECRET):
        payload = json.dumps({
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": {"id": reference, "object": "payment_intent"}},
        }).encode("utf-8")
        return payload, sign(payload, secret)

    return build


@pytest.fixture
def order_payload():
    """Returns a builder for the storefront's camelCase checkout payload."""

    def build(reference: str = "pi_123", **overrides) -> dict:
        payload = {
            "customerEmail": "jane@example.com",
            "customerName": "Jane Doe",
            "customerPhone": "07700 900000",
            "shippingAddress": {
                "line1": "1 High Street",
                "city": "Southend-on-Sea",
                "postal_code": "SS1 1AA",
                "country": "GB",
            },
            "items": [
                {"id": "fire-1", "quantity": 1, "price": 100.0},
                {"id": "surround-1", "quantity": 1, "price": 25.5},
            ],
            "subtotal": "125.50",
            "taxAmount": "0",
            "shippingAmount": "0",
            "discountAmount": "0",
            "totalAmount": "125.50",
            "stripePaymentIntentId": reference,
        }
        payload.update(overrides)
        return payload

    return build


@pytest.fixture
def signer():
    """Returns sign(payload, secret=WEBHOOK_SECRET, timestamp=None)."""
    return sign


@pytest.fixture
def webhook_secret():
    return WEBHOOK_SECRET
