from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from contextlib import asynccontextmanager
import asyncio
import logging

from inventory_service.api import router as inventory_router
from inventory_service.database import create_tables, dispose_engine, get_db_session
from pricing_service.api import router as pricing_router
from shared.exceptions import OrderNotFoundError, OrderPipelineError
from . import config, crud, kafka_client, schemas, status_cache
from .admin import OrderAdminService
from .intake import OrderIntakeService
from .notifications import NotificationDispatcher
from .reconciliation import PaymentReconciliationService

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

# --- Services ---
dispatcher = NotificationDispatcher()
reconciliation_service = PaymentReconciliationService(dispatcher=dispatcher)
intake_service = OrderIntakeService(dispatcher=dispatcher, reconciler=reconciliation_service)
admin_service = OrderAdminService(dispatcher=dispatcher)


def get_intake_service() -> OrderIntakeService:
    return intake_service


def get_reconciliation_service() -> PaymentReconciliationService:
    return reconciliation_service


def get_admin_service() -> OrderAdminService:
    return admin_service


# --- Global variables ---
pending_sweeper_task = None


async def sweep_pending_reconciliations():
    """Periodically replays webhook events that arrived before their order."""
    logger.info(f"Pending reconciliation sweeper started (every {config.PENDING_SWEEP_INTERVAL_SECONDS:g}s)")
    while True:
        await asyncio.sleep(config.PENDING_SWEEP_INTERVAL_SECONDS)
        try:
            resolved = await reconciliation_service.sweep_pending()
            if resolved:
                logger.info(f"Sweeper resolved {resolved} pending reconciliation(s)")
        except Exception as e:
            logger.exception(f"Pending reconciliation sweep failed: {e}")


# --- FastAPI Lifespan Events ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    global pending_sweeper_task
    logger.info("Application startup...")
    await create_tables()

    logger.info("Starting pending reconciliation sweeper task...")
    loop = asyncio.get_running_loop()
    pending_sweeper_task = loop.create_task(sweep_pending_reconciliations())

    yield # Application runs here

    logger.info("Application shutdown...")
    if pending_sweeper_task:
        logger.info("Cancelling sweeper task...")
        pending_sweeper_task.cancel()
        try:
            await pending_sweeper_task
        except asyncio.CancelledError:
            logger.info("Sweeper task cancelled.")
        except Exception as e:
            logger.error(f"Exception during sweeper task shutdown: {e}")

    # Cleanup resources
    await kafka_client.stop_kafka_producer()
    await status_cache.close_redis_pool()
    await dispose_engine()


# --- FastAPI App ---
app = FastAPI(
    title="Storefront Order Service",
    description="Order intake with server-side price validation and stock decrement, payment webhook reconciliation, and transactional email.",
    version="0.1.0",
    lifespan=lifespan
)
app.include_router(inventory_router)
app.include_router(pricing_router)


@app.exception_handler(OrderPipelineError)
async def order_pipeline_error_handler(request: Request, exc: OrderPipelineError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} - {exc.message}")
    else:
        logger.warning(f"{request.method} {request.url.path} rejected: {exc.code} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "code": exc.code})


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg", "Invalid request"))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message, "code": "VALIDATION_ERROR"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "code": "INTERNAL_ERROR"})


@app.get("/health", summary="Health Check", tags=["Monitoring"])
async def health_check():
    return {"status": "ok"}


@app.post(
    "/orders",
    response_model=schemas.OrderEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Create Order",
    tags=["Orders"]
)
async def create_order_endpoint(
    request_data: schemas.CreateOrderRequest,
    service: OrderIntakeService = Depends(get_intake_service)
):
    """
    Creates an order from the checkout payload. Prices are re-read from the
    catalog and stock is decremented atomically; the submitted total must match.
    """
    order = await service.create_order(request_data)
    return {"order": order}


@app.post("/payments/webhook", response_model=schemas.WebhookAck, summary="Payment Gateway Webhook", tags=["Payments"])
async def payment_webhook_endpoint(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    service: PaymentReconciliationService = Depends(get_reconciliation_service)
):
    """Receives Stripe events. The raw body is needed for signature verification."""
    payload = await request.body()
    outcome = await service.handle_webhook(payload, stripe_signature)
    return schemas.WebhookAck(received=True, status=outcome)


@app.get("/orders", response_model=schemas.OrderList, summary="List Orders", tags=["Orders"])
async def list_orders_endpoint(
    order_status: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db_session)
):
    orders = await crud.list_orders(db, status=order_status, limit=limit, offset=offset)
    return {"orders": orders}


@app.get("/orders/{order_id}", response_model=schemas.OrderEnvelope, summary="Get Order", tags=["Orders"])
async def get_order_endpoint(order_id: str, db: AsyncSession = Depends(get_db_session)):
    order = await crud.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return {"order": order}


@app.patch("/orders/{order_id}/status", response_model=schemas.OrderEnvelope, summary="Update Order Status", tags=["Orders"])
async def update_order_status_endpoint(
    order_id: str,
    request_data: schemas.UpdateOrderStatusRequest,
    service: OrderAdminService = Depends(get_admin_service)
):
    order = await service.update_order_status(order_id, request_data)
    return {"order": order}


@app.get("/orders/{order_id}/status", summary="Get Order Status from Cache", tags=["Orders"], response_model=dict)
async def get_order_status_endpoint(order_id: str):
    """Retrieves the latest cached statuses of an order from Redis."""
    status_info = await status_cache.get_order_status(order_id)
    if status_info:
        return status_info
    else:
        raise HTTPException(status_code=404, detail=f"Status not found for order {order_id}")


@app.post(
    "/admin/settlements/backfill",
    response_model=schemas.SettlementBackfillResult,
    summary="Backfill Settlement Data",
    tags=["Payments"]
)
async def backfill_settlements_endpoint(
    service: PaymentReconciliationService = Depends(get_reconciliation_service)
):
    """Fetches net amount and processor fee for paid orders that are missing them."""
    return await service.backfill_settlements()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("order_manager.main:app", host=config.APP_HOST, port=config.APP_PORT)
