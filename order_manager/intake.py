"""
Order intake: turns a checkout submission into a persisted order.

Pricing, the order header, line items and stock decrements are written in one
database transaction, so a rejected submission leaves nothing behind.
Notifications, pending webhook replay and status publishing happen after the
commit and never fail the intake.
"""
import logging

from inventory_service import crud as inventory_crud
from inventory_service.database import AsyncSessionFactory
from pricing_service import logic as pricing_logic
from pricing_service.schemas import PriceCalculationRequest, PricingItem
from shared.exceptions import ProductNotFoundError, ValidationError
from . import crud, models, schemas
from .delivery import DeliveryGeocoder
from .events import publish_order_status
from .notifications import NotificationDispatcher
from .statuses import OrderStatus, PaymentStatus
from .templates import NotificationKind

logger = logging.getLogger(__name__)


def _address_value(address):
    if isinstance(address, schemas.Address):
        return address.model_dump(exclude_none=True)
    return address


class OrderIntakeService:
    def __init__(
        self,
        session_factory=None,
        dispatcher: NotificationDispatcher | None = None,
        geocoder: DeliveryGeocoder | None = None,
        reconciler=None,
    ) -> None:
        self._session_factory = session_factory or AsyncSessionFactory
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._geocoder = geocoder or DeliveryGeocoder()
        # PaymentReconciliationService; replays webhooks that beat the order
        self._reconciler = reconciler

    async def create_order(self, request: schemas.CreateOrderRequest) -> models.Order:
        """
        Creates an order from a checkout submission.

        Raises:
            ProductNotFoundError: a cart item references an unknown product.
            TotalMismatchError: the submitted total disagrees with catalog prices.
            DuplicateReferenceError: the payment reference belongs to another order.
            InsufficientStockError: a conditional decrement was refused.
            ValidationError: the shipping address is blank.
        """
        shipping_address = _address_value(request.shipping_address)
        billing_address = _address_value(request.billing_address)
        if isinstance(shipping_address, str) and not shipping_address.strip():
            raise ValidationError("Shipping address is required", field="shipping_address")
        paid = request.payment_status == PaymentStatus.PAID.value
        reference = request.payment_reference

        logger.info(f"Received order for reference {reference} with {len(request.items)} item(s)")
        assessment = await self._geocoder.assess(shipping_address)

        async with self._session_factory() as db:
            try:
                products = {
                    product.id: product
                    for product in await inventory_crud.get_products(db, [item.id for item in request.items])
                }
                for item in request.items:
                    if item.id not in products:
                        raise ProductNotFoundError(item.id)

                pricing_request = PriceCalculationRequest(
                    order_id=reference,
                    items=[
                        PricingItem(item_id=item.id, quantity=item.quantity, price=products[item.id].price)
                        for item in request.items
                    ],
                    shipping_amount=request.shipping_amount,
                    tax_amount=request.tax_amount,
                    discount_amount=request.discount_amount,
                )
                priced = pricing_logic.validate_submitted_total(pricing_request, request.total_amount)

                order = await crud.create_order_header(
                    db,
                    customer_email=request.customer_email,
                    customer_name=request.customer_name,
                    customer_phone=request.customer_phone,
                    shipping_address=shipping_address,
                    billing_address=billing_address,
                    subtotal=priced.base_total,
                    tax_amount=priced.tax_amount,
                    shipping_amount=priced.shipping_amount,
                    discount_amount=priced.discount_applied,
                    total_amount=priced.final_total,
                    payment_reference=reference,
                    payment_status=PaymentStatus.PAID.value if paid else PaymentStatus.PENDING.value,
                    order_status=OrderStatus.PROCESSING.value if paid else OrderStatus.PENDING.value,
                    delivery_quote_required=assessment.quote_required if assessment else False,
                    delivery_distance_miles=assessment.distance_miles if assessment else None,
                )
                await crud.add_line_items(db, order, priced.lines)
                for line in priced.lines:
                    await inventory_crud.decrement_stock(db, line.item_id, line.quantity)

                await db.commit()
                order_id = order.id
            except Exception as e:
                await db.rollback()
                logger.warning(f"Order intake for reference {reference} rolled back: {e}")
                raise

        logger.info(f"Order {order_id} committed for reference {reference}")
        order = await self._load(order_id)

        kinds = [NotificationKind.PROCESSING]
        if paid:
            kinds += [NotificationKind.CONFIRMATION, NotificationKind.MERCHANT_NOTIFICATION]
        await self._dispatcher.notify(kinds, order)

        if self._reconciler is not None:
            try:
                replayed = await self._reconciler.replay_pending(reference)
            except Exception as e:
                logger.exception(f"Replay of pending webhooks for reference {reference} failed: {e}")
                replayed = 0
            if replayed:
                order = await self._load(order_id)

        await publish_order_status(order, {"source": "intake", "total_amount": order.total_amount})
        return order

    async def _load(self, order_id: str) -> models.Order:
        async with self._session_factory() as db:
            return await crud.get_order(db, order_id)

