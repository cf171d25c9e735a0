import logging

from inventory_service import crud as inventory_crud
from inventory_service.database import AsyncSessionFactory
from shared.exceptions import OrderNotFoundError
from . import crud, models, schemas
from .events import publish_order_status
from .notifications import NotificationDispatcher
from .statuses import OrderStatus, check_order_transition
from .templates import NotificationKind

logger = logging.getLogger(__name__)

STATUS_NOTIFICATIONS = {
    OrderStatus.SHIPPED: NotificationKind.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED: NotificationKind.DELIVERED,
    OrderStatus.CANCELLED: NotificationKind.CANCELLED,
}


class OrderAdminService:
    """Fulfilment-side status changes made by shop staff."""

    def __init__(self, session_factory=None, dispatcher: NotificationDispatcher | None = None) -> None:
        self._session_factory = session_factory or AsyncSessionFactory
        self._dispatcher = dispatcher or NotificationDispatcher()

    async def update_order_status(self, order_id: str, request: schemas.UpdateOrderStatusRequest) -> models.Order:
        """
        Moves an order along the fulfilment state machine.

        Cancelling with ``restock`` returns every line item's quantity to
        stock in the same transaction as the status write.

        Raises:
            OrderNotFoundError, InvalidTransitionError, StaleOrderError
        """
        target = OrderStatus(request.order_status)
        async with self._session_factory() as db:
            try:
                order = await crud.get_order(db, order_id)
                if order is None:
                    raise OrderNotFoundError(order_id)
                check_order_transition(order.order_status, target.value)

                await crud.set_order_status(db, order, target.value)
                if target is OrderStatus.CANCELLED and request.restock:
                    for item in order.line_items:
                        await inventory_crud.restore_stock(db, item.product_id, item.quantity)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info(f"Order {order_id} status changed to {target.value}")
        async with self._session_factory() as db:
            order = await crud.get_order(db, order_id)

        kind = STATUS_NOTIFICATIONS.get(target)
        if request.notify and kind is not None:
            await self._dispatcher.notify([kind], order, request.message)
        await publish_order_status(order, {"source": "admin"})
        return order
