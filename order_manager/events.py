import logging
import time

from . import config, kafka_client, schemas, status_cache

logger = logging.getLogger(__name__)


async def publish_order_status(order, details: dict | None = None) -> None:
    """Publishes the order's current statuses to Kafka and caches them in Redis. Best effort."""
    details = details or {}
    status_event = schemas.OrderStatusUpdateEvent(
        order_id=order.id,
        order_number=order.order_number,
        payment_status=order.payment_status,
        order_status=order.order_status,
        timestamp=time.time(),
        details=details,
    )
    await kafka_client.send_message(config.ORDER_STATUS_UPDATE_TOPIC, status_event.model_dump(), key=order.id)
    await status_cache.set_order_status(order.id, order.payment_status, order.order_status, details)
    logger.debug(f"Published status {order.payment_status}/{order.order_status} for order {order.id}")
