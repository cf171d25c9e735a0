"""
Payment reconciliation: applies gateway webhook outcomes to orders.

Each gateway event produces side effects at most once. The event id is
recorded in the same transaction as the status write, and the status write
itself only applies while the payment is still pending. Events that arrive
before their order has been committed are parked in pending_reconciliations
and replayed by intake or by the background sweeper.
"""
import asyncio
import logging

from sqlalchemy.exc import IntegrityError

from inventory_service.database import AsyncSessionFactory
from pricing_service.logic import to_minor_units
from shared.exceptions import ExternalServiceError, SignatureError
from . import config, crud, models, schemas
from .events import publish_order_status
from .gateway import (
    HANDLED_EVENT_TYPES,
    PAYMENT_SUCCEEDED,
    GatewayEvent,
    StripeGateway,
    verify_webhook,
)
from .notifications import NotificationDispatcher
from .statuses import OrderStatus, PaymentStatus, can_transition_order, can_transition_payment
from .templates import NotificationKind

logger = logging.getLogger(__name__)

# Outcomes reported back to the webhook caller
APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"
PENDING = "pending"
REFUSED = "refused"


class PaymentReconciliationService:
    def __init__(
        self,
        session_factory=None,
        gateway: StripeGateway | None = None,
        dispatcher: NotificationDispatcher | None = None,
        webhook_secret: str | None = None,
        lookup_attempts: int | None = None,
        lookup_delay_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory or AsyncSessionFactory
        self._gateway = gateway or StripeGateway()
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._webhook_secret = webhook_secret
        self._lookup_attempts = config.ORDER_LOOKUP_ATTEMPTS if lookup_attempts is None else lookup_attempts
        self._lookup_delay = config.ORDER_LOOKUP_DELAY_SECONDS if lookup_delay_seconds is None else lookup_delay_seconds

    async def handle_webhook(self, payload: bytes, signature: str | None) -> str:
        """
        Verifies and processes one webhook delivery. Returns the outcome.

        Raises SignatureError before touching any state if the delivery is not
        authentic. Every authentic delivery is acknowledged, including ones
        that are ignored, duplicated or parked for later.
        """
        event = verify_webhook(payload, signature, self._webhook_secret)
        if event.type not in HANDLED_EVENT_TYPES:
            logger.info(f"Ignoring webhook event {event.id} of type {event.type}")
            return IGNORED
        if not event.payment_reference:
            raise SignatureError("Invalid payload")

        logger.info(f"Received {event.type} event {event.id} for reference {event.payment_reference}")
        return await self.process_event(event)

    async def process_event(self, event: GatewayEvent, wait_for_order: bool = True) -> str:
        async with self._session_factory() as db:
            if await crud.is_event_processed(db, event.id):
                logger.info(f"Event {event.id} already processed - skipping")
                return DUPLICATE

        order = await self._find_order(event.payment_reference, wait_for_order)
        if order is None:
            await self._park(event)
            return PENDING

        succeeded = event.type == PAYMENT_SUCCEEDED
        target_payment = PaymentStatus.PAID if succeeded else PaymentStatus.FAILED
        target_order = OrderStatus.PROCESSING if succeeded else OrderStatus.CANCELLED
        transition_allowed = can_transition_payment(order.payment_status, target_payment.value)

        settlement = None
        if succeeded and order.net_amount_received is None and (
            transition_allowed or order.payment_status == PaymentStatus.PAID.value
        ):
            settlement = await self._gateway.fetch_settlement_with_retry(event.payment_reference)
            if settlement is not None and settlement.amount_charged_minor != to_minor_units(order.total_amount):
                logger.warning(
                    f"Order {order.id} total {order.total_amount} differs from the charged amount "
                    f"{settlement.amount_charged_minor} (minor units) for {event.payment_reference}"
                )

        async with self._session_factory() as db:
            try:
                await crud.mark_event_processed(db, event.id, event.type, event.payment_reference)
                applied = order_moved = settled = False
                if transition_allowed:
                    net = settlement.net_amount_received if settlement else None
                    fee = settlement.processor_fee if settlement else None
                    if can_transition_order(order.order_status, target_order.value):
                        order_moved = await crud.apply_payment_outcome(
                            db, order.id, target_payment.value, target_order.value, net, fee
                        )
                    # An admin already moved the order on: record the payment, keep the order status
                    applied = order_moved or await crud.apply_payment_outcome(
                        db, order.id, target_payment.value, None, net, fee
                    )
                elif settlement is not None:
                    # Paid at intake; the webhook only contributes the fee data
                    await crud.set_settlement(db, order.id, settlement.net_amount_received, settlement.processor_fee)
                    settled = True
                await crud.delete_pending_reconciliation(db, event.id)
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info(f"Event {event.id} was processed concurrently - skipping")
                return DUPLICATE
            except Exception as e:
                await db.rollback()
                logger.error(f"Failed to apply event {event.id} to order {order.id}: {e}")
                raise

        if applied and not order_moved:
            order = await self._load(order.id)
            logger.error(
                f"Event {event.id} recorded payment '{target_payment.value}' for order {order.id}, but the order is "
                f"'{order.order_status}' and cannot move to '{target_order.value}'. Manual follow-up required."
            )
            await publish_order_status(order, {"source": "webhook", "event_id": event.id})
            return APPLIED

        if settled:
            logger.info(f"Settlement data recorded for order {order.id} from event {event.id}")
            await publish_order_status(await self._load(order.id), {"source": "webhook", "event_id": event.id})
            return APPLIED

        if not applied:
            logger.warning(
                f"Event {event.id} refused: order {order.id} payment is '{order.payment_status}', "
                f"cannot move to '{target_payment.value}'"
            )
            return REFUSED

        logger.info(f"Order {order.id} moved to {target_payment.value}/{target_order.value} by event {event.id}")
        order = await self._load(order.id)
        if succeeded:
            kinds = [NotificationKind.CONFIRMATION, NotificationKind.MERCHANT_NOTIFICATION]
        else:
            kinds = [NotificationKind.PAYMENT_FAILED]
        await self._dispatcher.notify(kinds, order)
        await publish_order_status(order, {"source": "webhook", "event_id": event.id})
        return APPLIED

    async def replay_pending(self, payment_reference: str) -> int:
        """Replays events parked for a reference. Returns how many were resolved."""
        async with self._session_factory() as db:
            parked = await crud.list_pending_reconciliations(db, payment_reference=payment_reference)
        return await self._replay(parked)

    async def sweep_pending(self) -> int:
        """Replays every parked event that still has attempts left."""
        async with self._session_factory() as db:
            parked = await crud.list_pending_reconciliations(db, max_attempts=config.PENDING_MAX_ATTEMPTS)
        if parked:
            logger.info(f"Sweeping {len(parked)} pending reconciliation(s)")
        return await self._replay(parked)

    async def backfill_settlements(self) -> schemas.SettlementBackfillResult:
        """Retrieves fee data for paid orders that are still missing it."""
        async with self._session_factory() as db:
            orders = await crud.list_paid_orders_missing_settlement(db)

        result = schemas.SettlementBackfillResult(total=len(orders), processed=0, failed=0)
        logger.info(f"Backfilling settlement data for {len(orders)} order(s)")
        for order in orders:
            try:
                settlement = await self._gateway.retrieve_settlement(order.gateway_payment_reference)
            except ExternalServiceError as e:
                result.failed += 1
                result.errors.append(f"{order.order_number}: {e.message}")
                continue
            async with self._session_factory() as db:
                await crud.set_settlement(db, order.id, settlement.net_amount_received, settlement.processor_fee)
                await db.commit()
            result.processed += 1
        logger.info(f"Settlement backfill done: {result.processed} processed, {result.failed} failed")
        return result

    async def _replay(self, parked: list[models.PendingReconciliation]) -> int:
        resolved = 0
        for pending in parked:
            event = GatewayEvent(id=pending.event_id, type=pending.event_type, payment_reference=pending.payment_reference)
            outcome = await self.process_event(event, wait_for_order=False)
            if outcome != PENDING:
                resolved += 1
        return resolved

    async def _find_order(self, payment_reference: str, wait: bool) -> models.Order | None:
        attempts = self._lookup_attempts if wait else 1
        for attempt in range(1, attempts + 1):
            async with self._session_factory() as db:
                order = await crud.get_order_by_reference(db, payment_reference)
            if order is not None:
                return order
            if attempt < attempts:
                logger.info(f"No order yet for reference {payment_reference} (attempt {attempt}/{attempts})")
                await asyncio.sleep(self._lookup_delay)
        return None

    async def _park(self, event: GatewayEvent) -> None:
        async with self._session_factory() as db:
            try:
                pending = await crud.save_pending_reconciliation(db, event.id, event.type, event.payment_reference)
                await db.commit()
            except IntegrityError:
                await db.rollback()
                logger.info(f"Event {event.id} was parked concurrently")
                return
        if pending.attempts >= config.PENDING_MAX_ATTEMPTS:
            logger.error(
                f"Giving up on event {event.id}: no order for reference {event.payment_reference} "
                f"after {pending.attempts} attempts. Manual reconciliation required."
            )
        else:
            logger.error(
                f"No order found for reference {event.payment_reference}; event {event.id} "
                f"parked for replay (attempt {pending.attempts})"
            )

    async def _load(self, order_id: str) -> models.Order:
        async with self._session_factory() as db:
            return await crud.get_order(db, order_id)

