"""
Order store: durable order records, line items, and the webhook bookkeeping
tables. Functions flush but never commit; callers own the transaction.
"""
import random
import string
import time
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
import logging

from shared.exceptions import DuplicateReferenceError, StaleOrderError
from . import models
from .statuses import OrderStatus, PaymentStatus, order_predecessors

logger = logging.getLogger(__name__)

_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


def generate_order_number() -> str:
    """ORD-<epoch millis>-<9 random chars>. Unique in practice, not guaranteed."""
    suffix = "".join(random.choices(_ORDER_NUMBER_ALPHABET, k=9))
    return f"ORD-{int(time.time() * 1000)}-{suffix}"


def _with_items():
    return selectinload(models.Order.line_items).selectinload(models.OrderLineItem.product)


async def create_order_header(
    db: AsyncSession,
    *,
    customer_email: str,
    customer_name: str,
    customer_phone: str | None,
    shipping_address,
    billing_address,
    subtotal: Decimal,
    tax_amount: Decimal,
    shipping_amount: Decimal,
    discount_amount: Decimal,
    total_amount: Decimal,
    payment_reference: str,
    payment_status: str = PaymentStatus.PENDING.value,
    order_status: str = OrderStatus.PENDING.value,
    delivery_quote_required: bool = False,
    delivery_distance_miles: Decimal | None = None,
) -> models.Order:
    if await get_order_by_reference(db, payment_reference) is not None:
        raise DuplicateReferenceError(payment_reference)

    order = models.Order(
        order_number=generate_order_number(),
        customer_email=customer_email,
        customer_name=customer_name,
        customer_phone=customer_phone,
        shipping_address=shipping_address,
        billing_address=billing_address,
        subtotal=subtotal,
        tax_amount=tax_amount,
        shipping_amount=shipping_amount,
        discount_amount=discount_amount,
        total_amount=total_amount,
        gateway_payment_reference=payment_reference,
        payment_status=payment_status,
        order_status=order_status,
        delivery_quote_required=delivery_quote_required,
        delivery_distance_miles=delivery_distance_miles,
        version=1,
    )
    db.add(order)
    try:
        await db.flush()
    except IntegrityError as e:
        # Lost a race with another intake for the same reference
        logger.warning(f"Insert of order for reference {payment_reference} hit integrity error: {e}")
        raise DuplicateReferenceError(payment_reference) from e
    logger.info(f"Created order header {order.id} ({order.order_number}) for reference {payment_reference}")
    return order


async def add_line_items(db: AsyncSession, order: models.Order, lines) -> list[models.OrderLineItem]:
    """Persists priced lines (item_id, quantity, unit_price, total_price) in order."""
    items = [
        models.OrderLineItem(
            order_id=order.id,
            position=position,
            product_id=line.item_id,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=line.total_price,
        )
        for position, line in enumerate(lines)
    ]
    db.add_all(items)
    await db.flush()
    return items


async def get_order(db: AsyncSession, order_id: str) -> models.Order | None:
    stmt = (
        select(models.Order)
        .where(models.Order.id == order_id)
        .options(_with_items())
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def get_order_by_reference(db: AsyncSession, payment_reference: str) -> models.Order | None:
    stmt = (
        select(models.Order)
        .where(models.Order.gateway_payment_reference == payment_reference)
        .options(_with_items())
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalars().first()


async def list_orders(db: AsyncSession, status: str | None = None, limit: int = 50, offset: int = 0) -> list[models.Order]:
    stmt = (
        select(models.Order)
        .options(_with_items())
        .order_by(models.Order.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if status and status != "all":
        stmt = stmt.where(models.Order.order_status == status)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_paid_orders_missing_settlement(db: AsyncSession) -> list[models.Order]:
    stmt = (
        select(models.Order)
        .where(
            models.Order.payment_status == PaymentStatus.PAID.value,
            models.Order.gateway_payment_reference.is_not(None),
            models.Order.net_amount_received.is_(None),
        )
        .order_by(models.Order.created_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def apply_payment_outcome(
    db: AsyncSession,
    order_id: str,
    payment_status: str,
    order_status: str | None,
    net_amount_received: Decimal | None = None,
    processor_fee: Decimal | None = None,
) -> bool:
    """
    Moves a pending payment to its outcome in one conditional update.

    With ``order_status`` the order moves too, but only from a status that may
    legally reach it; with None the order status is left alone. Returns False
    when no row matched, so a racing admin write or a redelivered event cannot
    push either state machine backwards.
    """
    values = {
        "payment_status": payment_status,
        "version": models.Order.version + 1,
        "updated_at": datetime.now(timezone.utc),
    }
    conditions = [
        models.Order.id == order_id,
        models.Order.payment_status == PaymentStatus.PENDING.value,
    ]
    if order_status is not None:
        values["order_status"] = order_status
        conditions.append(models.Order.order_status.in_(order_predecessors(order_status)))
    if net_amount_received is not None:
        values["net_amount_received"] = net_amount_received
        values["processor_fee"] = processor_fee

    stmt = (
        update(models.Order)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


async def set_order_status(db: AsyncSession, order: models.Order, order_status: str) -> None:
    """Version-checked order status write for collaborators such as the admin surface."""
    stmt = (
        update(models.Order)
        .where(models.Order.id == order.id, models.Order.version == order.version)
        .values(
            order_status=order_status,
            version=models.Order.version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    if result.rowcount != 1:
        raise StaleOrderError(order.id)


async def set_settlement(db: AsyncSession, order_id: str, net_amount_received: Decimal, processor_fee: Decimal) -> bool:
    stmt = (
        update(models.Order)
        .where(models.Order.id == order_id)
        .values(
            net_amount_received=net_amount_received,
            processor_fee=processor_fee,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    result = await db.execute(stmt)
    return result.rowcount == 1


# --- Webhook bookkeeping ---

async def is_event_processed(db: AsyncSession, event_id: str) -> bool:
    result = await db.execute(
        select(models.ProcessedWebhookEvent.event_id).where(models.ProcessedWebhookEvent.event_id == event_id)
    )
    return result.first() is not None


async def mark_event_processed(db: AsyncSession, event_id: str, event_type: str, payment_reference: str | None) -> None:
    """Adds the event to the processed set; raises IntegrityError if it is already there."""
    db.add(models.ProcessedWebhookEvent(
        event_id=event_id,
        event_type=event_type,
        payment_reference=payment_reference,
    ))
    await db.flush()


async def save_pending_reconciliation(db: AsyncSession, event_id: str, event_type: str, payment_reference: str) -> models.PendingReconciliation:
    pending = await db.get(models.PendingReconciliation, event_id)
    if pending is None:
        pending = models.PendingReconciliation(
            event_id=event_id,
            event_type=event_type,
            payment_reference=payment_reference,
            attempts=0,
        )
        db.add(pending)
    pending.attempts = (pending.attempts or 0) + 1
    pending.last_attempt_at = datetime.now(timezone.utc)
    await db.flush()
    return pending


async def list_pending_reconciliations(
    db: AsyncSession,
    payment_reference: str | None = None,
    max_attempts: int | None = None,
    limit: int = 100,
) -> list[models.PendingReconciliation]:
    stmt = select(models.PendingReconciliation).order_by(models.PendingReconciliation.received_at).limit(limit)
    if payment_reference is not None:
        stmt = stmt.where(models.PendingReconciliation.payment_reference == payment_reference)
    if max_attempts is not None:
        stmt = stmt.where(models.PendingReconciliation.attempts < max_attempts)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def delete_pending_reconciliation(db: AsyncSession, event_id: str) -> None:
    await db.execute(
        delete(models.PendingReconciliation).where(models.PendingReconciliation.event_id == event_id)
    )
