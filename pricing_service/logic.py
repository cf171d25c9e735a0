from decimal import Decimal, ROUND_HALF_UP
from shared.exceptions import TotalMismatchError, ValidationError
from . import schemas, config # Use relative import within the package
import logging

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def quantize(amount) -> Decimal:
    return Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    """Converts a major-unit amount (e.g. 12.34) to gateway minor units (1234)."""
    return int((Decimal(str(amount)) * config.MINOR_UNITS_PER_MAJOR).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return quantize(Decimal(amount) / config.MINOR_UNITS_PER_MAJOR)


def calculate_final_price(request: schemas.PriceCalculationRequest) -> schemas.PriceCalculationResponse:
    """
    Prices each line at its authoritative unit price and computes
    subtotal + shipping + tax - discount.
    """
    logger.info(f"Calculating price for order_id: {request.order_id}")

    lines = [
        schemas.PricedLine(
            item_id=item.item_id,
            quantity=item.quantity,
            unit_price=quantize(item.price),
            total_price=quantize(item.price * item.quantity),
        )
        for item in request.items
    ]
    base_total = sum((line.total_price for line in lines), Decimal("0"))
    gross = base_total + request.shipping_amount + request.tax_amount
    if request.discount_amount > gross:
        logger.warning(f"Order {request.order_id}: discount {request.discount_amount:.2f} exceeds order value {gross:.2f}")
        raise ValidationError(
            f"Discount {request.discount_amount:.2f} exceeds the order value {gross:.2f}", field="discount_amount"
        )
    final_total = quantize(gross - request.discount_amount)

    logger.info(
        f"Order {request.order_id}: Price calculated - Base: {base_total:.2f}, Shipping: {request.shipping_amount:.2f}, "
        f"Tax: {request.tax_amount:.2f}, Discount: {request.discount_amount:.2f}, Final: {final_total:.2f}"
    )

    return schemas.PriceCalculationResponse(
        order_id=request.order_id,
        lines=lines,
        base_total=quantize(base_total),
        shipping_amount=quantize(request.shipping_amount),
        tax_amount=quantize(request.tax_amount),
        discount_applied=quantize(request.discount_amount),
        final_total=final_total,
    )


def validate_submitted_total(request: schemas.PriceCalculationRequest, submitted_total) -> schemas.PriceCalculationResponse:
    """
    Recomputes the order total from authoritative prices and raises
    TotalMismatchError if the client's total differs by more than the tolerance.
    """
    priced = calculate_final_price(request)
    submitted = Decimal(str(submitted_total))
    if abs(submitted - priced.final_total) > config.TOTAL_TOLERANCE:
        logger.warning(f"Order {request.order_id}: submitted total {submitted} does not match expected {priced.final_total}")
        raise TotalMismatchError(submitted, priced.final_total)
    return priced
