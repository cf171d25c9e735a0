from fastapi import APIRouter

from . import schemas, logic

router = APIRouter(tags=["Pricing"])


@router.post(
    "/calculate_price",
    response_model=schemas.PriceCalculationResponse,
    summary="Calculate Order Price"
)
async def calculate_price_endpoint(request_data: schemas.PriceCalculationRequest):
    """
    Receives order items (with authoritative price per item) and calculates
    the final price including shipping, tax and discount.
    """
    return logic.calculate_final_price(request_data)
