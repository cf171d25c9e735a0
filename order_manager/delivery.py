"""
Delivery radius check: geocodes the customer's address and measures the
straight-line distance from the business address.
"""
import logging
import math
from dataclasses import dataclass
from decimal import Decimal

import httpx

from . import config
from .templates import format_address

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3959


@dataclass(frozen=True)
class DeliveryAssessment:
    distance_miles: Decimal
    quote_required: bool


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> Decimal:
    """Great-circle distance in miles, rounded to one decimal place."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return Decimal(str(round(EARTH_RADIUS_MILES * c, 1)))


class DeliveryGeocoder:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        business_address: str | None = None,
        radius_miles: float | None = None,
    ) -> None:
        self._client = client
        self._api_key = config.GOOGLE_GEOCODING_API_KEY if api_key is None else api_key
        self._business_address = business_address or config.BUSINESS_ADDRESS
        self._radius_miles = config.DELIVERY_RADIUS_MILES if radius_miles is None else radius_miles

    async def geocode(self, address: str) -> tuple[float, float] | None:
        """Returns (lat, lng) for an address, or None if it cannot be resolved."""
        params = {"address": address, "key": self._api_key}
        try:
            if self._client is not None:
                response = await self._client.get(config.GOOGLE_GEOCODING_URL, params=params)
            else:
                async with httpx.AsyncClient(timeout=10.0) as client:
                    response = await client.get(config.GOOGLE_GEOCODING_URL, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Geocoding service returned status {e.response.status_code} for '{address}'")
            return None
        except httpx.RequestError as e:
            logger.error(f"Could not connect to geocoding service: {e}")
            return None
        except ValueError as e:
            logger.error(f"Geocoding service returned an unreadable body: {e}")
            return None

        if data.get("status") != "OK" or not data.get("results"):
            logger.warning(f"Geocoding failed for '{address}': {data.get('status')}")
            return None
        try:
            location = data["results"][0]["geometry"]["location"]
            return location["lat"], location["lng"]
        except (KeyError, IndexError, TypeError) as e:
            logger.warning(f"Geocoding result for '{address}' has no usable location: {e!r}")
            return None

    async def assess(self, shipping_address) -> DeliveryAssessment | None:
        """
        Distance and quote flag for a shipping address. None when geocoding is
        not configured or either address cannot be resolved; the order then
        proceeds as a standard delivery.
        """
        if not self._api_key:
            logger.debug("GOOGLE_GEOCODING_API_KEY not set - skipping delivery radius check")
            return None

        customer_address = format_address(shipping_address, separator=", ", escape=False)
        if customer_address == "Address not provided":
            return None

        business = await self.geocode(self._business_address)
        customer = await self.geocode(customer_address)
        if business is None or customer is None:
            return None

        distance = haversine_miles(*business, *customer)
        quote_required = distance > Decimal(str(self._radius_miles))
        logger.info(f"Delivery distance {distance} miles (radius {self._radius_miles:g}), quote required: {quote_required}")
        return DeliveryAssessment(distance_miles=distance, quote_required=quote_required)
