"""
Stripe integration: webhook signature verification and read-only retrieval of
settlement economics (net amount and processor fee) for a payment intent.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal

import httpx
import stripe

from pricing_service.logic import from_minor_units
from shared.exceptions import ExternalServiceError, SettlementUnavailableError, SignatureError
from . import config

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
HANDLED_EVENT_TYPES = (PAYMENT_SUCCEEDED, PAYMENT_FAILED)


@dataclass(frozen=True)
class GatewayEvent:
    id: str
    type: str
    payment_reference: str | None


@dataclass(frozen=True)
class Settlement:
    net_amount_received: Decimal
    processor_fee: Decimal
    amount_charged_minor: int


def verify_webhook(payload: bytes, signature: str | None, secret: str | None = None) -> GatewayEvent:
    """
    Checks the Stripe-Signature header against the exact raw body, then parses it.

    Raises SignatureError for a missing or wrong signature, a stale timestamp,
    or a body that is not a well-formed event.
    """
    secret = secret if secret is not None else config.STRIPE_WEBHOOK_SECRET
    if not signature:
        raise SignatureError("Missing signature header")
    if not secret:
        logger.error("STRIPE_WEBHOOK_SECRET not set - rejecting webhook")
        raise SignatureError("Webhook secret not configured")

    try:
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            body, signature, secret, tolerance=config.STRIPE_WEBHOOK_TOLERANCE_SECONDS
        )
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise SignatureError() from e
    except UnicodeDecodeError as e:
        raise SignatureError("Invalid payload encoding") from e

    try:
        data = json.loads(body)
        event_object = data.get("data", {}).get("object", {}) or {}
        return GatewayEvent(id=data["id"], type=data["type"], payment_reference=event_object.get("id"))
    except (ValueError, KeyError, AttributeError) as e:
        logger.warning(f"Webhook payload malformed: {e}")
        raise SignatureError("Invalid payload") from e


class StripeGateway:
    """Thin httpx wrapper for the Stripe REST endpoints the reconciliation reads."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        retry_attempts: int | None = None,
        retry_backoff_seconds: float | None = None,
    ) -> None:
        self._client = client
        self._api_key = config.STRIPE_SECRET_KEY if api_key is None else api_key
        self._base_url = (base_url or config.STRIPE_API_BASE).rstrip("/")
        self._retry_attempts = config.SETTLEMENT_RETRY_ATTEMPTS if retry_attempts is None else retry_attempts
        self._retry_backoff = (
            config.SETTLEMENT_RETRY_BACKOFF_SECONDS if retry_backoff_seconds is None else retry_backoff_seconds
        )

    async def retrieve_settlement(self, payment_reference: str) -> Settlement:
        """
        Reads payment intent -> latest charge -> balance transaction, asking Stripe
        to expand the chain so one request normally suffices.

        Raises:
            SettlementUnavailableError: if the charge or ledger entry does not exist yet.
            ExternalServiceError: on HTTP or network failures.
        """
        intent = await self._get(
            f"/v1/payment_intents/{payment_reference}", params={"expand[]": "latest_charge.balance_transaction"}
        )
        if not intent.get("latest_charge"):
            raise SettlementUnavailableError(payment_reference, "no charge found")

        charge = await self._resolve(intent["latest_charge"], "/v1/charges")
        if not charge.get("balance_transaction"):
            raise SettlementUnavailableError(payment_reference, "no balance transaction")

        balance = await self._resolve(charge["balance_transaction"], "/v1/balance_transactions")
        amount, net = balance.get("amount"), balance.get("net")
        if amount is None or net is None:
            raise SettlementUnavailableError(payment_reference, "balance transaction incomplete")
        settlement = Settlement(
            net_amount_received=from_minor_units(net),
            processor_fee=from_minor_units(amount - net),
            amount_charged_minor=amount,
        )
        logger.info(
            f"Settlement for {payment_reference}: net {settlement.net_amount_received:.2f}, "
            f"fee {settlement.processor_fee:.2f}"
        )
        return settlement

    async def fetch_settlement_with_retry(self, payment_reference: str) -> Settlement | None:
        """
        Retries retrieve_settlement with a growing delay (backoff x attempt).
        Returns None once attempts are exhausted; fee data is enrichment only.
        """
        for attempt in range(1, self._retry_attempts + 1):
            try:
                return await self.retrieve_settlement(payment_reference)
            except ExternalServiceError as e:
                if attempt == self._retry_attempts:
                    logger.warning(f"Giving up on settlement data for {payment_reference} after {attempt} attempts: {e.message}")
                    return None
                delay = self._retry_backoff * attempt
                logger.info(f"Settlement data for {payment_reference} not ready (attempt {attempt}): {e.message}. Retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
        return None

    async def _resolve(self, value, collection: str) -> dict:
        """Stripe fields hold either an id string or, when expanded, the object itself."""
        if isinstance(value, dict):
            return value
        return await self._get(f"{collection}/{value}")

    async def _get(self, path: str, params: dict | None = None) -> dict:
        if not self._api_key:
            raise ExternalServiceError("STRIPE_SECRET_KEY not set", code="GATEWAY_NOT_CONFIGURED")
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            if self._client is not None:
                response = await self._client.get(f"{self._base_url}{path}", params=params, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=config.STRIPE_TIMEOUT_SECONDS) as client:
                    response = await client.get(f"{self._base_url}{path}", params=params, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            error_body = e.response.text
            logger.error(f"Stripe returned status {e.response.status_code} for {path}. Response: {error_body[:500]}")
            raise ExternalServiceError(f"Stripe status error {e.response.status_code}", code="GATEWAY_ERROR") from e
        except httpx.RequestError as e:
            logger.error(f"Could not connect to Stripe ({e.request.url}): {e}")
            raise ExternalServiceError(f"Stripe connection error: {e}", code="GATEWAY_ERROR") from e
