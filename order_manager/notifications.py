import asyncio
import logging
import re
from dataclasses import dataclass

import httpx

from . import config
from .templates import NotificationKind, render

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass
class DispatchResult:
    """Outcome of one send. Exactly one of ``message_id`` and ``error`` is set."""

    kind: NotificationKind
    message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class NotificationDispatcher:
    """Sends transactional emails through the Resend HTTP API, one request per message."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        api_key: str | None = None,
        api_url: str | None = None,
        from_email: str | None = None,
        min_interval_seconds: float | None = None,
    ) -> None:
        self._client = client
        self._api_key = config.RESEND_API_KEY if api_key is None else api_key
        self._api_url = api_url or config.RESEND_API_URL
        self._from_email = from_email or config.FROM_EMAIL
        self._min_interval = (
            config.NOTIFICATION_MIN_INTERVAL_SECONDS if min_interval_seconds is None else min_interval_seconds
        )

    async def send(self, kind: NotificationKind, order, message: str = "") -> DispatchResult:
        """
        Renders ``kind`` for ``order`` and hands it to the provider.

        Never raises for delivery problems: a bad recipient, a missing API key,
        or a provider/network failure comes back as ``DispatchResult.error``.
        """
        kind = NotificationKind(kind)
        if not self._api_key:
            logger.warning(f"RESEND_API_KEY not set - skipping {kind.value} email for order {order.order_number}")
            return DispatchResult(kind, error="Email service not configured")

        rendered = render(kind, order, message)
        if not rendered.to or not _EMAIL_PATTERN.match(rendered.to):
            logger.error(f"Invalid recipient address for {kind.value} email on order {order.order_number}: {rendered.to!r}")
            return DispatchResult(kind, error="Invalid email address")

        payload = {
            "from": self._from_email,
            "to": rendered.to,
            "subject": rendered.subject,
            "html": rendered.html,
        }
        logger.info(f"Sending {kind.value} email for order {order.order_number} to {rendered.to}")

        try:
            response = await self._post(payload)
            response.raise_for_status()
            message_id = response.json().get("id")
        except httpx.HTTPStatusError as e:
            error_body = e.response.text
            logger.error(f"Email provider returned status {e.response.status_code} for {kind.value} email on order {order.order_number}. Response: {error_body[:500]}")
            return DispatchResult(kind, error=f"Email provider status error {e.response.status_code}")
        except httpx.RequestError as e:
            logger.error(f"Could not connect to email provider for {kind.value} email on order {order.order_number}: {e}")
            return DispatchResult(kind, error=f"Email provider connection error: {e}")
        except ValueError as e:
            logger.error(f"Email provider returned an unreadable body for order {order.order_number}: {e}")
            return DispatchResult(kind, error="Email provider returned an invalid response")

        logger.info(f"{kind.value} email sent for order {order.order_number}, provider id {message_id}")
        return DispatchResult(kind, message_id=message_id)

    async def send_sequence(self, kinds, order, message: str = "") -> list[DispatchResult]:
        """Sends each kind in order, keeping the provider's minimum spacing between requests."""
        results = []
        for index, kind in enumerate(kinds):
            if index and self._min_interval > 0:
                await asyncio.sleep(self._min_interval)
            results.append(await self.send(kind, order, message))
        return results

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        if self._client is not None:
            return await self._client.post(self._api_url, headers=headers, json=payload)
        async with httpx.AsyncClient(timeout=10.0) as client:
            return await client.post(self._api_url, headers=headers, json=payload)

    async def notify(self, kinds, order, message: str = "") -> list[DispatchResult]:
        """send_sequence for callers whose own outcome must not depend on email delivery."""
        try:
            results = await self.send_sequence(kinds, order, message)
        except Exception as e:
            logger.exception(f"Notification dispatch failed for order {order.order_number}: {e}")
            return []
        for result in results:
            if not result.ok:
                logger.warning(f"{result.kind.value} email for order {order.order_number} not sent: {result.error}")
        return results
