"""Squarespace payment source adapter.

Implements PaymentSourcePort by paging through the Squarespace Commerce
orders API. Also provides the order parsing and signature verification
shared with the webhook receiver, so both entry points read orders the
same way.
"""

import base64
import hashlib
import hmac
import logging
from typing import Any

import httpx

from roster.core.models import PaymentEvent
from roster.core.ports import PaymentSourcePort

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.squarespace.com/1.0"


def order_to_payment_event(order: dict[str, Any]) -> PaymentEvent:
    """Convert a Squarespace order object into a raw payment event.

    Values are passed through unvalidated; the ingestor rejects orders
    with a missing email, amount or date.
    """
    grand_total = order.get("grandTotal") or {}
    created_on = order.get("createdOn") or ""
    reference = order.get("orderNumber") or order.get("id")
    return PaymentEvent(
        email=order.get("customerEmail") or "",
        amount=grand_total.get("value") if isinstance(grand_total, dict) else None,
        # createdOn is an ISO timestamp; the membership counts from its calendar day
        effective_date=created_on[:10] if isinstance(created_on, str) else "",
        reference=str(reference) if reference is not None else None,
    )


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check a Squarespace-Signature header (base64 HMAC-SHA256 of the body)."""
    if not signature or not secret:
        return False
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode()
    return hmac.compare_digest(signature.strip(), expected)


class SquarespaceOrderSource(PaymentSourcePort):
    """Squarespace-backed payment source via the Commerce orders API."""

    def __init__(
        self,
        api_key: str,
        api_url: str = DEFAULT_API_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Squarespace adapter.

        Args:
            api_key: Squarespace Commerce API key (sent as a bearer token).
            api_url: Base URL for the Squarespace API.
            timeout_seconds: Timeout applied to every HTTP request.
            transport: Optional httpx transport, used by tests.
        """
        self.api_url = api_url.rstrip("/")
        self.client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=timeout_seconds,
            headers={
                "Authorization": f"Bearer {api_key}",
                "User-Agent": "Roster/1.0",
            },
            transport=transport,
        )

    async def __aenter__(self) -> "SquarespaceOrderSource":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.client.aclose()

    async def close(self) -> None:
        """Close the httpx client and clean up resources."""
        await self.client.aclose()

    async def fetch_payments(self, limit: int | None = None) -> list[PaymentEvent]:
        """Fetch orders page by page and convert them to payment events.

        Args:
            limit: Optional maximum number of orders to return.

        Returns:
            List of PaymentEvent objects, in API order.

        Raises:
            httpx.HTTPError: If the API is unreachable or returns an error.
        """
        orders: list[dict[str, Any]] = []
        cursor: str | None = None

        try:
            while True:
                params = {"cursor": cursor} if cursor else None
                response = await self.client.get("/commerce/orders", params=params)
                response.raise_for_status()
                data = response.json()

                orders.extend(data.get("result") or [])
                cursor = (data.get("pagination") or {}).get("nextPageCursor")
                logger.debug(f"Fetched {len(orders)} Squarespace orders so far")

                if limit is not None and len(orders) >= limit:
                    orders = orders[:limit]
                    break
                if not cursor:
                    break

        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch orders from Squarespace: {e}", exc_info=True)
            raise

        logger.info(f"Fetched {len(orders)} orders from Squarespace")
        return [order_to_payment_event(order) for order in orders]
