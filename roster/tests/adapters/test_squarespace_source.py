"""Tests for the Squarespace payment source adapter."""

import base64
import hashlib
import hmac

import httpx
import pytest

from roster.adapters.importer.squarespace import (
    SquarespaceOrderSource,
    order_to_payment_event,
    verify_signature,
)


def make_order(number: int, email: str = "a@x.com") -> dict:
    return {
        "id": f"order-{number}",
        "orderNumber": str(number),
        "customerEmail": email,
        "createdOn": "2026-01-21T10:15:00.000Z",
        "grandTotal": {"currency": "GBP", "value": "8.00"},
    }


def paged_handler(requests: list[httpx.Request]):
    pages = {
        None: {"result": [make_order(1), make_order(2)], "pagination": {"nextPageCursor": "p2", "hasNextPage": True}},
        "p2": {"result": [make_order(3)], "pagination": {"hasNextPage": False}},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json=pages[request.url.params.get("cursor")])

    return handler


# ============================================================================
# Order parsing and signatures
# ============================================================================


def test_order_to_payment_event() -> None:
    event = order_to_payment_event(make_order(1001, "A2@X.com"))

    assert event.email == "A2@X.com"
    assert event.amount == "8.00"
    assert event.effective_date == "2026-01-21"
    assert event.reference == "1001"


def test_order_with_missing_fields_passes_blanks_through() -> None:
    event = order_to_payment_event({"id": "o-1"})

    assert event.email == ""
    assert event.amount is None
    assert event.effective_date == ""
    assert event.reference == "o-1"


def test_verify_signature() -> None:
    body = b'{"topic": "order.create"}'
    signature = base64.b64encode(
        hmac.new(b"secret", body, hashlib.sha256).digest()
    ).decode()

    assert verify_signature(body, signature, "secret") is True
    assert verify_signature(body, signature, "other") is False
    assert verify_signature(body + b" ", signature, "secret") is False
    assert verify_signature(body, None, "secret") is False
    assert verify_signature(body, signature, "") is False


# ============================================================================
# SquarespaceOrderSource
# ============================================================================


@pytest.mark.asyncio
async def test_fetch_follows_pagination() -> None:
    requests: list[httpx.Request] = []
    source = SquarespaceOrderSource(
        "key-123",
        api_url="https://api.example.test/1.0/",
        transport=httpx.MockTransport(paged_handler(requests)),
    )

    async with source:
        events = await source.fetch_payments()

    assert [e.reference for e in events] == ["1", "2", "3"]
    assert len(requests) == 2
    assert requests[0].headers["Authorization"] == "Bearer key-123"
    assert requests[0].url.path == "/1.0/commerce/orders"
    assert requests[1].url.params["cursor"] == "p2"


@pytest.mark.asyncio
async def test_fetch_stops_at_limit() -> None:
    requests: list[httpx.Request] = []
    source = SquarespaceOrderSource(
        "key", transport=httpx.MockTransport(paged_handler(requests))
    )

    events = await source.fetch_payments(limit=1)
    await source.close()

    assert len(events) == 1
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_http_error_is_raised() -> None:
    source = SquarespaceOrderSource(
        "bad-key",
        transport=httpx.MockTransport(lambda request: httpx.Response(401, json={})),
    )

    with pytest.raises(httpx.HTTPStatusError):
        await source.fetch_payments()
    await source.close()
