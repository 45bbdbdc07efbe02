"""Tests for the in-stock webhook notifier."""

import json

import httpx
import pytest

from stockwatch.ingest.base import ItemRecord
from stockwatch.notify.webhook import WebhookNotifier, format_in_stock_lines

URL = "https://hooks.example/stock"


def in_stock(item_id, stores=()):
    return ItemRecord(item_id, f"https://uk.webuy.com/product-detail/?id={item_id}", quantity=1, stores=stores)


def test_format_lines():
    lines = format_in_stock_lines([in_stock("SKU1", ("Poole",)), in_stock("SKU2")])
    assert lines == [
        "✅ SKU1 appears in stock: https://uk.webuy.com/product-detail/?id=SKU1 (Poole)",
        "✅ SKU2 appears in stock: https://uk.webuy.com/product-detail/?id=SKU2",
    ]


@pytest.mark.asyncio
async def test_posts_only_in_stock_records():
    sent = []

    def handler(request):
        sent.append(json.loads(request.content))
        return httpx.Response(204)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier(URL, client=client)

    result = await notifier.notify_in_stock([in_stock("SKU1"), ItemRecord("SKU2", "u")])

    assert result is True
    assert len(sent) == 1
    assert "SKU1" in sent[0]["text"]
    assert "SKU2" not in sent[0]["text"]


@pytest.mark.asyncio
async def test_nothing_to_send():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    notifier = WebhookNotifier(URL, client=client)

    assert await notifier.notify_in_stock([ItemRecord("SKU2", "u")]) is False
    assert await WebhookNotifier("").notify_in_stock([in_stock("SKU1")]) is False


@pytest.mark.asyncio
async def test_http_error_is_raised():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    notifier = WebhookNotifier(URL, client=client)

    with pytest.raises(httpx.HTTPStatusError):
        await notifier.notify_in_stock([in_stock("SKU1")])
