"""Webhook notifications for items that came back in stock."""

import logging
from typing import Iterable, Optional

import httpx

from stockwatch import metrics
from stockwatch.ingest.base import ItemRecord

logger = logging.getLogger(__name__)


def format_in_stock_lines(records: Iterable[ItemRecord]) -> list[str]:
    lines = []
    for record in records:
        line = f"✅ {record.item_id} appears in stock: {record.canonical_url}"
        if record.stores:
            line += f" ({', '.join(record.stores)})"
        lines.append(line)
    return lines


class WebhookNotifier:
    """Posts a plain-text summary of in-stock items to a chat webhook."""

    def __init__(self, webhook_url: str, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self._http_client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def notify_in_stock(self, records: Iterable[ItemRecord]) -> bool:
        """
        Send one message listing every in-stock record.

        Args:
            records: Resolved records; out-of-stock ones are ignored

        Returns:
            True if a message was sent, False when there was nothing to send
            or no webhook is configured
        """
        in_stock = [r for r in records if r.in_stock]
        if not self.webhook_url:
            logger.debug("No webhook configured, skipping notification")
            return False
        if not in_stock:
            return False

        payload = {"text": "\n".join(format_in_stock_lines(in_stock))}
        client = await self._get_client()
        try:
            response = await client.post(self.webhook_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            metrics.notifications_sent_total.labels(status="error").inc()
            logger.error(f"Failed to send in-stock notification: {e}")
            raise

        metrics.notifications_sent_total.labels(status="ok").inc()
        logger.info(f"Sent in-stock notification for {len(in_stock)} item(s)")
        return True
