"""Per-item availability resolution across the structured API and product pages.

Structured endpoints are tried first through the fallback orchestrator; when
none answers with a usable box record the product page is classified from
its text instead. Store lists are only resolved for items that are in stock.
"""

import asyncio
import logging
import re
import time
from typing import Callable, Awaitable, Iterable, List, Optional
from urllib.parse import parse_qs, quote, urlparse

import httpx

from stockwatch import metrics
from stockwatch.catalog import CatalogSettings
from stockwatch.config import settings
from stockwatch.ingest.base import Confidence, ItemRecord, StoreHit, StoreStrategy, merge_store_hits
from stockwatch.ingest.fallback import FallbackOrchestrator, FallbackOutcome, Source
from stockwatch.ingest.html_classifier import NO_TITLE, classify
from stockwatch.ingest.http_client import (
    JsonResponse,
    SourceError,
    TransientSourceError,
    UpstreamErrorPage,
    create_client,
    fetch_text,
    request_json,
)
from stockwatch.ingest.listing_scraper import convert_store_name_for_api, display_store_name
from stockwatch.ingest.stock_classifier import (
    StockFacts,
    box_details,
    classify_box,
    record_store_hits,
    stock_note,
)
from stockwatch.ingest.store_names import StoreExtraction, StoreNameExtractor
from stockwatch.logging_config import get_logger

logger = logging.getLogger(__name__)

_URL = re.compile(r"^https?://", re.I)

# Characters of the item name matched against probe search results
PROBE_NAME_FRAGMENT = 20


def build_product_url(base_url: str, item_id: str) -> str:
    """Product page for an id; full URLs pass through untouched."""
    trimmed = item_id.strip()
    if _URL.match(trimmed):
        return trimmed
    return f"{base_url.rstrip('/')}/product-detail/?id={quote(trimmed, safe='')}"


def item_key(item_id: str) -> Optional[str]:
    """Retailer box id for an item id or product URL."""
    trimmed = item_id.strip()
    if not _URL.match(trimmed):
        return trimmed or None
    ids = parse_qs(urlparse(trimmed).query).get("id")
    return ids[0] if ids and ids[0] else None


def endpoint_urls(key: str, templates: Iterable[str]) -> List[str]:
    return [
        template.format(id=quote(key, safe=""), id_lower=quote(key.lower(), safe=""))
        for template in templates
    ]


class AvailabilityResolver:
    """
    Resolves items into ItemRecords. ``resolve`` never raises.

    Args:
        catalog: Store tokens for the search probe and the store-id table
        client: Shared httpx client; created lazily when omitted
        extractor: Store-name extractor
        sleep: Awaitable sleep used for backoff, injectable for tests
    """

    def __init__(
        self,
        catalog: Optional[CatalogSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        extractor: Optional[StoreNameExtractor] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
        max_concurrency: Optional[int] = None,
    ):
        self.catalog = catalog or CatalogSettings()
        self.extractor = extractor or StoreNameExtractor(store_id_lookup=self.catalog.lookup_store_id)
        self.max_concurrency = max_concurrency or settings.max_concurrent_checks
        self._sleep = sleep
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = create_client()
        return self._client

    async def close(self):
        """Close HTTP client if this resolver created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AvailabilityResolver":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _orchestrator(self, label: str, attempts: int, accept) -> FallbackOrchestrator:
        return FallbackOrchestrator(
            attempts_per_source=attempts,
            base_delay=settings.retry_base_delay_seconds,
            accept=accept,
            sleep=self._sleep,
            label=label,
        )

    async def resolve(self, item_id: str) -> ItemRecord:
        """
        Resolve one item's stock facts.

        Args:
            item_id: Retailer box id or full product URL

        Returns:
            ItemRecord; failures are encoded in source_status/source_note
        """
        started = time.monotonic()
        canonical = build_product_url(settings.base_url, item_id)
        item_logger = get_logger(__name__, item_id=item_id)
        path = "structured"
        try:
            record, path = await self._resolve(item_id, canonical)
        except Exception as e:
            item_logger.exception(f"Unexpected error resolving {item_id}")
            record = ItemRecord.unknown(item_id, canonical, note=f"Failed: {type(e).__name__}: {e}")
        finally:
            metrics.stock_check_duration_seconds.observe(time.monotonic() - started)

        result = "in_stock" if record.in_stock else ("unknown" if record.failed else "out_of_stock")
        metrics.stock_checks_total.labels(path=path, result=result).inc()
        item_logger.info(
            f"{item_id}: {record.source_note} (in_stock={record.in_stock}, "
            f"qty={record.quantity}, stores={len(record.stores)})",
            extra={"path": path, "result": result},
        )
        return record

    async def resolve_many(self, item_ids: Iterable[str]) -> List[ItemRecord]:
        """Resolve items with bounded parallelism; results keep input order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def resolve_one(item_id: str) -> ItemRecord:
            async with semaphore:
                return await self.resolve(item_id)

        return list(await asyncio.gather(*(resolve_one(i) for i in item_ids)))

    async def _resolve(self, item_id: str, canonical: str) -> tuple[ItemRecord, str]:
        key = item_key(item_id)
        outcome = None
        if key:
            outcome = await self._fetch_structured(key)
            if outcome.ok:
                return await self._from_structured(item_id, key, canonical, outcome.value), "structured"
        return await self._from_markup(item_id, key, canonical, outcome), "markup"

    async def _fetch_structured(self, key: str) -> FallbackOutcome:
        client = await self._get_client()
        sources = [
            Source(name=url, fetch=lambda url=url: request_json(client, url))
            for url in endpoint_urls(key, settings.api_endpoints)
        ]
        orchestrator = self._orchestrator(
            "structured_api",
            settings.api_attempts_per_source,
            accept=lambda resp: box_details(resp.data) is not None,
        )
        return await orchestrator.run(sources)

    async def _from_structured(
        self, item_id: str, key: str, canonical: str, resp: JsonResponse
    ) -> ItemRecord:
        box = box_details(resp.data)[0]
        facts = classify_box(box)

        hits: List[StoreHit] = []
        if facts.in_stock:
            try:
                hits = await self._resolve_stores(key, canonical, box, facts)
            except Exception:
                # The stock verdict stands without a store list
                logger.exception(f"Store lookup failed for {key}")
                hits = []
        names, ordered_hits = merge_store_hits(hits)

        return ItemRecord(
            item_id=item_id,
            canonical_url=canonical,
            quantity=facts.quantity,
            out_of_stock_flag=facts.out_of_stock_flag,
            sell_allowed=facts.sell_allowed,
            name=facts.name,
            price=facts.price,
            image_url=facts.image_url,
            stores=names,
            store_hits=ordered_hits,
            source_status=resp.status,
            source_note=stock_note(box, resp.status),
            api_url=resp.url,
            debug_payload=box,
        )

    async def _resolve_stores(
        self, key: str, canonical: str, box: dict, facts: StockFacts
    ) -> List[StoreHit]:
        """Record fields, then the product page, then store APIs, then the search probe.

        Every step is best-effort: a step that fails contributes no hits and
        the cascade moves on.
        """
        hits = record_store_hits(box)
        if hits:
            return hits

        client = await self._get_client()
        try:
            page = await fetch_text(client, canonical)
            hits = list(self.extractor.extract(page.text, key).hits)
        except SourceError as e:
            logger.debug(f"Product page unavailable for store extraction ({key}): {e}")
        except Exception as e:
            logger.warning(f"Product page store extraction failed for {key}: {type(e).__name__}: {e}")
        if hits:
            return hits

        if settings.store_stock_api_enabled:
            try:
                hits = await self._store_api_hits(key)
            except Exception as e:
                logger.warning(f"Store stock API lookup failed for {key}: {type(e).__name__}: {e}")
                hits = []
            if hits:
                return hits

        if facts.quantity <= settings.store_probe_max_quantity:
            hits = await self._probe_stores(key, facts.name, facts.quantity)
        return hits

    async def _store_api_hits(self, key: str) -> List[StoreHit]:
        client = await self._get_client()
        sources = []
        for url in endpoint_urls(key, settings.store_stock_api_paths):
            sources.append(Source(name=f"GET {url}", fetch=lambda url=url: request_json(client, url)))
            sources.append(
                Source(
                    name=f"POST {url}",
                    fetch=lambda url=url: request_json(client, url, method="POST", body={"boxId": key}),
                )
            )

        # The orchestrator returns right after an accepted payload, so the
        # last extraction is the one that was accepted
        extracted: list[StoreExtraction] = []

        def accept(resp: JsonResponse) -> bool:
            extraction = self.extractor.extract_from_json(resp.data, key)
            extracted.append(extraction)
            return bool(extraction)

        orchestrator = self._orchestrator(
            "store_api",
            settings.store_api_attempts_per_source,
            accept=accept,
        )
        outcome = await orchestrator.run(sources)
        if not outcome.ok:
            return []
        return [StoreHit(h.name, StoreStrategy.STORE_API, h.confidence) for h in extracted[-1].hits]

    async def _probe_stores(self, key: str, name: Optional[str], quantity: int) -> List[StoreHit]:
        """Look for the item in each store's filtered search page. Approximate."""
        limit = min(settings.store_probe_max_stores, quantity * 2)
        stores = self.catalog.store_tokens[:limit]
        if not stores:
            return []

        client = await self._get_client()
        fragment = (name or "")[:PROBE_NAME_FRAGMENT].lower()
        query = quote(name or key)
        hits = []
        for token in stores:
            api_token = token if "+" in token else convert_store_name_for_api(token)
            url = f"{settings.search_url.rstrip('/')}/?stores={api_token}&query={query}"
            try:
                page = await fetch_text(client, url)
            except SourceError as e:
                logger.debug(f"Store probe failed for {token}: {e}")
                continue
            except Exception as e:
                logger.warning(f"Store probe for {token} raised {type(e).__name__}: {e}")
                continue
            text = page.text.lower()
            if key.lower() in text or (fragment and fragment in text):
                hits.append(StoreHit(display_store_name(api_token), StoreStrategy.SEARCH_PROBE, Confidence.LOW))
        logger.debug(f"Store probe for {key}: {len(hits)}/{len(stores)} stores matched")
        return hits

    async def _from_markup(
        self,
        item_id: str,
        key: Optional[str],
        canonical: str,
        outcome: Optional[FallbackOutcome],
    ) -> ItemRecord:
        diagnostic = outcome.describe() if outcome is not None else "no structured id"
        client = await self._get_client()
        try:
            page = await fetch_text(client, canonical)
        except UpstreamErrorPage as e:
            return ItemRecord.unknown(
                item_id, canonical, note="Failed: retailer error page", status=e.status,
                debug_payload=diagnostic,
            )
        except TransientSourceError as e:
            note = f"Failed: HTTP {e.status}" if e.status is not None else "Unknown"
            return ItemRecord.unknown(item_id, canonical, note=note, status=e.status, debug_payload=diagnostic)

        verdict = classify(page.text, settings.base_url)
        hits = []
        if verdict.in_stock:
            hits = list(self.extractor.extract(page.text, key or item_id).hits)
        names, ordered_hits = merge_store_hits(hits)

        return ItemRecord(
            item_id=item_id,
            canonical_url=canonical,
            quantity=1 if verdict.in_stock else 0,
            out_of_stock_flag=verdict.note == "Out of stock",
            name=verdict.title if verdict.title != NO_TITLE else None,
            price=verdict.price,
            image_url=verdict.image_url,
            stores=names,
            store_hits=ordered_hits,
            source_status=page.status,
            source_note=verdict.note,
            debug_payload=diagnostic,
        )
