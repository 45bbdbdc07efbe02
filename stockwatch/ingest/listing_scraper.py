"""Category/store listing scans: pagination, URL variants, filters and dedup.

Pages and categories are fetched strictly one after another with a pause
between requests; the pauses are part of the scan's contract with the
retailer and are not optimised away.
"""

import asyncio
import dataclasses
import logging
import re
from enum import Enum
from typing import Awaitable, Callable, Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from stockwatch import metrics
from stockwatch.config import settings
from stockwatch.ingest.base import (
    CategoryQuery,
    CategoryScanResult,
    ListingItem,
    ListingPage,
    PageRenderer,
    ScanReport,
)
from stockwatch.ingest.fallback import FallbackOrchestrator, Source
from stockwatch.ingest.http_client import SourceError
from stockwatch.ingest.listing_extractor import ListingExtractor

logger = logging.getLogger(__name__)

SORT_BY = "prod_cex_uk_price_desc"
STORE_SEPARATOR = "~"
DEFAULT_SEARCH_URL = "https://uk.webuy.com/search"


class ScanMode(Enum):
    """Business filter applied to every extracted item."""
    ALL = "all"
    RETRO = "retro"
    DISC = "disc"


def convert_store_name_for_api(store_name: str) -> str:
    """
    Store display name to the search API's token form, case preserved.

    ``Bournemouth - Castlepoint`` -> ``Bournemouth+-+Castlepoint``
    """
    converted = re.sub(r"\s*-\s*", "+-+", store_name)
    return re.sub(r"\s+", "+", converted)


def display_store_name(token: str) -> str:
    """Inverse of convert_store_name_for_api for already-converted tokens."""
    return token.replace("+-+", " - ").replace("+", " ").strip()


def build_store_selector(stores: Iterable[str]) -> str:
    """Join store tokens with ``~``; tokens already containing ``+`` pass through."""
    tokens = []
    for store in stores:
        if not store:
            continue
        token = store if "+" in store else convert_store_name_for_api(store.strip())
        if token not in tokens:
            tokens.append(token)
    return STORE_SEPARATOR.join(tokens)


def build_search_urls(query: CategoryQuery, search_url: Optional[str] = None) -> List[str]:
    """
    Every URL form worth trying for one listing page, preferred first.

    With and without the trailing slash, on the configured search URL and
    then on the retailer's default one.
    """
    params = [
        f"categoryIds={query.category_id}",
        f"sortBy={SORT_BY}",
        f"stores={query.store_selector}",
    ]
    if query.page > 1:
        params.append(f"page={query.page}")
    query_string = "&".join(params)

    urls: List[str] = []
    for base in (search_url or settings.search_url, DEFAULT_SEARCH_URL):
        base = base.rstrip("/")
        for url in (f"{base}/?{query_string}", f"{base}?{query_string}"):
            if url not in urls:
                urls.append(url)
    return urls


def with_page(url: str, page: int) -> str:
    """``url`` pointing at listing page ``page``; page 1 drops the parameter."""
    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    params = [(k, v) for k, v in pairs if k != "page"]
    if page == 1 and len(params) == len(pairs):
        return url
    if page > 1:
        params.append(("page", str(page)))
    return urlunsplit(parts._replace(query=urlencode(params, safe="~+")))


def is_retro_complete(item: ListingItem) -> bool:
    """Boxed with manual, and not flagged unboxed or manual-less."""
    return item.condition.is_complete


def is_disc_worth_listing(item: ListingItem, min_price: Optional[float] = None) -> bool:
    price = item.price_value
    threshold = settings.disc_min_price if min_price is None else min_price
    return price is not None and price > threshold


def dedupe_items(items: Iterable[ListingItem]) -> List[ListingItem]:
    """Keep the first item per item id."""
    seen = set()
    unique = []
    for item in items:
        if item.item_id in seen:
            continue
        seen.add(item.item_id)
        unique.append(item)
    return unique


def sort_by_price_desc(items: Iterable[ListingItem]) -> List[ListingItem]:
    """Highest price first; unpriced items last, original order kept on ties."""
    return sorted(
        items,
        key=lambda item: (item.price_value is None, -(item.price_value or 0)),
    )


class ListingScraper:
    """
    Drives a renderer through category pages and collects filtered items.

    Args:
        renderer: Open rendering session (one per scrape)
        extractor: Listing extractor
        search_url: Preferred search URL
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        renderer: PageRenderer,
        extractor: Optional[ListingExtractor] = None,
        search_url: Optional[str] = None,
        page_delay: Optional[float] = None,
        category_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.renderer = renderer
        self.extractor = extractor or ListingExtractor()
        self.search_url = search_url or settings.search_url
        self.page_delay = settings.page_delay_seconds if page_delay is None else page_delay
        self.category_delay = settings.category_delay_seconds if category_delay is None else category_delay
        self._sleep = sleep

    def _item_filter(self, mode: ScanMode) -> Callable[[ListingItem], bool]:
        if mode is ScanMode.RETRO:
            return is_retro_complete
        if mode is ScanMode.DISC:
            return is_disc_worth_listing
        return lambda item: True

    async def _render_first(self, urls: List[str], show_all: bool, label: str) -> ListingPage:
        orchestrator = FallbackOrchestrator(
            attempts_per_source=1,
            base_delay=0,
            accept=lambda markup: isinstance(markup, str),
            sleep=self._sleep,
            label="listing",
        )
        sources = [Source(name=url, fetch=lambda url=url: self.renderer.render(url)) for url in urls]
        outcome = await orchestrator.run(sources)
        if not outcome.ok:
            metrics.listing_pages_total.labels(status="failed").inc()
            outcome.raise_for_exhausted()

        metrics.listing_pages_total.labels(status="ok").inc()
        logger.debug(f"Rendered {label} via {outcome.source}")
        return self.extractor.extract_page(outcome.value, show_all=show_all)

    async def scrape_page(self, query: CategoryQuery, show_all: bool = False) -> ListingPage:
        """
        Render one listing page, trying each URL variant in turn.

        Raises:
            ExhaustedSourcesError: Every URL variant failed
        """
        return await self._render_first(
            build_search_urls(query, self.search_url),
            show_all,
            f"category {query.category_id} page {query.page}",
        )

    async def _paginate(
        self,
        result: CategoryScanResult,
        fetch_page: Callable[[int], Awaitable[ListingPage]],
        keep: Callable[[ListingItem], bool],
        max_pages: int,
        cancel: Optional[asyncio.Event],
        category_id: Optional[str] = None,
        store: Optional[str] = None,
    ) -> CategoryScanResult:
        """Fill ``result`` page by page until the listing runs out or fails."""
        seen_ids: set[str] = set()

        for page_number in range(1, max_pages + 1):
            if cancel is not None and cancel.is_set():
                logger.info(f"Scan of {result.category_name} cancelled before page {page_number}")
                break
            if page_number > 1:
                await self._sleep(self.page_delay)

            try:
                page = await fetch_page(page_number)
            except SourceError as e:
                result.error = f"page {page_number}: {e}"
                logger.warning(f"{result.category_name} failed on page {page_number}: {e}")
                break

            result.pages_scanned += 1
            new_ids = {item.item_id for item in page.items} - seen_ids
            if not page.items or not new_ids:
                break
            seen_ids.update(new_ids)

            for item in page.items:
                if keep(item):
                    result.items.append(
                        dataclasses.replace(item, category_id=category_id, store=store)
                    )

            if not page.has_next_page:
                break

        logger.info(
            f"{result.category_name}: {len(result.items)} item(s) kept "
            f"from {result.pages_scanned} page(s)"
        )
        return result

    async def scan_category(
        self,
        category_id: str,
        store_selector: str,
        category_name: Optional[str] = None,
        mode: ScanMode = ScanMode.ALL,
        max_pages: Optional[int] = None,
        show_all: bool = True,
        cancel: Optional[asyncio.Event] = None,
        store: Optional[str] = None,
    ) -> CategoryScanResult:
        """
        Scan pages 1..max_pages of one category, stopping early when a page
        is empty, signals no successor or repeats items already seen.

        Failures are recorded on the result, never raised.
        """
        result = CategoryScanResult(
            category_id=category_id,
            category_name=category_name or f"Category {category_id}",
        )

        async def fetch_page(page_number: int) -> ListingPage:
            query = CategoryQuery(category_id=category_id, store_selector=store_selector, page=page_number)
            return await self.scrape_page(query, show_all=show_all)

        await self._paginate(
            result,
            fetch_page,
            self._item_filter(mode),
            max_pages or settings.max_pages_per_category,
            cancel,
            category_id=category_id,
            store=store,
        )
        metrics.listing_items_total.labels(category=category_id).inc(len(result.items))
        if result.error:
            metrics.category_scan_failures_total.labels(category=category_id).inc()
        return result

    async def scrape_url(
        self,
        url: str,
        show_all: bool = False,
        max_pages: Optional[int] = None,
        mode: ScanMode = ScanMode.ALL,
        cancel: Optional[asyncio.Event] = None,
    ) -> CategoryScanResult:
        """
        Scan an arbitrary search or listing URL, following its ``page`` parameter.

        Pagination, stop rules and failure handling match ``scan_category``.
        The result's category id and name are the URL itself.

        Returns:
            CategoryScanResult with items de-duplicated by item id and sorted
            by price, highest first
        """
        result = CategoryScanResult(category_id=url, category_name=url)

        async def fetch_page(page_number: int) -> ListingPage:
            return await self._render_first([with_page(url, page_number)], show_all, f"{url} page {page_number}")

        await self._paginate(
            result,
            fetch_page,
            self._item_filter(mode),
            max_pages or settings.max_pages_per_category,
            cancel,
        )
        result.items = sort_by_price_desc(dedupe_items(result.items))
        metrics.listing_items_total.labels(category="url").inc(len(result.items))
        if result.error:
            metrics.category_scan_failures_total.labels(category="url").inc()
        return result

    async def scan(
        self,
        category_ids: Iterable[str],
        store_selector: str,
        category_names: Optional[dict[str, str]] = None,
        mode: ScanMode = ScanMode.ALL,
        max_pages: Optional[int] = None,
        show_all: bool = True,
        cancel: Optional[asyncio.Event] = None,
        store: Optional[str] = None,
    ) -> ScanReport:
        """
        Scan categories in order. One category failing never stops the rest.

        Returns:
            ScanReport with items de-duplicated by item id and sorted by
            price, highest first
        """
        report = ScanReport()
        names = category_names or {}

        for index, category_id in enumerate(category_ids):
            if cancel is not None and cancel.is_set():
                report.cancelled = True
                logger.info("Listing scan cancelled")
                break
            if index > 0:
                await self._sleep(self.category_delay)

            try:
                result = await self.scan_category(
                    category_id,
                    store_selector,
                    category_name=names.get(category_id),
                    mode=mode,
                    max_pages=max_pages,
                    show_all=show_all,
                    cancel=cancel,
                    store=store,
                )
            except Exception as e:
                logger.exception(f"Unexpected error scanning category {category_id}")
                metrics.category_scan_failures_total.labels(category=category_id).inc()
                result = CategoryScanResult(
                    category_id=category_id,
                    category_name=names.get(category_id, f"Category {category_id}"),
                    error=f"{type(e).__name__}: {e}",
                )
            report.results.append(result)

        if cancel is not None and cancel.is_set():
            report.cancelled = True

        collected = [item for result in report.results for item in result.items]
        report.items = sort_by_price_desc(dedupe_items(collected))
        return report

    async def scan_store(
        self,
        store: str,
        retro_category_ids: Iterable[str],
        disc_category_ids: Iterable[str],
        category_names: Optional[dict[str, str]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> ScanReport:
        """Check one store: complete retro items plus disc games above the price floor."""
        selector = build_store_selector([store])
        retro = await self.scan(
            list(retro_category_ids),
            selector,
            category_names=category_names,
            mode=ScanMode.RETRO,
            max_pages=settings.max_pages_per_category,
            cancel=cancel,
            store=store,
        )
        disc_ids = list(disc_category_ids)
        if retro.cancelled or not disc_ids:
            return retro

        if retro.results:
            await self._sleep(self.category_delay)
        disc = await self.scan(
            disc_ids,
            selector,
            category_names=category_names,
            mode=ScanMode.DISC,
            max_pages=settings.disc_max_pages_per_category,
            cancel=cancel,
            store=store,
        )
        return ScanReport(
            results=retro.results + disc.results,
            items=sort_by_price_desc(dedupe_items(retro.items + disc.items)),
            cancelled=disc.cancelled,
        )
