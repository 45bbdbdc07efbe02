"""Command-line entry point."""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from prometheus_client import start_http_server

from stockwatch.catalog import CatalogSettings, load_catalog_settings
from stockwatch.config import settings
from stockwatch.ingest.availability import AvailabilityResolver
from stockwatch.ingest.base import ItemRecord, ScanReport
from stockwatch.ingest.listing_extractor import ListingExtractor, filter_product_name
from stockwatch.ingest.listing_scraper import ListingScraper, ScanMode, build_store_selector
from stockwatch.ingest.renderer import BrowserSession
from stockwatch.logging_config import setup_logging
from stockwatch.notify.webhook import WebhookNotifier

logger = logging.getLogger(__name__)


def print_records(records: Sequence[ItemRecord]):
    for record in records:
        status = "IN STOCK" if record.in_stock else "out"
        line = f"{record.item_id:<16} {status:<8} qty={record.quantity:<3} {record.price or '-':>8}  {record.name or ''}"
        print(line)
        print(f"{'':<16} {record.source_note}")
        if record.stores:
            print(f"{'':<16} stores: {', '.join(record.stores)}")


def print_report(report: ScanReport, catalog: CatalogSettings):
    for result in report.results:
        status = f"error: {result.error}" if result.error else "ok"
        print(f"# {result.category_name} ({result.category_id}): {len(result.items)} item(s), "
              f"{result.pages_scanned} page(s), {status}")
    for item in report.items:
        category = catalog.category_name(item.category_id) if item.category_id else ""
        print(f"{item.price or '-':>8}  {filter_product_name(item.name)}  [{category}]  {item.url or ''}")
    if report.cancelled:
        print("(scan cancelled)")


async def run_check(catalog: CatalogSettings, item_ids: Sequence[str], notify: bool) -> int:
    ids = list(item_ids) or catalog.product_ids
    if not ids:
        logger.error("No product ids given and none configured")
        return 2

    async with AvailabilityResolver(catalog=catalog) as resolver:
        records = await resolver.resolve_many(ids)
    print_records(records)

    if notify and settings.notify_webhook_url:
        notifier = WebhookNotifier(settings.notify_webhook_url)
        try:
            await notifier.notify_in_stock(records)
        finally:
            await notifier.close()
    return 0


async def run_scan(
    catalog: CatalogSettings,
    group: Optional[str],
    category_ids: Sequence[str],
    mode: ScanMode,
    show_all: bool,
    max_pages: Optional[int],
) -> int:
    if group:
        store_group = catalog.get_group(group)
        if store_group is None:
            logger.error(f"Unknown store group: {group}")
            return 2
        stores = store_group.values
    else:
        stores = catalog.store_tokens

    categories = list(category_ids) or catalog.category_ids
    async with BrowserSession() as renderer:
        scraper = ListingScraper(
            renderer,
            extractor=ListingExtractor(base_url=catalog.base_url),
            search_url=catalog.search_url,
        )
        report = await scraper.scan(
            categories,
            build_store_selector(stores),
            category_names=catalog.category_map,
            mode=mode,
            max_pages=max_pages,
            show_all=show_all,
        )
    print_report(report, catalog)
    return 1 if report.results and all(r.error for r in report.results) else 0


async def run_store_check(catalog: CatalogSettings, store: str) -> int:
    async with BrowserSession(blocked_resource_types=["image", "stylesheet", "font"]) as renderer:
        scraper = ListingScraper(
            renderer,
            extractor=ListingExtractor(base_url=catalog.base_url),
            search_url=catalog.search_url,
        )
        report = await scraper.scan_store(
            store,
            catalog.retro_category_ids,
            catalog.disc_category_ids,
            category_names=catalog.category_map,
        )
    print_report(report, catalog)
    return 0


async def run_scan_url(
    catalog: CatalogSettings,
    url: str,
    mode: ScanMode,
    show_all: bool,
    max_pages: Optional[int],
) -> int:
    async with BrowserSession() as renderer:
        scraper = ListingScraper(renderer, extractor=ListingExtractor(base_url=catalog.base_url))
        result = await scraper.scrape_url(url, show_all=show_all, max_pages=max_pages, mode=mode)
    print_report(ScanReport(results=[result], items=result.items), catalog)
    return 1 if result.error else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="stockwatch", description="CeX stock checker")
    parser.add_argument("--settings", help="Path to settings.json")
    parser.add_argument("--stores", help="Path to stores.json")
    parser.add_argument("--metrics-port", type=int, help="Expose Prometheus metrics on this port")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Check availability of items")
    check.add_argument("ids", nargs="*", help="Box ids or product URLs (default: configured productIds)")
    check.add_argument("--no-notify", action="store_true", help="Do not send webhook notifications")

    scan = sub.add_parser("scan", help="Scan category listings for a store group")
    scan.add_argument("--group", help="Store group name (default: every configured store)")
    scan.add_argument("--category", action="append", default=[], help="Category id (repeatable)")
    scan.add_argument("--mode", choices=[m.value for m in ScanMode], default=ScanMode.RETRO.value)
    scan.add_argument("--strict-names", action="store_true", help="Strict product-name validation")
    scan.add_argument("--max-pages", type=int, help="Page cap per category")

    store_check = sub.add_parser("store-check", help="Retro and disc listings for one store")
    store_check.add_argument("store", help="Store name, e.g. 'Bournemouth - Castlepoint'")

    scan_url = sub.add_parser("scan-url", help="Scan any search or listing URL, following its pages")
    scan_url.add_argument("url", help="Search URL, e.g. https://uk.webuy.com/search?categoryIds=1037")
    scan_url.add_argument("--mode", choices=[m.value for m in ScanMode], default=ScanMode.ALL.value)
    scan_url.add_argument("--strict-names", action="store_true", help="Strict product-name validation")
    scan_url.add_argument("--max-pages", type=int, help="Page cap")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()

    if args.metrics_port:
        start_http_server(args.metrics_port)
        logger.info(f"Metrics available on :{args.metrics_port}")

    catalog = load_catalog_settings(args.settings, args.stores)

    if args.command == "check":
        return asyncio.run(run_check(catalog, args.ids, notify=not args.no_notify))
    if args.command == "scan":
        return asyncio.run(run_scan(
            catalog,
            group=args.group,
            category_ids=args.category,
            mode=ScanMode(args.mode),
            show_all=not args.strict_names,
            max_pages=args.max_pages,
        ))
    if args.command == "scan-url":
        return asyncio.run(run_scan_url(
            catalog,
            args.url,
            mode=ScanMode(args.mode),
            show_all=not args.strict_names,
            max_pages=args.max_pages,
        ))
    return asyncio.run(run_store_check(catalog, args.store))


if __name__ == "__main__":
    sys.exit(main())
