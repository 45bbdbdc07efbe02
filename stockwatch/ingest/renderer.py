"""Headless browser session for JavaScript-rendered listing pages."""

import logging
from typing import Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Route,
    TimeoutError as PlaywrightTimeoutError,
    async_playwright,
)

from stockwatch.config import settings
from stockwatch.ingest.base import PageRenderer
from stockwatch.ingest.http_client import TransientSourceError, UpstreamErrorPage, is_error_page
from stockwatch.ingest.listing_extractor import PRODUCT_LINK_SELECTOR

logger = logging.getLogger(__name__)

# True once no loading indicators remain in the DOM
LOADING_FINISHED_JS = """() => document.querySelectorAll(
    '[class*="loading"], [class*="spinner"], .loading, .spinner'
).length === 0"""

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]


class BrowserSession(PageRenderer):
    """
    One browser, one context and one page for the lifetime of a scrape.

    Use as ``async with BrowserSession() as renderer``; everything is closed
    on exit, including when the scrape raises.
    """

    def __init__(
        self,
        blocked_resource_types: Optional[list[str]] = None,
        navigation_timeout_ms: Optional[int] = None,
        selector_timeout_ms: Optional[int] = None,
        loading_timeout_ms: Optional[int] = None,
        headless: Optional[bool] = None,
    ):
        self.blocked_resource_types = set(
            settings.blocked_resource_types if blocked_resource_types is None else blocked_resource_types
        )
        self.navigation_timeout_ms = navigation_timeout_ms or settings.navigation_timeout_ms
        self.selector_timeout_ms = selector_timeout_ms or settings.selector_timeout_ms
        self.loading_timeout_ms = loading_timeout_ms or settings.loading_timeout_ms
        self.headless = settings.headless if headless is None else headless

        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "BrowserSession":
        try:
            await self.start()
        except BaseException:
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def start(self):
        """Launch the browser and open the single working page."""
        if self._page is not None:
            return
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=LAUNCH_ARGS,
        )
        self._context = await self._browser.new_context(
            user_agent=settings.user_agent,
            viewport={"width": 1920, "height": 1080},
            locale="en-GB",
        )
        self._page = await self._context.new_page()
        if self.blocked_resource_types:
            await self._page.route("**/*", self._route)
        logger.debug(f"Browser session started (blocking {sorted(self.blocked_resource_types)})")

    async def _route(self, route: Route):
        if route.request.resource_type in self.blocked_resource_types:
            await route.abort()
        else:
            await route.continue_()

    @property
    def page(self) -> Page:
        if self._page is None:
            raise RuntimeError("BrowserSession has not been started")
        return self._page

    async def render(self, url: str, wait_for_selector: Optional[str] = PRODUCT_LINK_SELECTOR) -> str:
        """
        Navigate and return the rendered markup.

        Missing product links or lingering spinners are not failures; the
        markup is returned as-is and the extractor decides.

        Raises:
            TransientSourceError: Navigation timed out or failed
            UpstreamErrorPage: Retailer error page was served
        """
        page = self.page
        try:
            response = await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )
        except PlaywrightTimeoutError as e:
            raise TransientSourceError(f"Navigation timeout for {url}") from e
        except PlaywrightError as e:
            raise TransientSourceError(f"Navigation failed for {url}: {e}") from e

        if wait_for_selector:
            try:
                await page.wait_for_selector(wait_for_selector, timeout=self.selector_timeout_ms)
            except PlaywrightTimeoutError:
                logger.debug(f"No '{wait_for_selector}' on {url}, continuing")

        try:
            await page.wait_for_function(LOADING_FINISHED_JS, timeout=self.loading_timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug(f"Loading indicators still present on {url}, continuing")

        try:
            content = await page.content()
        except PlaywrightError as e:
            raise TransientSourceError(f"Could not read content of {url}: {e}") from e

        status = response.status if response is not None else None
        if is_error_page(content, page.url):
            raise UpstreamErrorPage(f"Retailer error page for {url}", status=status)
        if status is not None and status >= 400:
            raise TransientSourceError(f"HTTP {status} for {url}", status=status)
        return content

    async def close(self):
        """Close page, context, browser and driver; safe to call twice."""
        try:
            if self._context is not None:
                try:
                    await self._context.close()
                except PlaywrightError as e:
                    logger.warning(f"Error closing browser context: {e}")
            if self._browser is not None:
                try:
                    await self._browser.close()
                except PlaywrightError as e:
                    logger.warning(f"Error closing browser: {e}")
        finally:
            self._page = None
            self._context = None
            self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
