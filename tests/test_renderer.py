"""Tests for the headless browser session's error mapping."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from stockwatch.ingest.http_client import TransientSourceError, UpstreamErrorPage
from stockwatch.ingest.renderer import BrowserSession

URL = "https://uk.webuy.com/search/?categoryIds=1037"


def session_with_page(content="<html><body><a href='/product-detail?id=1'>x</a></body></html>", status=200):
    page = AsyncMock()
    page.url = URL
    page.goto.return_value = SimpleNamespace(status=status)
    page.content.return_value = content
    session = BrowserSession(blocked_resource_types=[])
    session._page = page
    return session, page


@pytest.mark.asyncio
async def test_render_returns_markup():
    session, page = session_with_page()

    markup = await session.render(URL)

    assert "product-detail" in markup
    page.goto.assert_awaited_once()
    page.wait_for_selector.assert_awaited_once()


@pytest.mark.asyncio
async def test_navigation_timeout_is_transient():
    session, page = session_with_page()
    page.goto.side_effect = PlaywrightTimeoutError("Timeout 30000ms exceeded")

    with pytest.raises(TransientSourceError):
        await session.render(URL)


@pytest.mark.asyncio
async def test_missing_selector_is_not_a_failure():
    session, page = session_with_page(content="<html><body>empty</body></html>")
    page.wait_for_selector.side_effect = PlaywrightTimeoutError("no links")
    page.wait_for_function.side_effect = PlaywrightTimeoutError("spinner")

    assert await session.render(URL) == "<html><body>empty</body></html>"


@pytest.mark.asyncio
async def test_error_page_detected():
    session, _ = session_with_page(content="<h1>Oh crumbs! Something went wrong</h1>")

    with pytest.raises(UpstreamErrorPage):
        await session.render(URL)


@pytest.mark.asyncio
async def test_http_error_status():
    session, _ = session_with_page(status=503)

    with pytest.raises(TransientSourceError) as exc_info:
        await session.render(URL)
    assert exc_info.value.status == 503


def test_page_requires_start():
    with pytest.raises(RuntimeError):
        BrowserSession().page


@pytest.mark.asyncio
async def test_close_without_start_is_safe():
    session = BrowserSession()
    await session.close()
    await session.close()


@pytest.mark.asyncio
async def test_close_releases_browser_when_context_close_fails():
    session = BrowserSession()
    context, browser, driver = AsyncMock(), AsyncMock(), AsyncMock()
    context.close.side_effect = PlaywrightError("Target closed")
    session._context, session._browser, session._playwright = context, browser, driver

    await session.close()

    browser.close.assert_awaited_once()
    driver.stop.assert_awaited_once()
    assert session._browser is None
    assert session._playwright is None
