"""HTTP access to the retailer with typed, status-aware errors."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from stockwatch.config import settings

logger = logging.getLogger(__name__)

# Every request-level failure (transport, protocol, proxy, redirect loops,
# decoding) counts as a transient source failure
TRANSIENT_EXC = (httpx.RequestError,)


class SourceError(RuntimeError):
    """Base class for upstream source failures."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientSourceError(SourceError):
    """Network error, timeout or non-tolerated status. Retried, then falls back."""
    pass


class MalformedPayloadError(SourceError):
    """Body could not be parsed or lacks the expected shape."""
    pass


class UpstreamErrorPage(SourceError):
    """The retailer served its error/maintenance page instead of content."""
    pass


class ExhaustedSourcesError(SourceError):
    """Every source in a fallback cascade failed."""

    def __init__(self, message: str, failures: Optional[list] = None):
        super().__init__(message)
        self.failures = failures or []


@dataclass
class TextResponse:
    """Body plus status of a successful fetch."""
    url: str
    status: int
    text: str


def browser_headers(accept: str = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8") -> dict[str, str]:
    """Get browser-like headers for retailer requests."""
    return {
        "User-Agent": settings.user_agent,
        "Accept": accept,
        "Accept-Language": settings.accept_language,
        "Referer": f"{settings.base_url.rstrip('/')}/",
        "Cache-Control": "no-cache",
        "Pragma": "no-cache",
    }


def json_headers() -> dict[str, str]:
    return browser_headers(accept="application/json, text/plain, */*")


def is_error_page(text: str, final_url: str = "") -> bool:
    """True when the body or the redirect target is the retailer's error page."""
    if final_url and "/error" in httpx.URL(final_url).path.lower():
        return True
    return settings.error_page_marker in text.lower()


def create_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    """Create an AsyncClient configured for the retailer."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout or settings.request_timeout_seconds),
        follow_redirects=True,
    )


async def fetch_text(
    client: httpx.AsyncClient,
    url: str,
    headers: Optional[dict[str, str]] = None,
) -> TextResponse:
    """
    GET a rendered page.

    Raises:
        TransientSourceError: Transport failure or non-2xx status
        UpstreamErrorPage: Retailer error page (marker text or /error redirect)
    """
    try:
        resp = await client.get(url, headers=headers or browser_headers())
    except TRANSIENT_EXC as e:
        raise TransientSourceError(f"{type(e).__name__} fetching {url}") from e

    text = resp.text
    if is_error_page(text, str(resp.url)):
        raise UpstreamErrorPage(f"Retailer error page for {url}", status=resp.status_code)
    if not 200 <= resp.status_code < 300:
        raise TransientSourceError(f"HTTP {resp.status_code} for {url}", status=resp.status_code)

    return TextResponse(url=str(resp.url), status=resp.status_code, text=text)


def parse_json(text: str, url: str = "") -> Any:
    """Parse a JSON body, raising MalformedPayloadError on failure."""
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedPayloadError(f"Invalid JSON from {url or 'response'}: {e}") from e


@dataclass
class JsonResponse:
    """Parsed JSON body plus status. ``data`` is None for unparseable error bodies."""
    url: str
    status: int
    data: Any


async def request_json(
    client: httpx.AsyncClient,
    url: str,
    method: str = "GET",
    body: Optional[dict] = None,
) -> JsonResponse:
    """
    Request a JSON document.

    Status codes are reported, not raised, so callers can decide which ones
    they tolerate.

    Raises:
        TransientSourceError: Transport failure or timeout
        MalformedPayloadError: A 2xx body that is not JSON
    """
    try:
        if method == "POST":
            resp = await client.post(url, json=body or {}, headers=json_headers())
        else:
            resp = await client.get(url, headers=json_headers())
    except TRANSIENT_EXC as e:
        raise TransientSourceError(f"{type(e).__name__} fetching {url}") from e

    if 200 <= resp.status_code < 300:
        data = parse_json(resp.text, url)
    else:
        try:
            data = json.loads(resp.text)
        except (json.JSONDecodeError, TypeError):
            data = None

    return JsonResponse(url=str(resp.url), status=resp.status_code, data=data)
