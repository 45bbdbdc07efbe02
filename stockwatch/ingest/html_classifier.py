"""Approximate stock status from a rendered product page."""

import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser

from stockwatch.config import settings
from stockwatch.normalize.processor import format_price, normalized_text, parse_price_text

logger = logging.getLogger(__name__)

IN_STOCK_PHRASES = (
    "in stock",
    "in stock online",
    "collect today",
    "check store stock",
    "available for home delivery",
    "we have",
    "add to basket",
)

OUT_OF_STOCK_PHRASES = (
    "out of stock",
    "not in stock",
    "currently unavailable",
    "we don't have any",
    "notify me",
    "sold out",
)

# Price-labelled elements, most specific first
PRICE_SELECTORS = (
    ".product-main-price",
    "[class*='price']",
    "[class*='cost']",
    "[class*='amount']",
    "[itemprop='price']",
)

NO_TITLE = "No title found"


@dataclass(frozen=True)
class HtmlVerdict:
    in_stock: bool
    note: str
    price: Optional[str] = None
    image_url: Optional[str] = None
    title: str = NO_TITLE


def detect_stock(text: str) -> tuple[bool, str]:
    """Stock verdict and note from lower-cased page text.

    Plain substring matching: "not in stock" hits both phrase sets and
    therefore reads as "Possibly in stock".
    """
    has_out = any(p in text for p in OUT_OF_STOCK_PHRASES)
    has_in = any(p in text for p in IN_STOCK_PHRASES)

    if has_out and not has_in:
        return False, "Out of stock"
    if has_in and not has_out:
        return True, "In stock"
    return False, "Possibly in stock" if has_in else "Unknown"


def extract_price(tree: HTMLParser, text: str) -> Optional[str]:
    """Price-labelled elements first, then any currency-prefixed number."""
    for selector in PRICE_SELECTORS:
        for node in tree.css(selector):
            price = parse_price_text(node.text(strip=True))
            if price is None and node.attributes.get("content"):
                price = format_price(node.attributes["content"])
            if price:
                return price
    match = re.search(r"(?:price|cost|amount)[^£]{0,40}(£\s*\d[\d,]*(?:\.\d+)?)", text)
    if match:
        return parse_price_text(match.group(1))
    return parse_price_text(text)


def extract_image(tree: HTMLParser, base_url: str) -> Optional[str]:
    for node in tree.css("img"):
        src = (node.attributes.get("src") or "").strip()
        if src and not src.startswith("data:"):
            return urljoin(f"{base_url.rstrip('/')}/", src)
    return None


def extract_title(tree: HTMLParser) -> str:
    node = tree.css_first("h1")
    if node is not None:
        title = " ".join(node.text(strip=True).split())
        if title:
            return title
    return NO_TITLE


def classify(markup: str, base_url: Optional[str] = None) -> HtmlVerdict:
    """
    Classify a product page from visible text alone.

    Args:
        markup: Raw page markup
        base_url: Base for absolutising image sources

    Returns:
        HtmlVerdict; in_stock is only True when in-stock phrases match and
        out-of-stock phrases do not
    """
    if not markup:
        return HtmlVerdict(in_stock=False, note="Unknown")

    tree = HTMLParser(markup)
    text = normalized_text(markup)
    in_stock, note = detect_stock(text)

    verdict = HtmlVerdict(
        in_stock=in_stock,
        note=note,
        price=extract_price(tree, text),
        image_url=extract_image(tree, base_url or settings.base_url),
        title=extract_title(tree),
    )
    logger.debug(f"Markup verdict: {verdict.note} price={verdict.price}")
    return verdict
