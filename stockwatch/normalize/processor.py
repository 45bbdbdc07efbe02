"""Normalize markup into plain text and prices into display strings."""

import html
import logging
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Union

from selectolax.parser import HTMLParser

from stockwatch.config import settings

logger = logging.getLogger(__name__)

# Elements whose text is never visible content
NON_CONTENT_TAGS = ["script", "style", "noscript", "template"]

_WHITESPACE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")
_CURRENCY_NUMBER = re.compile(r"£\s*(\d[\d,]*(?:\.\d+)?)")
_BARE_NUMBER = re.compile(r"(\d[\d,]*(?:\.\d+)?)")

_TWO_PLACES = Decimal("0.01")


def markup_text(markup: str, separator: str = "\n") -> str:
    """
    Visible text of a document: scripts and styles removed, entities decoded,
    runs of spaces collapsed. Non-HTML input is returned decoded.
    """
    if not markup:
        return ""
    tree = HTMLParser(markup)
    tree.strip_tags(NON_CONTENT_TAGS)
    root = tree.body or tree.root
    text = root.text(separator=separator) if root is not None else ""
    text = html.unescape(text)
    text = _WHITESPACE.sub(" ", text)
    return _BLANK_LINES.sub("\n", text).strip()


def normalized_text(markup: str) -> str:
    """Lower-cased, single-spaced visible text for phrase matching."""
    return " ".join(markup_text(markup, separator=" ").lower().split())


def to_decimal(value: Union[str, int, float, Decimal, None]) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return None


def format_price(value: Union[str, int, float, Decimal, None], currency: str | None = None) -> Optional[str]:
    """Format a non-negative amount as ``£12.50``; None when it is not a number."""
    amount = to_decimal(value)
    if amount is None or not amount.is_finite() or amount < 0:
        return None
    try:
        amount = amount.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # Too many digits to show in pence
        return None
    return f"{currency or settings.currency_symbol}{amount}"


def parse_price_text(text: str, allow_bare: bool = False) -> Optional[str]:
    """
    Find a price in free text and return it formatted.

    Currency-prefixed numbers win; bare numbers only count when
    ``allow_bare`` is set.
    """
    if not text:
        return None
    match = _CURRENCY_NUMBER.search(text)
    if match is None and allow_bare:
        match = _BARE_NUMBER.search(text)
    if match is None:
        return None
    return format_price(match.group(1))
