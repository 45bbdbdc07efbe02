"""Item-card extraction from rendered listing/search pages."""

import html
import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import urljoin

from selectolax.parser import HTMLParser, Node

from stockwatch.config import settings
from stockwatch.ingest.base import ConditionFlags, ListingItem, ListingPage
from stockwatch.normalize.processor import parse_price_text

logger = logging.getLogger(__name__)

PRODUCT_LINK_SELECTOR = 'a[href*="product-detail"]'

# Explicit item-card containers, tried when no product links exist
CONTAINER_SELECTORS = (
    '[data-testid="product-tile"]',
    ".product-tile",
    ".product-item",
    ".search-result-item",
    ".search-product-card",
)

# Class-name fragments that usually mark an item card
CARD_CLASS_HINTS = ("product", "card", "item", "result")

NAME_SELECTORS = (
    PRODUCT_LINK_SELECTOR,
    "h1, h2, h3, h4",
    ".product-name, .product-title, .card-title, .title",
    "[class*='name'], [class*='title']",
    "span",
    "div",
)

PRICE_SELECTOR = ".product-main-price, [class*='price'], [class*='cost'], [class*='amount'], .price"

CONSOLE_SUFFIXES = (
    "Super NES Software",
    "Mega Drive Software",
    "SNES Software",
    "NES Software",
)

MANUAL_PHRASES = ("w/ manual", "with manual", "+ manual", "manual included")
BOXED_PHRASES = ("boxed", "in box", "original box")
UNBOXED_PHRASES = ("unboxed", "loose", "no box", "disc only")
NO_MANUAL_PHRASES = ("w/o manual", "without manual", "no manual")

# Strict-mode rejects: CSS noise, UI chrome and navigation text
REJECT_PATTERNS = [
    re.compile(r"^(find|search|store|field|border|radius|autocomplete|button|input|form|div|span|class|id)", re.I),
    re.compile(r"^(x-|cex-|uk-|web-)", re.I),
    re.compile(r"^(\.|#)"),
    re.compile(r"^[A-Z]{2,}$"),
    re.compile(r"^[a-z\-]+$"),
    re.compile(r"^(filter|sort|view|show|hide|load|more|next|prev|page|result|found)", re.I),
    re.compile(r"^(price|condition|console|platform|category|brand)", re.I),
    re.compile(r"^(add|remove|select|choose|pick|buy|sell|trade)", re.I),
    re.compile(r"^(home|back|forward|up|down|left|right|top|bottom)", re.I),
    re.compile(r"^(menu|nav|header|footer|sidebar|main|content)", re.I),
]

_MARKUP_NOISE = ("<", ">", "&lt;", "&gt;")
_ALPHA = re.compile(r"[A-Za-z]")

# Trailing condition suffixes on listing names, applied in order
_NAME_SUFFIXES = [
    re.compile(r",\s*\+?\s*Manual\s*,?\s*Boxed\s*,?\s*$", re.I),
    re.compile(r",\s*\+?\s*Manual\s*,?\s*$", re.I),
    re.compile(r",\s*w/\s*Manual\s*,?\s*Boxed\s*,?\s*$", re.I),
    re.compile(r",\s*w/\s*Manual\s*,?\s*$", re.I),
    re.compile(r",\s*Boxed\s*,?\s*$", re.I),
    re.compile(r",\s*$"),
]


def is_valid_product_name(text: str, show_all: bool = False) -> bool:
    """
    Whether a text fragment plausibly names a product.

    ``show_all`` only rejects markup, lengths outside 3..300 and text that is
    less than 30% letters. Strict mode also rejects CSS-like tokens, lengths
    outside 5..200, text under 50% letters and known UI/navigation words.
    """
    if not text:
        return False
    if any(noise in text for noise in _MARKUP_NOISE):
        return False

    alpha = len(_ALPHA.findall(text))
    if show_all:
        return 3 <= len(text) <= 300 and alpha >= len(text) * 0.3

    if "." in text and "-" in text:
        return False
    if any("." in word or ("-" in word and len(word) < 4) for word in text.split(" ")):
        return False
    if not 5 <= len(text) <= 200:
        return False
    if alpha < len(text) * 0.5:
        return False
    return not any(pattern.search(text) for pattern in REJECT_PATTERNS)


def clean_product_name(name: str, console_suffixes: Iterable[str] = CONSOLE_SUFFIXES) -> str:
    """Strip leading counters, console names and inline prices from a card name."""
    cleaned = re.sub(r"^\d+", "", name)
    for suffix in sorted(console_suffixes, key=len, reverse=True):
        cleaned = re.sub(re.escape(suffix), "", cleaned, flags=re.I)
    cleaned = re.sub(r"£[0-9.,]+", "", cleaned)
    cleaned = re.sub(r"^\s*,\s*", "", cleaned)
    return " ".join(cleaned.split())


def filter_product_name(name: str) -> str:
    """Drop trailing ", + Manual", ", w/ Manual, Boxed", ", Boxed" style suffixes."""
    for pattern in _NAME_SUFFIXES:
        name = pattern.sub("", name)
    return name.strip()


def condition_flags(text: str) -> ConditionFlags:
    """Manual/boxed flags from the full card text."""
    lowered = text.lower()
    is_unboxed = any(p in lowered for p in UNBOXED_PHRASES)
    return ConditionFlags(
        has_manual=any(p in lowered for p in MANUAL_PHRASES),
        is_boxed=not is_unboxed and any(p in lowered for p in BOXED_PHRASES),
        is_unboxed=is_unboxed,
        has_no_manual=any(p in lowered for p in NO_MANUAL_PHRASES),
    )


def _text(node: Optional[Node], separator: str = " ") -> str:
    if node is None:
        return ""
    return " ".join(html.unescape(node.text(separator=separator)).split())


def _class_hint(node: Node) -> bool:
    classes = (node.attributes.get("class") or "").lower()
    return any(hint in classes for hint in CARD_CLASS_HINTS)


def _card_for_link(link: Node, max_levels: int = 5) -> Node:
    """Nearest ancestor that looks like a card, else the nearest div."""
    first_div = None
    node = link.parent
    level = 0
    while node is not None and node.tag not in ("body", "html") and level < max_levels:
        if _class_hint(node):
            return node
        if first_div is None and node.tag == "div":
            first_div = node
        node = node.parent
        level += 1
    return first_div or link.parent or link


def _outermost(nodes: List[Node]) -> List[Node]:
    """Drop matches nested inside another match."""
    ids = {n.mem_id for n in nodes}
    outer = []
    for node in nodes:
        parent = node.parent
        nested = False
        while parent is not None:
            if parent.mem_id in ids:
                nested = True
                break
            parent = parent.parent
        if not nested:
            outer.append(node)
    return outer


class ListingExtractor:
    """
    Extract item cards from one listing page.

    Args:
        base_url: Base for absolutising item and image URLs
        console_suffixes: Category names stripped from item names
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        console_suffixes: Iterable[str] = CONSOLE_SUFFIXES,
    ):
        self.base_url = (base_url or settings.base_url).rstrip("/") + "/"
        self.console_suffixes = tuple(console_suffixes)

    def _cards(self, tree: HTMLParser) -> List[tuple[Node, Optional[Node]]]:
        """(card, product link) pairs from the first container strategy that matches."""
        links = tree.css(PRODUCT_LINK_SELECTOR)
        if links:
            return [(_card_for_link(link), link) for link in links]

        for selector in CONTAINER_SELECTORS:
            nodes = tree.css(selector)
            if nodes:
                return [(node, None) for node in nodes]

        for hint in CARD_CLASS_HINTS:
            nodes = _outermost(tree.css(f"[class*='{hint}']"))
            if nodes:
                logger.debug(f"Using class heuristic '{hint}' for {len(nodes)} cards")
                return [(node, None) for node in nodes]
        return []

    def _name(self, card: Node, link: Optional[Node], show_all: bool) -> Optional[str]:
        candidates = []
        if link is not None:
            candidates.append(_text(link))
        for selector in NAME_SELECTORS:
            for node in card.css(selector):
                candidates.append(_text(node))
        for candidate in candidates:
            if is_valid_product_name(candidate, show_all):
                return candidate
        return None

    def _url(self, card: Node, link: Optional[Node]) -> Optional[str]:
        node = link if link is not None else (card.css_first(PRODUCT_LINK_SELECTOR) or card.css_first("a[href]"))
        href = node.attributes.get("href") if node is not None else None
        if not href and card.tag == "a":
            href = card.attributes.get("href")
        return urljoin(self.base_url, href.strip()) if href else None

    def _price(self, card: Node, card_text: str) -> Optional[str]:
        scopes = [card]
        if card.parent is not None:
            scopes.append(card.parent)
        for scope in scopes:
            for node in scope.css(PRICE_SELECTOR):
                price = parse_price_text(_text(node))
                if price:
                    return price
        return parse_price_text(card_text)

    def _image(self, card: Node) -> Optional[str]:
        scope = card
        for _ in range(3):
            if scope is None:
                break
            for img in scope.css("img"):
                src = (img.attributes.get("src") or img.attributes.get("data-src") or "").strip()
                if src and not src.startswith("data:"):
                    return urljoin(self.base_url, src)
            scope = scope.parent
        return None

    def extract_page(
        self,
        markup: str,
        show_all: bool = False,
        has_next_page: Optional[bool] = None,
    ) -> ListingPage:
        """
        Extract every item card from a page. Never raises.

        Args:
            markup: Rendered page markup
            show_all: Use lenient name validation
            has_next_page: Caller's continuation signal; when None, a page
                that produced items is assumed to have a successor

        Returns:
            ListingPage with cards de-duplicated by (name, url)
        """
        try:
            items = self._extract(markup or "", show_all)
        except Exception as e:
            logger.warning(f"Listing extraction failed: {e}")
            items = []

        if has_next_page is None:
            has_next_page = bool(items)
        return ListingPage(items=tuple(items), has_next_page=has_next_page)

    def _extract(self, markup: str, show_all: bool) -> List[ListingItem]:
        tree = HTMLParser(markup)
        items: List[ListingItem] = []
        seen: set[tuple[str, Optional[str]]] = set()

        for card, link in self._cards(tree):
            raw_name = self._name(card, link, show_all)
            if not raw_name:
                continue
            name = clean_product_name(raw_name, self.console_suffixes)
            if len(name) < 3:
                continue

            url = self._url(card, link)
            key = (name, url)
            if key in seen:
                continue
            seen.add(key)

            card_text = _text(card)
            items.append(
                ListingItem(
                    raw_name=raw_name,
                    name=name,
                    url=url,
                    price=self._price(card, card_text),
                    image_url=self._image(card),
                    container_text=card_text,
                    condition=condition_flags(f"{name} {card_text}"),
                )
            )

        logger.debug(f"Extracted {len(items)} listing items")
        return items
