"""Store-name extraction from heterogeneous response bodies.

Every strategy is a pure function of the body that returns store hits; the
extractor unions them into a sorted, de-duplicated set. A strategy that
fails to parse contributes nothing.
"""

import html
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

from selectolax.parser import HTMLParser

from stockwatch import metrics
from stockwatch.ingest.base import Confidence, StoreHit, StoreStrategy, merge_store_hits
from stockwatch.ingest.json_extractor import (
    element_store_name,
    extract_script_states,
    find_array_literals,
    walk_keyed_arrays,
)
from stockwatch.normalize.processor import markup_text

logger = logging.getLogger(__name__)


STORE_ARRAY_KEYS = ("storeStock", "storeAvailability", "stores", "availableStores")

TRIGGER_PHRASES = ("available", "in stock", "collect from", "pick up from", "check store stock")

TEXT_WINDOW = 200

# Tokens containing any of these words are UI chrome, not store names
UI_KEYWORDS = {
    "click", "here", "more", "view", "see", "select", "choose", "basket", "cart",
    "delivery", "online", "notify", "login", "sign", "account", "help", "search",
    "menu", "close", "open", "home", "sell", "buy", "exchange", "price", "prices",
    "add", "remove", "filter", "sort", "page", "next", "previous", "back",
}

# Generic capitalised words that are never store names on their own
STOP_WORDS = {
    "The", "And", "For", "With", "Our", "Your", "You", "We", "This", "That",
    "In", "Out", "Of", "To", "On", "At", "By", "Or", "From", "Stock", "Store",
    "Stores", "Online", "Home", "Delivery", "Basket", "Add", "Buy", "Sell",
    "Price", "Product", "Details", "Terms", "Conditions", "Privacy", "Policy",
    "Cookie", "Cookies", "Help", "Contact", "Us", "About", "Account", "Sign",
    "Search", "Menu", "Collect", "Today", "Check", "Available", "Notify",
    "Me", "Grade", "Boxed", "Unboxed", "Manual", "Games", "Software",
    "Console", "Consoles", "Phones", "Mobile", "Computing", "Electronics",
    "Music", "Film", "Films", "Tv", "Cash", "Voucher", "Trade", "Webuy",
    "Cex", "Uk", "Ltd", "Copyright", "All", "Rights", "Reserved", "Oh", "Crumbs",
}

_CAPITALISED_NAME = re.compile(
    r"^[A-Z][A-Za-z'&.]*(?:(?: - | |-)[A-Z0-9][A-Za-z0-9'&.]*)*$"
)
_CAPITALISED_RUN = re.compile(
    r"\b[A-Z][a-z]+(?:(?: - | )[A-Z][a-z]+)+\b"
)
_NUMERIC_ONLY = re.compile(r"^[\d\s.,£%:/-]+$")
_WORDS = re.compile(r"[A-Za-z]+")
_LEADING_FILLER = re.compile(r"^(?:(?:in|at|from|and)\b[:\s]*)+", re.IGNORECASE)


@dataclass
class StoreExtraction:
    """Extraction result: sorted names plus the hit behind each one."""
    names: tuple[str, ...] = ()
    hits: tuple[StoreHit, ...] = ()
    store_ids: tuple[str, ...] = ()

    def __bool__(self) -> bool:
        return bool(self.names)


@dataclass
class _Scan:
    """Intermediate state shared by the ordered strategies of one extraction."""
    body: str
    decoded: str
    tree: Optional[HTMLParser] = None
    text: Optional[str] = None
    store_ids: list[str] = field(default_factory=list)


def _hits(names: Iterable[Optional[str]], strategy: StoreStrategy, confidence: Confidence) -> List[StoreHit]:
    out = []
    for name in names:
        if name and name.strip():
            out.append(StoreHit(" ".join(name.split()), strategy, confidence))
    return out


def _has_ui_keyword(token: str) -> bool:
    return any(word.lower() in UI_KEYWORDS for word in _WORDS.findall(token))


def _looks_like_json(body: str) -> bool:
    return body.lstrip()[:1] in ("{", "[")


def from_json_arrays(scan: _Scan) -> List[StoreHit]:
    """Array literals after known store keys, anywhere in the body."""
    names = []
    for array in find_array_literals(scan.decoded, STORE_ARRAY_KEYS):
        names.extend(element_store_name(element) for element in array)
    return _hits(names, StoreStrategy.JSON_ARRAY, Confidence.HIGH)


def from_data_attributes(scan: _Scan) -> List[StoreHit]:
    """``data-store-name`` values; ``data-store-id`` values are kept for id lookup."""
    if scan.tree is None:
        return []
    names = []
    for node in scan.tree.css("[data-store-name]"):
        names.append(node.attributes.get("data-store-name"))
    for node in scan.tree.css("[data-store-id]"):
        store_id = (node.attributes.get("data-store-id") or "").strip()
        if store_id and store_id not in scan.store_ids:
            scan.store_ids.append(store_id)
    return _hits(names, StoreStrategy.DATA_ATTRIBUTE, Confidence.HIGH)


def from_text_windows(scan: _Scan) -> List[StoreHit]:
    """Comma/semicolon/pipe separated tokens shortly after trigger phrases."""
    text = scan.text or ""
    lowered = text.lower()
    names = []
    for phrase in TRIGGER_PHRASES:
        start = 0
        while True:
            index = lowered.find(phrase, start)
            if index < 0:
                break
            window = text[index + len(phrase): index + len(phrase) + TEXT_WINDOW]
            window = window.lstrip(" :-\n")
            for token in re.split(r"[,;|\n]", window):
                token = _LEADING_FILLER.sub("", token.strip(" .:-")).strip()
                if len(token) < 3 or len(token) > 50:
                    continue
                if _NUMERIC_ONLY.match(token) or _has_ui_keyword(token):
                    continue
                if not _CAPITALISED_NAME.match(token):
                    continue
                names.append(token)
            start = index + len(phrase)
    return _hits(names, StoreStrategy.TEXT_WINDOW, Confidence.MEDIUM)


def from_list_elements(scan: _Scan) -> List[StoreHit]:
    """``<li>`` and ``<option>`` text shaped like a capitalised place name."""
    if scan.tree is None:
        return []
    names = []
    for node in scan.tree.css("li, option"):
        text = " ".join(html.unescape(node.text(strip=True)).split())
        if not 3 <= len(text) <= 50:
            continue
        if not _CAPITALISED_NAME.match(text) or _has_ui_keyword(text):
            continue
        if text in STOP_WORDS:
            continue
        names.append(text)
    return _hits(names, StoreStrategy.LIST_ELEMENT, Confidence.MEDIUM)


def from_script_state(scan: _Scan) -> List[StoreHit]:
    """Arrays under any key containing "store" in embedded or top-level JSON."""
    states = []
    if _looks_like_json(scan.body):
        try:
            states.append(json.loads(scan.body))
        except json.JSONDecodeError:
            logger.debug("Body looked like JSON but did not parse")
    else:
        states.extend(extract_script_states(scan.body))

    names = []
    for state in states:
        for array in walk_keyed_arrays(state, "store"):
            names.extend(element_store_name(element) for element in array)
    return _hits(names, StoreStrategy.SCRIPT_STATE, Confidence.HIGH)


def from_capitalised_text(scan: _Scan) -> List[StoreHit]:
    """Capitalised multi-word runs in plain text. Approximate by nature."""
    names = []
    for match in _CAPITALISED_RUN.finditer(scan.text or ""):
        token = match.group(0)
        if not 3 <= len(token) <= 30:
            continue
        words = [w for w in re.split(r" - | ", token) if w]
        if any(w in STOP_WORDS for w in words):
            continue
        names.append(token)
    return _hits(names, StoreStrategy.CAPITALISED_TEXT, Confidence.LOW)


Strategy = Callable[[_Scan], List[StoreHit]]

# Ordered; all run, results are unioned
PRIMARY_STRATEGIES: tuple[Strategy, ...] = (
    from_json_arrays,
    from_data_attributes,
    from_text_windows,
    from_list_elements,
    from_script_state,
)


class StoreNameExtractor:
    """
    Union of independent store-name strategies over one response body.

    Args:
        store_id_lookup: Maps an opaque store id to a display name, or None
        strategies: Primary strategies, in order
    """

    def __init__(
        self,
        store_id_lookup: Optional[Callable[[str], Optional[str]]] = None,
        strategies: tuple[Strategy, ...] = PRIMARY_STRATEGIES,
    ):
        self.store_id_lookup = store_id_lookup
        self.strategies = strategies

    def _prepare(self, body: str) -> _Scan:
        decoded = html.unescape(body)
        scan = _Scan(body=body, decoded=decoded)
        if not _looks_like_json(body):
            scan.tree = HTMLParser(body)
            scan.text = markup_text(body)
        return scan

    def _run(self, strategy: Strategy, scan: _Scan, item_id: str) -> List[StoreHit]:
        try:
            return strategy(scan)
        except Exception as e:
            logger.debug(f"Store strategy {strategy.__name__} failed for {item_id}: {e}")
            return []

    def _lookup_ids(self, store_ids: list[str]) -> List[StoreHit]:
        if self.store_id_lookup is None:
            return []
        names = []
        for store_id in store_ids:
            names.append(self.store_id_lookup(store_id))
        return _hits(names, StoreStrategy.STORE_ID_LOOKUP, Confidence.HIGH)

    def extract(self, raw_body: str, item_id: str = "") -> StoreExtraction:
        """
        Extract store names from a JSON or markup body.

        Returns:
            StoreExtraction with names sorted and de-duplicated
        """
        if not raw_body or not raw_body.strip():
            return StoreExtraction()

        try:
            scan = self._prepare(raw_body)
        except Exception as e:
            logger.debug(f"Could not prepare body for store extraction ({item_id}): {e}")
            return StoreExtraction()

        groups = [self._run(strategy, scan, item_id) for strategy in self.strategies]

        if scan.store_ids and not any(groups):
            groups.append(self._lookup_ids(scan.store_ids))

        if not any(groups):
            groups.append(self._run(from_capitalised_text, scan, item_id))

        names, hits = merge_store_hits(*groups)
        for hit in hits:
            metrics.store_names_found_total.labels(strategy=hit.strategy.value).inc()
        if names:
            logger.debug(f"Extracted {len(names)} store name(s) for {item_id}: {list(names)}")
        return StoreExtraction(names=names, hits=hits, store_ids=tuple(scan.store_ids))

    def extract_from_json(self, payload, item_id: str = "") -> StoreExtraction:
        """Recursive store search over an already-parsed JSON value."""
        try:
            body = json.dumps(payload)
        except (TypeError, ValueError) as e:
            logger.debug(f"Unserialisable store payload for {item_id}: {e}")
            return StoreExtraction()
        return self.extract(body, item_id)
