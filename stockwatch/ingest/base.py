"""Core records shared by the availability resolver and the listing scraper."""

import hashlib
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse


class StoreStrategy(Enum):
    """Where a store name came from."""
    RECORD_FIELD = "record_field"
    JSON_ARRAY = "json_array"
    DATA_ATTRIBUTE = "data_attribute"
    TEXT_WINDOW = "text_window"
    LIST_ELEMENT = "list_element"
    SCRIPT_STATE = "script_state"
    STORE_ID_LOOKUP = "store_id_lookup"
    STORE_API = "store_api"
    CAPITALISED_TEXT = "capitalised_text"
    SEARCH_PROBE = "search_probe"


class Confidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class StoreHit:
    """A store name plus the strategy that produced it."""
    name: str
    strategy: StoreStrategy
    confidence: Confidence


def merge_store_hits(*groups) -> tuple[tuple[str, ...], tuple[StoreHit, ...]]:
    """Union hit groups into (sorted unique names, hits ordered by name).

    When several strategies report the same name, the most confident hit wins.
    """
    rank = {Confidence.HIGH: 0, Confidence.MEDIUM: 1, Confidence.LOW: 2}
    best: dict[str, StoreHit] = {}
    for hits in groups:
        for hit in hits:
            name = hit.name.strip()
            if not name:
                continue
            current = best.get(name)
            if current is None or rank[hit.confidence] < rank[current.confidence]:
                best[name] = StoreHit(name, hit.strategy, hit.confidence)
    names = tuple(sorted(best))
    return names, tuple(best[n] for n in names)


@dataclass(frozen=True)
class ItemRecord:
    """Final availability record for one item.

    ``in_stock`` is derived from quantity and the out-of-stock flag at
    construction and cannot be passed in.
    """

    item_id: str
    canonical_url: str
    quantity: int = 0
    out_of_stock_flag: bool = False
    sell_allowed: bool = False
    name: Optional[str] = None
    price: Optional[str] = None
    image_url: Optional[str] = None
    stores: tuple[str, ...] = ()
    store_hits: tuple[StoreHit, ...] = ()
    source_status: Optional[int] = None
    source_note: str = "Unknown"
    api_url: Optional[str] = None
    debug_payload: Any = None
    in_stock: bool = field(init=False)

    def __post_init__(self):
        if self.quantity < 0:
            object.__setattr__(self, "quantity", 0)
        object.__setattr__(
            self, "in_stock", self.quantity > 0 and not self.out_of_stock_flag
        )

    @property
    def confident_stores(self) -> tuple[str, ...]:
        """Store names backed by at least one non-heuristic strategy."""
        return tuple(h.name for h in self.store_hits if h.confidence is not Confidence.LOW)

    @property
    def failed(self) -> bool:
        return self.source_note.startswith("Failed") or self.source_note == "Unknown"

    @classmethod
    def unknown(
        cls,
        item_id: str,
        canonical_url: str,
        note: str = "Unknown",
        status: Optional[int] = None,
        debug_payload: Any = None,
    ) -> "ItemRecord":
        """Record for an item whose availability could not be determined."""
        return cls(
            item_id=item_id,
            canonical_url=canonical_url,
            source_status=status,
            source_note=note,
            debug_payload=debug_payload,
        )


@dataclass(frozen=True)
class CategoryQuery:
    """One listing page request."""
    category_id: str
    store_selector: str
    page: int = 1

    def __post_init__(self):
        if self.page < 1:
            raise ValueError(f"page must be >= 1, got {self.page}")


@dataclass(frozen=True)
class ConditionFlags:
    has_manual: bool = False
    is_boxed: bool = False
    is_unboxed: bool = False
    has_no_manual: bool = False

    @property
    def is_complete(self) -> bool:
        """Boxed with manual, and nothing in the text contradicting either."""
        return self.has_manual and self.is_boxed and not self.is_unboxed and not self.has_no_manual


_PRICE_NUMBER = re.compile(r"(\d+(?:,\d{3})*(?:\.\d+)?)")


@dataclass(frozen=True)
class ListingItem:
    """One item card extracted from a listing page."""

    raw_name: str
    name: str
    url: Optional[str] = None
    price: Optional[str] = None
    image_url: Optional[str] = None
    container_text: str = ""
    condition: ConditionFlags = field(default_factory=ConditionFlags)
    category_id: Optional[str] = None
    store: Optional[str] = None

    @property
    def item_id(self) -> str:
        """Retailer id from the url's ``id=`` parameter, else a stable digest."""
        if self.url:
            ids = parse_qs(urlparse(self.url).query).get("id")
            if ids and ids[0]:
                return ids[0]
        digest = hashlib.sha1(f"{self.name}|{self.url or ''}".encode("utf-8")).hexdigest()
        return f"listing-{digest[:16]}"

    @property
    def price_value(self) -> Optional[float]:
        if not self.price:
            return None
        match = _PRICE_NUMBER.search(self.price)
        if not match:
            return None
        return float(match.group(1).replace(",", ""))


@dataclass(frozen=True)
class ListingPage:
    items: tuple[ListingItem, ...] = ()
    has_next_page: bool = False


@dataclass
class CategoryScanResult:
    """Outcome of scanning every page of one category."""
    category_id: str
    category_name: str
    items: list[ListingItem] = field(default_factory=list)
    pages_scanned: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ScanReport:
    """Outcome of a whole listing scan across categories."""
    results: list[CategoryScanResult] = field(default_factory=list)
    items: list[ListingItem] = field(default_factory=list)
    cancelled: bool = False

    @property
    def failed_categories(self) -> list[CategoryScanResult]:
        return [r for r in self.results if not r.ok]


class PageRenderer(ABC):
    """Control interface for a headless rendering engine."""

    @abstractmethod
    async def render(
        self,
        url: str,
        wait_for_selector: Optional[str] = None,
    ) -> str:
        """
        Navigate to a URL and return the rendered markup.

        Raises:
            TransientSourceError: If navigation fails or times out
            UpstreamErrorPage: If the retailer served its error page
        """
        pass
