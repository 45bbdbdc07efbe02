"""Stock facts from a structured-API box record."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from stockwatch.ingest.base import Confidence, StoreHit, StoreStrategy
from stockwatch.ingest.json_extractor import element_store_name, first_text, to_number
from stockwatch.normalize.processor import format_price

logger = logging.getLogger(__name__)

NAME_FIELDS = ("boxName", "name", "title", "productName")

PRICE_FIELDS = (
    "sellPrice",
    "cashPrice",
    "exchangePrice",
    "firstPrice",
    "previousPrice",
    "sellingPrice",
    "price",
    "cost",
    "amount",
    "value",
    "ecomSellingPrice",
    "webPrice",
    "onlinePrice",
)

IMAGE_SIZES = ("large", "medium", "small")

# Array-valued fields that may list stores directly on the record
STORE_FIELDS = (
    "stores",
    "storeStock",
    "storeAvailability",
    "availableStores",
    "storesWithStock",
    "branches",
    "locations",
)


@dataclass(frozen=True)
class StockFacts:
    """Classifier output for one box record."""
    quantity: int
    out_of_stock_flag: bool
    sell_allowed: bool
    name: Optional[str]
    price: Optional[str]
    image_url: Optional[str]

    @property
    def in_stock(self) -> bool:
        return self.quantity > 0 and not self.out_of_stock_flag


def box_details(payload: Any) -> Optional[List[Dict[str, Any]]]:
    """``response.data.boxDetails`` when it is a non-empty list of objects."""
    if not isinstance(payload, dict):
        return None
    response = payload.get("response")
    data = response.get("data") if isinstance(response, dict) else None
    details = data.get("boxDetails") if isinstance(data, dict) else None
    if isinstance(details, list) and details and isinstance(details[0], dict):
        return details
    return None


def resolve_price(box: Dict[str, Any]) -> Optional[str]:
    """First price field that is present, numeric, above zero and formattable."""
    for field in PRICE_FIELDS:
        value = box.get(field)
        if value is None or isinstance(value, bool):
            continue
        amount = to_number(value, default=-1)
        if amount <= 0:
            continue
        price = format_price(amount)
        if price is not None:
            return price
    return None


def resolve_image(box: Dict[str, Any]) -> Optional[str]:
    images = box.get("imageUrls")
    if isinstance(images, dict):
        for size in IMAGE_SIZES:
            value = images.get(size)
            if isinstance(value, str) and value:
                return value
    value = box.get("imageUrl")
    if isinstance(value, str) and value:
        return value
    images = box.get("images")
    if isinstance(images, list) and images and isinstance(images[0], str) and images[0]:
        return images[0]
    value = box.get("thumbnail")
    if isinstance(value, str) and value:
        return value
    return None


def classify_box(box: Dict[str, Any]) -> StockFacts:
    """Compute quantity, flags, name, price and image for one box record."""
    quantity = int(max(to_number(box.get("ecomQuantityOnHand"), 0), 0))
    out_of_stock = to_number(box.get("outOfStock"), 0) != 0
    sell_allowed = to_number(box.get("webSellAllowed"), 0) != 0

    return StockFacts(
        quantity=quantity,
        out_of_stock_flag=out_of_stock,
        sell_allowed=sell_allowed,
        name=first_text(box, NAME_FIELDS),
        price=resolve_price(box),
        image_url=resolve_image(box),
    )


def stock_note(box: Dict[str, Any], status: Optional[int]) -> str:
    """Diagnostic note mirroring the raw fields the verdict came from."""
    return (
        f"qty={box.get('ecomQuantityOnHand')}, outOfStock={box.get('outOfStock')}, "
        f"webSellAllowed={box.get('webSellAllowed')}, apiStatus={status}"
    )


def record_store_hits(box: Dict[str, Any]) -> List[StoreHit]:
    """Store names listed directly on the record's array fields."""
    hits = []
    for field in STORE_FIELDS:
        value = box.get(field)
        if not isinstance(value, list):
            continue
        for element in value:
            name = element_store_name(element)
            if name:
                hits.append(StoreHit(name, StoreStrategy.RECORD_FIELD, Confidence.HIGH))
    return hits
