"""Catalog settings: store groups, category lists and store-id lookups.

Loaded from ``settings.json`` merged with ``stores.json`` on top of built-in
defaults. Read-only once loaded; resolution passes share one instance.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from stockwatch.config import settings

logger = logging.getLogger(__name__)


DEFAULT_CATEGORY_MAP = {
    "1037": "SNES Software",
    "1055": "Mega Drive Software",
    "1052": "NES Software",
}


class StoreGroup(BaseModel):
    """Named, ordered set of store tokens."""

    name: str
    values: list[str] = Field(default_factory=list)


class CatalogSettings(BaseModel):
    """Everything the engine needs to know about the retailer's catalog."""

    product_ids: list[str] = Field(default_factory=list, alias="productIds")
    base_url: str = Field(default=settings.base_url, alias="baseUrl")
    search_url: str = Field(default=settings.search_url, alias="searchUrl")
    stores: list[Union[str, StoreGroup]] = Field(default_factory=list)
    category_ids: list[str] = Field(default_factory=lambda: ["1037"], alias="categoryIds")
    retro_category_ids: list[str] = Field(default_factory=list, alias="retroCategoryIds")
    disc_category_ids: list[str] = Field(default_factory=list, alias="discBasedGameCategoryIds")
    category_map: dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_CATEGORY_MAP), alias="categoryMap"
    )
    store_id_map: dict[str, str] = Field(default_factory=dict, alias="storeIdMap")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @field_validator("product_ids", "category_ids", "retro_category_ids", "disc_category_ids", mode="before")
    @classmethod
    def _coerce_id_list(cls, value):
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("expected a list of ids")
        return [str(v).strip() for v in value if str(v).strip()]

    @property
    def store_tokens(self) -> list[str]:
        """Flat, ordered list of every configured store token."""
        tokens: list[str] = []
        for entry in self.stores:
            values = [entry] if isinstance(entry, str) else entry.values
            for value in values:
                if value not in tokens:
                    tokens.append(value)
        return tokens

    @property
    def store_groups(self) -> list[StoreGroup]:
        return [entry for entry in self.stores if isinstance(entry, StoreGroup)]

    def get_group(self, name: str) -> Optional[StoreGroup]:
        for group in self.store_groups:
            if group.name.lower() == name.lower():
                return group
        return None

    def category_name(self, category_id: str) -> str:
        return self.category_map.get(category_id, f"Category {category_id}")

    def lookup_store_id(self, store_id: str) -> Optional[str]:
        """Translate an opaque store id into a display name.

        Exact id match first, then a case-insensitive substring match of the
        id against the known store names.
        """
        if store_id in self.store_id_map:
            return self.store_id_map[store_id]
        needle = store_id.strip().lower()
        if not needle:
            return None
        for name in sorted(self.store_id_map.values()):
            if needle in name.lower():
                return name
        return None


def _read_json(path: Path) -> dict:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug(f"Catalog file not found: {path}")
        return {}
    except OSError as e:
        logger.warning(f"Could not read catalog file {path}: {e}")
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Ignoring malformed catalog file {path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring catalog file {path}: top level is not an object")
        return {}
    return data


def load_catalog_settings(
    settings_path: str | Path | None = None,
    stores_path: str | Path | None = None,
) -> CatalogSettings:
    """
    Load catalog settings, merging stores.json over settings.json over defaults.

    Args:
        settings_path: Path to settings.json (defaults to settings.catalog_settings_path)
        stores_path: Path to stores.json (defaults to settings.catalog_stores_path)

    Returns:
        CatalogSettings; defaults when both files are missing or invalid
    """
    merged: dict = {}
    merged.update(_read_json(Path(settings_path or settings.catalog_settings_path)))
    merged.update(_read_json(Path(stores_path or settings.catalog_stores_path)))

    try:
        catalog = CatalogSettings.model_validate(merged)
    except ValidationError as e:
        logger.warning(f"Catalog settings invalid, using defaults: {e.error_count()} error(s)")
        catalog = CatalogSettings()

    logger.info(
        f"Loaded catalog: {len(catalog.product_ids)} products, "
        f"{len(catalog.store_tokens)} stores, {len(catalog.store_groups)} groups"
    )
    return catalog
