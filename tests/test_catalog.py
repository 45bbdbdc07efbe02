"""Tests for catalog settings loading and lookups."""

import json

from stockwatch.catalog import CatalogSettings, StoreGroup, load_catalog_settings


def write(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_defaults_when_files_missing(tmp_path):
    catalog = load_catalog_settings(tmp_path / "settings.json", tmp_path / "stores.json")

    assert catalog.product_ids == []
    assert catalog.category_ids == ["1037"]
    assert catalog.category_name("1055") == "Mega Drive Software"
    assert catalog.store_tokens == []


def test_stores_file_overrides_settings_file(tmp_path):
    settings_path = write(tmp_path / "settings.json", {
        "productIds": [5030917, "SKU2"],
        "categoryIds": [1037, 1055],
        "stores": ["Ignored"],
    })
    stores_path = write(tmp_path / "stores.json", {
        "stores": [
            "Poole",
            {"name": "Dorset", "values": ["Bournemouth+-+Castlepoint", "Poole"]},
        ],
        "storeIdMap": {"42": "Poole"},
    })

    catalog = load_catalog_settings(settings_path, stores_path)

    assert catalog.product_ids == ["5030917", "SKU2"]
    assert catalog.category_ids == ["1037", "1055"]
    assert catalog.store_tokens == ["Poole", "Bournemouth+-+Castlepoint"]
    assert [g.name for g in catalog.store_groups] == ["Dorset"]


def test_malformed_file_is_ignored(tmp_path):
    settings_path = tmp_path / "settings.json"
    settings_path.write_text("{not json", encoding="utf-8")
    stores_path = write(tmp_path / "stores.json", ["not", "an", "object"])

    catalog = load_catalog_settings(settings_path, stores_path)

    assert catalog == CatalogSettings()


def test_invalid_shape_falls_back_to_defaults(tmp_path):
    settings_path = write(tmp_path / "settings.json", {"categoryIds": "1037"})

    catalog = load_catalog_settings(settings_path, tmp_path / "missing.json")

    assert catalog.category_ids == ["1037"]


def test_get_group_is_case_insensitive():
    catalog = CatalogSettings(stores=[StoreGroup(name="Dorset", values=["Poole"])])
    assert catalog.get_group("dorset").values == ["Poole"]
    assert catalog.get_group("Hampshire") is None


def test_lookup_store_id():
    catalog = CatalogSettings(storeIdMap={"42": "Poole", "7": "Bournemouth - Castlepoint"})

    assert catalog.lookup_store_id("42") == "Poole"
    assert catalog.lookup_store_id("castle") == "Bournemouth - Castlepoint"
    assert catalog.lookup_store_id("999") is None
    assert catalog.lookup_store_id("  ") is None


def test_unknown_category_name():
    assert CatalogSettings().category_name("9999") == "Category 9999"
