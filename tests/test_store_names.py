"""Tests for store-name extraction."""

import json

import pytest

from stockwatch.ingest.base import Confidence, StoreStrategy
from stockwatch.ingest.store_names import StoreNameExtractor


class TestStoreNameExtractor:
    """Each strategy in isolation, then the cascade as a whole."""

    def setup_method(self):
        self.extractor = StoreNameExtractor()

    def test_data_store_name_attributes(self):
        markup = (
            '<div data-store-name="Poole"></div>'
            '<div data-store-name="Bournemouth - Castlepoint"></div>'
        )
        result = self.extractor.extract(markup, "SKU1")
        assert result.names == ("Bournemouth - Castlepoint", "Poole")
        assert {h.strategy for h in result.hits} == {StoreStrategy.DATA_ATTRIBUTE}

    def test_json_array_elements(self):
        body = json.dumps({
            "storeStock": [
                {"storeName": "Poole"},
                "Boscombe",
                {"id": 3, "town": "Bournemouth"},
            ]
        })
        result = self.extractor.extract(body, "SKU1")
        assert result.names == ("Boscombe", "Bournemouth", "Poole")
        assert all(h.confidence is Confidence.HIGH for h in result.hits)

    def test_array_literal_inside_markup(self):
        markup = '<script>var cfg = {"availableStores": ["Poole", "Boscombe"]};</script>'
        result = self.extractor.extract(markup, "SKU1")
        assert result.names == ("Boscombe", "Poole")

    def test_html_escaped_array_literal(self):
        markup = '<div data-config="{&quot;stores&quot;: [&quot;Poole&quot;]}"></div>'
        result = self.extractor.extract(markup, "SKU1")
        assert "Poole" in result.names

    def test_next_data_script_state(self):
        state = {"props": {"pageProps": {"box": {"nearbyStoreList": [{"name": "Wimborne"}]}}}}
        markup = f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(state)}</script>'
        result = self.extractor.extract(markup, "SKU1")
        assert result.names == ("Wimborne",)
        assert result.hits[0].strategy is StoreStrategy.SCRIPT_STATE

    def test_text_window_after_trigger_phrase(self):
        markup = "<p>Available in: Poole, Bournemouth - Castlepoint; click here</p>"
        result = self.extractor.extract(markup, "SKU1")
        assert result.names == ("Bournemouth - Castlepoint", "Poole")
        assert all(h.confidence is Confidence.MEDIUM for h in result.hits)

    def test_text_window_drops_numeric_and_ui_tokens(self):
        markup = "<p>Collect from: 12, Click Here, Poole</p>"
        result = self.extractor.extract(markup, "SKU1")
        assert result.names == ("Poole",)

    def test_dropdown_options(self):
        markup = (
            "<select>"
            "<option>Select a store</option>"
            "<option>Poole</option>"
            "<option>Bournemouth - Castlepoint</option>"
            "</select>"
        )
        result = self.extractor.extract(markup, "SKU1")
        assert result.names == ("Bournemouth - Castlepoint", "Poole")
        assert {h.strategy for h in result.hits} == {StoreStrategy.LIST_ELEMENT}

    def test_store_ids_mapped_when_no_names(self):
        extractor = StoreNameExtractor(store_id_lookup={"42": "Poole"}.get)
        result = extractor.extract('<div data-store-id="42"></div>', "SKU1")
        assert result.names == ("Poole",)
        assert result.hits[0].strategy is StoreStrategy.STORE_ID_LOOKUP
        assert result.store_ids == ("42",)

    def test_store_ids_ignored_when_names_exist(self):
        extractor = StoreNameExtractor(store_id_lookup={"42": "Poole"}.get)
        result = extractor.extract('<div data-store-id="42" data-store-name="Boscombe"></div>', "SKU1")
        assert result.names == ("Boscombe",)

    def test_capitalised_text_is_last_resort_and_low_confidence(self):
        markup = "<p>stores near you: Bournemouth Castlepoint, and more</p>"
        result = self.extractor.extract(markup, "SKU1")
        assert result.names == ("Bournemouth Castlepoint",)
        assert result.hits[0].confidence is Confidence.LOW
        assert result.hits[0].strategy is StoreStrategy.CAPITALISED_TEXT

    def test_capitalised_text_skipped_when_other_strategies_hit(self):
        markup = '<p>Visit Bournemouth Castlepoint</p><div data-store-name="Poole"></div>'
        result = self.extractor.extract(markup, "SKU1")
        assert result.names == ("Poole",)

    @pytest.mark.parametrize("body", ["", "   ", "{not json", "[1, 2", "<div><p>", "null"])
    def test_malformed_input_never_raises(self, body):
        result = self.extractor.extract(body, "SKU1")
        assert result.names == ()

    def test_output_sorted_deduplicated_and_deterministic(self):
        markup = (
            '<div data-store-name="Poole"></div>'
            '<div data-store-name="Boscombe"></div>'
            '<div data-store-name="Poole"></div>'
            '<script>var s = {"stores": ["Boscombe", "Aldershot"]};</script>'
        )
        first = self.extractor.extract(markup, "SKU1")
        second = self.extractor.extract(markup, "SKU1")
        assert first.names == ("Aldershot", "Boscombe", "Poole")
        assert first.names == tuple(sorted(set(first.names)))
        assert first == second

    def test_sort_is_case_sensitive(self):
        body = json.dumps({"stores": ["poole", "Poole", "boscombe"]})
        result = self.extractor.extract(body, "SKU1")
        assert result.names == ("Poole", "boscombe", "poole")

    def test_extract_from_parsed_json(self):
        payload = {"data": {"branches": [], "storeList": [{"storeName": "Poole"}]}}
        result = self.extractor.extract_from_json(payload, "SKU1")
        assert result.names == ("Poole",)
