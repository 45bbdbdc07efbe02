"""Tests for listing-page card extraction and name handling."""

import pytest

from stockwatch.ingest.listing_extractor import (
    ListingExtractor,
    clean_product_name,
    condition_flags,
    filter_product_name,
    is_valid_product_name,
)

BASE = "https://uk.webuy.com"


def product_card(box_id, name, price, condition="Boxed, w/ Manual"):
    return (
        '<div class="search-product-card">'
        f'<a href="/product-detail?id={box_id}"><img src="/img/{box_id}.jpg"></a>'
        f'<a href="/product-detail?id={box_id}">{name}</a>'
        f'<div class="product-main-price">£{price}</div>'
        f"<p>{condition}</p>"
        "</div>"
    )


class TestListingExtractor:
    def setup_method(self):
        self.extractor = ListingExtractor(base_url=BASE)

    def test_product_cards(self):
        markup = product_card("SKU1", "The Legend of Zelda", "45.00") + product_card("SKU2", "Sonic Adventure", "12.50")

        page = self.extractor.extract_page(markup)

        assert [item.name for item in page.items] == ["The Legend of Zelda", "Sonic Adventure"]
        first = page.items[0]
        assert first.url == "https://uk.webuy.com/product-detail?id=SKU1"
        assert first.item_id == "SKU1"
        assert first.price == "£45.00"
        assert first.price_value == 45.0
        assert first.image_url == "https://uk.webuy.com/img/SKU1.jpg"
        assert first.condition.is_complete
        assert page.has_next_page

    def test_duplicate_links_collapse_to_one_item(self):
        markup = product_card("SKU1", "The Legend of Zelda", "45.00") * 2
        page = self.extractor.extract_page(markup)
        assert len(page.items) == 1

    def test_container_fallback_without_product_links(self):
        markup = (
            '<div class="product-tile"><h3>Sonic the Hedgehog</h3>'
            '<span class="price">£10.00</span><a href="/p/2">more</a></div>'
        )
        page = self.extractor.extract_page(markup)

        assert len(page.items) == 1
        item = page.items[0]
        assert item.name == "Sonic the Hedgehog"
        assert item.url == "https://uk.webuy.com/p/2"
        assert item.price == "£10.00"

    def test_class_heuristic_when_no_known_container(self):
        markup = "<section><div class='result-box'><h2>Streets of Rage</h2></div></section>"
        page = self.extractor.extract_page(markup)
        assert [item.name for item in page.items] == ["Streets of Rage"]
        assert page.items[0].url is None
        assert page.items[0].item_id.startswith("listing-")

    def test_console_suffix_and_inline_price_stripped(self):
        markup = product_card("SKU3", "Super Mario World Super NES Software £45.00", "45.00")
        page = self.extractor.extract_page(markup, show_all=True)
        assert page.items[0].name == "Super Mario World"
        assert page.items[0].raw_name == "Super Mario World Super NES Software £45.00"

    def test_empty_page(self):
        page = self.extractor.extract_page("")
        assert page.items == ()
        assert not page.has_next_page

    def test_explicit_next_page_signal_wins(self):
        markup = product_card("SKU1", "The Legend of Zelda", "45.00")
        assert not self.extractor.extract_page(markup, has_next_page=False).has_next_page
        assert self.extractor.extract_page("<p></p>", has_next_page=True).has_next_page


class TestProductNames:
    @pytest.mark.parametrize("text,show_all,expected", [
        ("The Legend of Zelda", False, True),
        ("Add to basket", False, False),
        ("filter-results", False, False),
        ("BUTTON", False, False),
        ("a.b-c", False, False),
        ("Mario", False, True),
        ("Mario 64", True, True),
        ("<b>Mario</b>", True, False),
        ("ab", True, False),
        ("12345678", True, False),
        ("", True, False),
    ])
    def test_is_valid_product_name(self, text, show_all, expected):
        assert is_valid_product_name(text, show_all) is expected

    def test_clean_product_name(self):
        assert clean_product_name("1Sonic the Hedgehog Mega Drive Software") == "Sonic the Hedgehog"
        assert clean_product_name(", Streets of Rage £12.00") == "Streets of Rage"

    @pytest.mark.parametrize("name,expected", [
        ("Zelda, + Manual, Boxed", "Zelda"),
        ("Zelda, + Manual", "Zelda"),
        ("Zelda, w/ Manual, Boxed", "Zelda"),
        ("Zelda, w/ Manual", "Zelda"),
        ("Zelda, Boxed", "Zelda"),
        ("Zelda,", "Zelda"),
        ("Zelda", "Zelda"),
    ])
    def test_filter_product_name(self, name, expected):
        assert filter_product_name(name) == expected


class TestConditionFlags:
    def test_complete(self):
        flags = condition_flags("Zelda, Boxed, w/ Manual")
        assert flags.has_manual and flags.is_boxed
        assert flags.is_complete

    def test_unboxed_is_never_boxed(self):
        flags = condition_flags("Zelda Unboxed with manual")
        assert flags.is_unboxed
        assert not flags.is_boxed
        assert not flags.is_complete

    def test_no_manual(self):
        flags = condition_flags("Zelda Boxed without manual")
        assert flags.is_boxed
        assert flags.has_no_manual
        assert not flags.has_manual
        assert not flags.is_complete
