"""
Tests for canonical.py — pure text / number helpers.

Covers:
  - title_case / clean_title / canonicalize_name
  - parse_canonical_unit: multi-pack, single quantity, container, nothing found
  - clamp_gst_rate: nearest slab, tie-break, junk input
  - to_num / money_str
  - bias_query allow-list
  - quick_hsn_gst_hint keyword table
"""
from __future__ import annotations

import pytest

from canonical import (
    ALLOWED_DOMAINS,
    bias_query,
    canonicalize_name,
    clamp_gst_rate,
    clean_title,
    money_str,
    normalize_key,
    parse_canonical_unit,
    quick_hsn_gst_hint,
    title_case,
    to_num,
)


# ── title_case ─────────────────────────────────────────────────────────────────

class TestTitleCase:
    def test_collapses_and_capitalises(self):
        assert title_case("HINDUSTAN  unilever") == "Hindustan Unilever"

    def test_empty(self):
        assert title_case("") == ""
        assert title_case(None) == ""


# ── clean_title ────────────────────────────────────────────────────────────────

class TestCleanTitle:
    def test_marketing_and_marketplace_tail_removed(self):
        title = "Sensodyne Toothpaste - Buy Online at Best Price | Amazon.in"
        assert clean_title(title) == "Sensodyne Toothpaste"

    def test_pipe_tail_removed(self):
        assert clean_title("Colgate MaxFresh | Great Deals") == "Colgate Maxfresh"

    def test_medical_page_phrase_removed(self):
        assert clean_title("Dolo 650 Tablet View Uses, Side Effects, Price") == "Dolo 650 Tablet"

    def test_leading_buy_removed(self):
        assert clean_title("Buy Parle G Biscuits") == "Parle G Biscuits"

    def test_short_caps_tokens_kept(self):
        assert clean_title("ORS Electrolyte Drink") == "ORS Electrolyte Drink"

    def test_cut_after_size_phrase(self):
        title = "Dove Cream Beauty Bathing Bar 100 g Pack of 3 - Buy Online"
        assert clean_title(title) == "Dove Cream Beauty Bathing Bar 100 G Pack"

    def test_trademark_symbols_and_entities(self):
        assert clean_title("Tom &amp; Jerry™ Candy") == "Tom & Jerry Candy"

    def test_long_title_cut_at_dash(self):
        head = "Organic Cold Pressed Virgin Coconut Oil For Cooking Hair And Skin Care Premium Grade"
        title = head + " - Imported Quality Edition For Families"
        cleaned = clean_title(title)
        assert cleaned == head
        assert len(cleaned) <= 90

    def test_empty(self):
        assert clean_title("") == ""
        assert clean_title(None) == ""


# ── canonicalize_name ─────────────────────────────────────────────────────────

class TestCanonicalizeName:
    def test_duplicate_brand_prefix_dropped(self):
        assert canonicalize_name("dabur", "Dabur Honey 500 g Jar - pure") == "Dabur Honey 500 g Jar"

    def test_brand_prefixed_when_missing(self):
        assert canonicalize_name("amul", "Butter") == "Amul Butter"

    def test_no_brand(self):
        assert canonicalize_name("", "Plain Salt") == "Plain Salt"


# ── normalize_key ─────────────────────────────────────────────────────────────

def test_normalize_key():
    assert normalize_key("Dettol  Handwash-200ml!") == "dettol handwash 200ml"
    assert normalize_key(None) == ""


# ── parse_canonical_unit ──────────────────────────────────────────────────────

class TestParseCanonicalUnit:
    def test_multi_pack_with_container(self):
        assert parse_canonical_unit("2 X 200 ML BOTTLE") == "2 x 200 ml bottle"

    def test_litre_uppercased(self):
        assert parse_canonical_unit("Sprite 1.25l pet bottle") == "1.25 L bottle"

    def test_single_quantity(self):
        assert parse_canonical_unit("500 g") == "500 g"

    def test_tablets(self):
        assert parse_canonical_unit("Strip of 10 tablets") == "10 tablets strip"

    def test_nothing_recognisable(self):
        assert parse_canonical_unit("assorted flavours") == ""

    def test_empty(self):
        assert parse_canonical_unit("") == ""
        assert parse_canonical_unit(None) == ""


# ── clamp_gst_rate ─────────────────────────────────────────────────────────────

class TestClampGstRate:
    @pytest.mark.parametrize("rate,expected", [
        (13, 12),
        (18, 18),
        (0, 0),
        (100, 28),
        (-3, 0),
        ("18%", 18),
    ])
    def test_nearest_slab(self, rate, expected):
        assert clamp_gst_rate(rate) == expected

    def test_tie_goes_to_earlier_slab(self):
        assert clamp_gst_rate(15) == 12
        assert clamp_gst_rate(2.5) == 0

    def test_unparsable_is_zero(self):
        assert clamp_gst_rate(None) == 0
        assert clamp_gst_rate("n/a") == 0


# ── Numbers & money ───────────────────────────────────────────────────────────

class TestToNum:
    def test_currency_string(self):
        assert to_num("₹1,20.50") == 120.5

    def test_plain_numbers(self):
        assert to_num(12) == 12.0
        assert to_num("7") == 7.0

    def test_unparsable(self):
        assert to_num("N/A") is None
        assert to_num("") is None
        assert to_num(None) is None
        assert to_num(True) is None


class TestMoneyStr:
    def test_integral(self):
        assert money_str(120) == "120"
        assert money_str("MRP ₹120.00") == "120"

    def test_fractional(self):
        assert money_str("₹99.50") == "99.5"

    def test_indian_price_formats(self):
        assert money_str("Rs. 120") == "120"
        assert money_str("₹120/-") == "120"
        assert money_str("MRP: Rs.45.00") == "45"
        assert money_str("Rs 1,299.50") == "1299.5"

    def test_junk(self):
        assert money_str("free") == ""
        assert money_str(None) == ""


# ── bias_query ────────────────────────────────────────────────────────────────

class TestBiasQuery:
    def test_query_restricted_to_allow_list(self):
        q = bias_query("dolo 650")
        assert q.startswith("dolo 650 (site:1mg.com OR ")
        assert q.endswith("site:dmart.in)")
        for domain in ALLOWED_DOMAINS:
            assert f"site:{domain}" in q

    def test_empty_query(self):
        assert bias_query("") == " OR ".join(f"site:{d}" for d in ALLOWED_DOMAINS)


# ── quick_hsn_gst_hint ─────────────────────────────────────────────────────────

class TestQuickHsnGstHint:
    def test_dairy(self):
        assert quick_hsn_gst_hint("Amul Butter", "Dairy") == ("0401", 5)

    def test_soap(self):
        assert quick_hsn_gst_hint("Dove Soap", "") == ("3401", 18)

    def test_category_only(self):
        assert quick_hsn_gst_hint("", "Aerated soft drink") == ("2202", 28)

    def test_no_match(self):
        assert quick_hsn_gst_hint("Steel Bolt", "Hardware") is None
        assert quick_hsn_gst_hint("", "") is None
