"""
Tests for enrichment/extractors.py.

Covers:
  - extract_text never raises
  - extract_barcode: client hint wins, otherwise the last OCR match
  - lookup_catalog / web_hints swallow backend failures
  - build_text_context format and length cap
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from enrichment.base import CatalogBackend, Detection, TextDetector, WebSearchBackend
from enrichment.extractors import (
    MAX_CONTEXT_CHARS,
    build_text_context,
    extract_barcode,
    extract_text,
    lookup_catalog,
    web_hints,
)
from errors import EnrichmentFailure
from product import CatalogRecord, WebHint


def make_backend(spec, method: str, **kwargs):
    b = MagicMock(spec=spec)
    b.name = "fake"
    setattr(b, method, AsyncMock(**kwargs))
    return b


# ── extract_text ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestExtractText:
    async def test_newlines_flattened(self):
        d = make_backend(TextDetector, "detect", return_value=Detection(text="DETTOL\nHANDWASH\n200ml"))
        assert await extract_text(b"img", d) == "DETTOL HANDWASH 200ml"

    async def test_detector_failure_is_empty(self):
        d = make_backend(TextDetector, "detect", side_effect=EnrichmentFailure("Vision API error 403"))
        assert await extract_text(b"img", d) == ""

    async def test_no_detector(self):
        assert await extract_text(b"img", None) == ""


# ── extract_barcode ────────────────────────────────────────────────────────────

class TestExtractBarcode:
    def test_client_hint_wins(self):
        assert extract_barcode("EAN 8901030865278", "8 90-1234 567890") == "8901234567890"

    def test_last_match_is_used(self):
        # Documented choice: the trailing code on a label is usually the product barcode
        text = "Batch 12345678 Lic 10012345000123 EAN 8901030865278"
        assert extract_barcode(text) == "8901030865278"

    def test_lengths_accepted(self):
        assert extract_barcode("code 12345678") == "12345678"
        assert extract_barcode("upc 012345678905") == "012345678905"
        assert extract_barcode("gtin 18901030865275") == "18901030865275"

    def test_other_lengths_ignored(self):
        assert extract_barcode("MRP 120 pin 560001 phone 9876543210") == ""

    def test_nothing(self):
        assert extract_barcode("", "") == ""


# ── lookup_catalog ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestLookupCatalog:
    async def test_hit(self):
        rec = CatalogRecord(barcode="8901030865278", product_name="Dettol Handwash")
        b = make_backend(CatalogBackend, "lookup", return_value=rec)
        assert await lookup_catalog("8901030865278", b) is rec

    async def test_failure_swallowed(self):
        b = make_backend(CatalogBackend, "lookup", side_effect=EnrichmentFailure("Open Food Facts request failed"))
        assert await lookup_catalog("8901030865278", b) is None

    async def test_no_code_skips_backend(self):
        b = make_backend(CatalogBackend, "lookup", return_value=None)
        assert await lookup_catalog("", b) is None
        b.lookup.assert_not_called()


# ── web_hints ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestWebHints:
    async def test_query_biased_and_capped(self):
        hints = [WebHint(f"t{i}", f"https://1mg.com/{i}") for i in range(3)]
        b = make_backend(WebSearchBackend, "search", return_value=hints)

        result = await web_hints("x" * 400, b)

        assert len(result) == 2
        query = b.search.call_args.args[0]
        assert query.startswith("x" * 160 + " (site:1mg.com")
        assert "x" * 161 not in query
        assert b.search.call_args.kwargs["num"] == 2

    async def test_no_backend(self):
        assert await web_hints("dettol", None) == []

    async def test_no_text_skips_search(self):
        b = make_backend(WebSearchBackend, "search", return_value=[])
        assert await web_hints("", b) == []
        b.search.assert_not_called()

    async def test_failure_swallowed(self):
        b = make_backend(WebSearchBackend, "search", side_effect=EnrichmentFailure("CSE error 429"))
        assert await web_hints("dettol", b) == []


# ── build_text_context ────────────────────────────────────────────────────────

class TestBuildTextContext:
    def test_all_parts(self):
        rec = CatalogRecord(barcode="890", product_name="Dettol Handwash", brand="Dettol")
        hints = [WebHint("Dettol Original 200ml", "l1"), WebHint("Dettol Refill", "l2")]
        ctx = build_text_context("DETTOL 200ML", "890", rec, hints)
        assert ctx == (
            'OCR:"DETTOL 200ML" | Barcode:890 | '
            'Lookup:{"productName": "Dettol Handwash", "brand": "Dettol"} | '
            'Top:["Dettol Original 200ml", "Dettol Refill"]'
        )

    def test_empty_parts(self):
        assert build_text_context("", "", None, []) == 'OCR:"" | Barcode:None | Lookup:None | Top:None'

    def test_capped(self):
        assert len(build_text_context("y" * 5000, "", None, [])) == MAX_CONTEXT_CHARS
