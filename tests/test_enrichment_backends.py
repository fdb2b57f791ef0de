"""
Tests for the HTTP enrichment backends with aiohttp mocked.

Covers:
  - GoogleVisionDetector: text + logo parsing, API errors
  - OpenFoodFactsBackend: status==1 mapping, not found, HTTP errors
  - GoogleCSEBackend: query params, result mapping, HTTP errors
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from enrichment.google_cse import GoogleCSEBackend
from enrichment.openfoodfacts import OpenFoodFactsBackend, _parse_product
from enrichment.vision_ocr import GoogleVisionDetector, _parse_annotation
from errors import EnrichmentFailure


def fake_response(payload: dict, status: int = 200) -> MagicMock:
    """Build a fake aiohttp response object."""
    mock_resp = MagicMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=payload)
    mock_resp.text = AsyncMock(return_value="error text")
    mock_resp.__aenter__ = AsyncMock(return_value=mock_resp)
    mock_resp.__aexit__ = AsyncMock(return_value=False)
    return mock_resp


def fake_session(resp: MagicMock) -> MagicMock:
    mock_session = MagicMock()
    mock_session.get = MagicMock(return_value=resp)
    mock_session.post = MagicMock(return_value=resp)
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=False)
    return mock_session


# ── Google Cloud Vision ────────────────────────────────────────────────────────

class TestParseAnnotation:
    def test_text_and_logo(self):
        d = _parse_annotation({"responses": [{
            "textAnnotations": [{"description": "DETTOL\n200ml"}, {"description": "DETTOL"}],
            "logoAnnotations": [{"description": "Dettol", "score": 0.87}],
        }]})
        assert d.text == "DETTOL\n200ml"
        assert d.logo_score == 0.87

    def test_nothing_detected(self):
        d = _parse_annotation({"responses": [{}]})
        assert (d.text, d.logo_score) == ("", 0.0)

    def test_per_image_error_raises(self):
        with pytest.raises(EnrichmentFailure, match="Bad image data"):
            _parse_annotation({"responses": [{"error": {"message": "Bad image data"}}]})


@pytest.mark.asyncio
class TestGoogleVisionDetector:
    async def test_detect_posts_both_features(self):
        resp = fake_response({"responses": [{"textAnnotations": [{"description": "MAGGI"}]}]})
        session = fake_session(resp)

        with patch("enrichment.vision_ocr.aiohttp.ClientSession", return_value=session):
            d = await GoogleVisionDetector("vision-key").detect(b"img")

        assert d.text == "MAGGI"
        kwargs = session.post.call_args.kwargs
        assert kwargs["params"] == {"key": "vision-key"}
        features = kwargs["json"]["requests"][0]["features"]
        assert {"type": "TEXT_DETECTION"} in features
        assert {"type": "LOGO_DETECTION"} in features

    async def test_http_error_raises(self):
        session = fake_session(fake_response({}, status=403))
        with patch("enrichment.vision_ocr.aiohttp.ClientSession", return_value=session):
            with pytest.raises(EnrichmentFailure, match="403"):
                await GoogleVisionDetector("vision-key").detect(b"img")

    async def test_transport_error_wrapped(self):
        session = fake_session(fake_response({}))
        session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("connection reset"))
        with patch("enrichment.vision_ocr.aiohttp.ClientSession", return_value=session):
            with pytest.raises(EnrichmentFailure, match="connection reset"):
                await GoogleVisionDetector("vision-key").detect(b"img")


# ── Open Food Facts ───────────────────────────────────────────────────────────

class TestParseProduct:
    def test_found(self):
        rec = _parse_product("8901058851830", {"status": 1, "product": {
            "product_name": "Maggi 2-Minute Noodles Masala",
            "brands": "Maggi,Nestlé",
            "categories": "Foods, Noodles, Instant noodles",
            "quantity": "70 g",
            "image_front_small_url": "https://images.openfoodfacts.org/x.jpg",
        }})
        assert rec.product_name == "Maggi 2-Minute Noodles Masala"
        assert rec.brand == "Maggi"
        assert rec.category == "Instant noodles"
        assert rec.unit == "70 g"
        assert rec.source == "openfoodfacts"

    def test_not_found(self):
        assert _parse_product("123", {"status": 0, "status_verbose": "product not found"}) is None

    def test_no_name(self):
        assert _parse_product("123", {"status": 1, "product": {"brands": "X"}}) is None


@pytest.mark.asyncio
class TestOpenFoodFactsBackend:
    async def test_lookup_builds_url(self):
        resp = fake_response({"status": 1, "product": {"product_name": "Parle-G"}})
        session = fake_session(resp)
        with patch("enrichment.openfoodfacts.aiohttp.ClientSession", return_value=session):
            rec = await OpenFoodFactsBackend().lookup("8901719100017")
        assert rec.product_name == "Parle-G"
        url = session.get.call_args.args[0]
        assert url == "https://world.openfoodfacts.org/api/v2/product/8901719100017.json"

    async def test_404_is_none(self):
        session = fake_session(fake_response({}, status=404))
        with patch("enrichment.openfoodfacts.aiohttp.ClientSession", return_value=session):
            assert await OpenFoodFactsBackend().lookup("0000") is None

    async def test_server_error_raises(self):
        session = fake_session(fake_response({}, status=503))
        with patch("enrichment.openfoodfacts.aiohttp.ClientSession", return_value=session):
            with pytest.raises(EnrichmentFailure, match="503"):
                await OpenFoodFactsBackend().lookup("0000")

    async def test_timeout_wrapped(self):
        session = fake_session(fake_response({}))
        session.get = MagicMock(side_effect=asyncio.TimeoutError())
        with patch("enrichment.openfoodfacts.aiohttp.ClientSession", return_value=session):
            with pytest.raises(EnrichmentFailure):
                await OpenFoodFactsBackend().lookup("0000")


# ── Google Custom Search ──────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestGoogleCSEBackend:
    async def test_results_mapped(self):
        resp = fake_response({"items": [
            {"title": "Dolo 650 Tablet", "link": "https://www.1mg.com/drugs/dolo-650", "snippet": "s"},
            {"title": "", "link": "https://x"},
            {"title": "Dolo 650 strip", "link": "https://pharmeasy.in/dolo"},
        ]})
        session = fake_session(resp)
        with patch("enrichment.google_cse.aiohttp.ClientSession", return_value=session):
            hints = await GoogleCSEBackend("k", "cx").search("dolo 650", num=3)

        assert [h.title for h in hints] == ["Dolo 650 Tablet", "Dolo 650 strip"]
        params = session.get.call_args.kwargs["params"]
        assert params == {"key": "k", "cx": "cx", "q": "dolo 650", "num": "3"}

    async def test_no_items(self):
        session = fake_session(fake_response({}))
        with patch("enrichment.google_cse.aiohttp.ClientSession", return_value=session):
            assert await GoogleCSEBackend("k", "cx").search("q") == []

    async def test_http_error_raises(self):
        session = fake_session(fake_response({}, status=429))
        with patch("enrichment.google_cse.aiohttp.ClientSession", return_value=session):
            with pytest.raises(EnrichmentFailure, match="429"):
                await GoogleCSEBackend("k", "cx").search("q")
