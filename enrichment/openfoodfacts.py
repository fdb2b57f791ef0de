"""
Open Food Facts barcode catalog.

Free, no key:  GET https://world.openfoodfacts.org/api/v2/product/{barcode}.json
  status == 1 → product found, payload under "product".

Coverage of Indian FMCG is patchy, which is fine: the lookup only adds
grounding to the provider prompt, it never decides the answer.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import quote

import aiohttp

from enrichment.base import CatalogBackend
from errors import EnrichmentFailure
from product import CatalogRecord

logger = logging.getLogger(__name__)

PRODUCT_URL = "https://world.openfoodfacts.org/api/v2/product/{code}.json"


class OpenFoodFactsBackend(CatalogBackend):

    def __init__(self, timeout: float = 10.0) -> None:
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def name(self) -> str:
        return "Open Food Facts"

    async def lookup(self, code: str) -> Optional[CatalogRecord]:
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    PRODUCT_URL.format(code=quote(code)),
                    timeout=self._timeout,
                ) as resp:
                    if resp.status == 404:
                        return None
                    if resp.status != 200:
                        text = await resp.text()
                        raise EnrichmentFailure(f"Open Food Facts error {resp.status}: {text[:200]}")
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise EnrichmentFailure(f"Open Food Facts request failed: {e}") from e
        return _parse_product(code, data)


# ── Helpers ────────────────────────────────────────────────────────────────────

def _first_non_empty(*values) -> str:
    for v in values:
        if v is not None and str(v).strip():
            return str(v).strip()
    return ""


def _last_csv(value) -> str:
    if not value:
        return ""
    return str(value).split(",")[-1].strip()


def _parse_product(code: str, data: dict) -> Optional[CatalogRecord]:
    if not data or data.get("status") != 1 or not data.get("product"):
        return None
    p = data["product"]

    brands_tags = p.get("brands_tags") or []
    categories_tags = p.get("categories_tags") or []

    name = _first_non_empty(
        p.get("product_name"), p.get("generic_name"), p.get("abbreviated_product_name")
    )
    if not name:
        return None

    return CatalogRecord(
        barcode=code,
        product_name=name,
        brand=_first_non_empty(
            (p.get("brands") or "").split(",")[0],
            brands_tags[0] if brands_tags else "",
        ),
        category=_first_non_empty(
            _last_csv(p.get("categories_old")),
            categories_tags[-1] if categories_tags else "",
            _last_csv(p.get("categories")),
        ),
        unit=_first_non_empty(p.get("quantity"), p.get("product_quantity")),
        image_url=_first_non_empty(
            p.get("image_front_small_url"), p.get("image_front_url"), p.get("image_url")
        ),
        source="openfoodfacts",
    )
