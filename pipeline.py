"""
Pipeline Controller — one identify request from raw body to response JSON.

  decode → (burst) frame selection → fingerprint → cache lookup
    hit  → stored best, nothing else runs
    miss → OCR → barcode → [catalog lookup ‖ web hints]
         → primary / secondary provider → canonicalize
         → compressed scan (best-effort) → cache write

Error mapping (handle_identify / handle_identify_many):
  Unauthorized       → 401
  InputError         → 400
  AllProvidersFailed → 200, ok:false, message lists every provider's reason
  anything else      → 500 with a generic message; details only in the log
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Optional

import aiohttp

import config
import frame_selector
from auth import StaticTokenVerifier, TokenVerifier, authenticate
from cache import CacheStore, build_cache, fingerprint
from canonical import (
    canonicalize_name, clamp_gst_rate, clean_title, money_str, normalize_key,
    parse_canonical_unit, quick_hsn_gst_hint, title_case,
)
from enrichment.base import CatalogBackend, Detection, TextDetector, WebSearchBackend
from enrichment.extractors import (
    build_text_context, extract_barcode, extract_text, flatten_text, lookup_catalog, web_hints,
)
from errors import AllProvidersFailed, CacheUnavailable, InputError, Unauthorized
from image_store import ScanImageStore
from product import CacheEntry, CanonicalProduct, ImageInput
from providers.base import ProviderResult
from providers.manager import FallbackOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)

_DATA_URI = re.compile(r"^data:[^;,]*;base64,", re.IGNORECASE)

GENERIC_ERROR = "Failed to identify product from image"


@dataclass
class IdentifyOutcome:
    product: CanonicalProduct
    cached: bool
    fingerprint: str
    image_path: Optional[str] = None
    used_provider: str = ""         # "" on a cache hit


# ── Request decoding ──────────────────────────────────────────────────────────

def _decode_b64(value, field_name: str) -> bytes:
    if not isinstance(value, str):
        raise InputError(f"{field_name} must be a base64 string")
    raw = _DATA_URI.sub("", value.strip())
    raw = re.sub(r"\s+", "", raw)
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError):
        raise InputError(f"{field_name} is not valid base64")
    if not data:
        raise InputError(f"{field_name} is empty")
    return data


def decode_request(body) -> ImageInput:
    """
    Accepts imageBase64 (alias base64Image), imageUrl, framesBase64[],
    barcode and contextPrompt. Raises InputError when no image is present.
    """
    if not isinstance(body, dict):
        raise InputError("Request body must be a JSON object.")

    barcode = str(body.get("barcode") or "").strip()
    context = str(body.get("contextPrompt") or "").strip()

    frames = body.get("framesBase64")
    if isinstance(frames, list) and frames:
        decoded = [_decode_b64(f, "framesBase64[]") for f in frames[:frame_selector.MAX_FRAMES]]
        return ImageInput(frames=decoded, barcode_hint=barcode,
                          context_prompt=context, origin="frames")

    b64 = body.get("imageBase64") or body.get("base64Image")
    if b64:
        return ImageInput(image=_decode_b64(b64, "imageBase64"), barcode_hint=barcode,
                          context_prompt=context, origin="base64")

    url = body.get("imageUrl")
    if isinstance(url, str) and url.strip():
        return ImageInput(image_url=url.strip(), barcode_hint=barcode,
                          context_prompt=context, origin="url")

    raise InputError("Provide imageBase64, imageUrl or framesBase64[] in body.")


async def fetch_image(url: str, timeout: float, max_bytes: int) -> bytes:
    """Download imageUrl, refusing anything larger than max_bytes."""
    if not url.lower().startswith(("http://", "https://")):
        raise InputError("imageUrl must be an http(s) URL")
    too_large = f"imageUrl is larger than {max_bytes // (1024 * 1024)} MB"
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
                if resp.status != 200:
                    raise InputError(f"Failed to fetch imageUrl (HTTP {resp.status})")
                if resp.content_length is not None and resp.content_length > max_bytes:
                    raise InputError(too_large)
                # Content-Length can be absent or wrong
                buf = bytearray()
                async for chunk in resp.content.iter_chunked(64 * 1024):
                    buf.extend(chunk)
                    if len(buf) > max_bytes:
                        raise InputError(too_large)
                data = bytes(buf)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning("imageUrl fetch failed for %s: %s", url[:120], e)
        raise InputError("Failed to fetch imageUrl")
    if not data:
        raise InputError("Failed to read image data.")
    return data


# ── Canonicalization ──────────────────────────────────────────────────────────

def canonicalize_result(result: ProviderResult, scanned_code: str = "") -> CanonicalProduct:
    """Turn a provider's raw guess into the record clients see."""
    brand = title_case(result.brand)
    name = canonicalize_name(brand, clean_title(result.name))
    unit = parse_canonical_unit(result.unit or name)

    hsn = re.sub(r"\s+", "", result.hsn or "")
    gst = clamp_gst_rate(result.gst) if result.gst is not None else None
    if not hsn and gst is None:
        hint = quick_hsn_gst_hint(name, result.category)
        if hint:
            hsn, gst = hint

    return CanonicalProduct(
        product_name=name,
        brand=brand,
        variant=(result.variant or "").strip(),
        category=(result.category or "").strip(),
        unit=unit,
        description=(result.description or "").strip(),
        code=(result.sku or "").strip() or scanned_code,
        mrp=money_str(result.mrp) or money_str(result.selling_price),
        hsn=hsn,
        gst=gst,
        source=result.source,
        confidence=result.confidence,
    )


def _multi_item(product: CanonicalProduct) -> dict:
    item = product.to_dict()
    # older clients read these names
    item["hsnCode"] = product.hsn
    item["gstRate"] = product.gst if product.gst is not None else ""
    return item


# ── Controller ────────────────────────────────────────────────────────────────

class PipelineController:

    def __init__(
        self,
        orchestrator: FallbackOrchestrator,
        cache: Optional[CacheStore] = None,
        detector: Optional[TextDetector] = None,
        catalog: Optional[CatalogBackend] = None,
        web_search: Optional[WebSearchBackend] = None,
        scan_store: Optional[ScanImageStore] = None,
        verifier: Optional[TokenVerifier] = None,
        require_auth: bool = False,
        fetch_timeout: float = 12.0,
        fetch_max_bytes: int = 25 * 1024 * 1024,
    ) -> None:
        self.orchestrator = orchestrator
        self.cache = cache
        self.detector = detector
        self.catalog = catalog
        self.web_search = web_search
        self.scan_store = scan_store
        self.verifier = verifier
        self.require_auth = require_auth
        self.fetch_timeout = fetch_timeout
        self.fetch_max_bytes = fetch_max_bytes

    async def _canonical_bytes(self, image_input: ImageInput) -> tuple[bytes, Optional[Detection]]:
        """The buffer to fingerprint, plus its detection when burst scoring already ran OCR."""
        if image_input.frames:
            return await frame_selector.choose(image_input.frames, self.detector)
        if image_input.image:
            return image_input.image, None
        if image_input.image_url:
            return await fetch_image(image_input.image_url, self.fetch_timeout, self.fetch_max_bytes), None
        raise InputError("Provide imageBase64, imageUrl or framesBase64[] in body.")

    async def _cache_get(self, fp: str) -> Optional[CacheEntry]:
        if self.cache is None:
            return None
        try:
            return await self.cache.get(fp)
        except CacheUnavailable as e:
            logger.warning("Cache read skipped for %s: %s", fp[:12], e)
            return None

    async def _cache_put(self, fp: str, entry: CacheEntry) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.put(fp, entry, merge=True)
        except CacheUnavailable as e:
            logger.warning("Cache write skipped for %s: %s", fp[:12], e)

    async def _save_scan(self, fp: str, image_bytes: bytes) -> Optional[str]:
        if self.scan_store is None:
            return None
        try:
            return await self.scan_store.save(fp, image_bytes)
        except Exception as e:
            logger.warning("Scan save failed for %s: %s", fp[:12], e)
            return None

    async def identify(self, image_input: ImageInput) -> IdentifyOutcome:
        """
        Single-item identification. Raises InputError or AllProvidersFailed;
        enrichment, scan storage and cache failures are logged and absorbed.
        """
        image, detection = await self._canonical_bytes(image_input)
        fp = fingerprint(image)

        hit = await self._cache_get(fp)
        if hit is not None:
            logger.info("Cache hit %s → %s", fp[:12], hit.best.product_name)
            return IdentifyOutcome(hit.best, cached=True, fingerprint=fp, image_path=hit.image_path)

        if detection is not None:
            ocr_text = flatten_text(detection)
        else:
            ocr_text = await extract_text(image, self.detector)
        code = extract_barcode(ocr_text, image_input.barcode_hint)
        catalog, hints = await asyncio.gather(
            lookup_catalog(code, self.catalog),
            web_hints(ocr_text, self.web_search),
        )
        text_context = build_text_context(ocr_text, code, catalog, hints)

        outcome = await self.orchestrator.run(image, text_context)
        product = canonicalize_result(outcome.result, code)

        # Stored before the cache write so the entry can point at it
        image_path = await self._save_scan(fp, image)
        await self._cache_put(fp, CacheEntry(fingerprint=fp, best=product, image_path=image_path))

        logger.info(
            "Identified %s → %r (%s, confidence %.2f)",
            fp[:12], product.product_name, outcome.used_provider, product.confidence,
        )
        return IdentifyOutcome(product, cached=False, fingerprint=fp,
                               image_path=image_path, used_provider=outcome.used_provider)

    async def identify_many(self, image_input: ImageInput) -> list[CanonicalProduct]:
        """Every distinct product in one shelf photo. Not cached."""
        image, _ = await self._canonical_bytes(image_input)
        outcome = await self.orchestrator.run_many(image, image_input.context_prompt)

        products: list[CanonicalProduct] = []
        seen: set[str] = set()
        for result in outcome.results:
            product = canonicalize_result(result)
            key = normalize_key(product.product_name)
            if not key or key in seen:
                continue
            seen.add(key)
            products.append(product)
        logger.info("Multi-identify: %d distinct products (%s)", len(products), outcome.used_provider)
        return products

    # ── HTTP-facing handlers ─────────────────────────────────────────────────

    async def handle_identify(self, body, auth_header: Optional[str] = None) -> tuple[int, dict]:
        try:
            uid = await authenticate(auth_header, self.verifier, self.require_auth)
            outcome = await self.identify(decode_request(body))
        except Unauthorized:
            return 401, {"ok": False, "success": False, "message": "Unauthorized"}
        except InputError as e:
            return 400, {"ok": False, "success": False, "message": str(e)}
        except AllProvidersFailed as e:
            logger.warning("Identification failed: %s", e)
            return 200, {"ok": False, "success": False, "message": str(e)}
        except Exception:
            logger.exception("Unexpected error in identify")
            return 500, {"ok": False, "success": False, "message": GENERIC_ERROR}

        best = outcome.product.to_dict()
        payload = {
            "ok":       True,
            "success":  True,
            "cached":   outcome.cached,
            "best":     best,
            "autofill": outcome.product.autofill(),
            "product":  best,
        }
        if outcome.image_path:
            payload["imagePath"] = outcome.image_path
        if outcome.used_provider:
            payload["usedProvider"] = outcome.used_provider
        if uid:
            payload["userId"] = uid
        return 200, payload

    async def handle_identify_many(self, body, auth_header: Optional[str] = None) -> tuple[int, dict]:
        try:
            await authenticate(auth_header, self.verifier, self.require_auth)
            products = await self.identify_many(decode_request(body))
        except Unauthorized:
            return 401, {"ok": False, "success": False, "message": "Unauthorized"}
        except InputError as e:
            return 400, {"ok": False, "success": False, "message": str(e)}
        except AllProvidersFailed as e:
            logger.warning("Multi-identification failed: %s", e)
            return 200, {"ok": False, "success": False, "message": str(e),
                         "products": [], "items": [], "total": 0, "count": 0}
        except Exception:
            logger.exception("Unexpected error in identify_many")
            return 500, {"ok": False, "success": False,
                         "message": "Failed to identify multiple products"}

        items = [_multi_item(p) for p in products]
        return 200, {
            "ok":       True,
            "success":  True,
            "products": items,
            "items":    items,
            "total":    len(items),
            "count":    len(items),
        }

    async def status(self) -> dict:
        """Configuration snapshot for GET /status."""
        cached = None
        if self.cache is not None:
            try:
                cached = await self.cache.count()
            except CacheUnavailable as e:
                logger.warning("Cache count unavailable: %s", e)
        return {
            "ok": True,
            "ai": self.orchestrator.status(),
            "enrichment": {
                "ocr":        self.detector.name if self.detector else None,
                "catalog":    self.catalog.name if self.catalog else None,
                "webSearch":  self.web_search.name if self.web_search else None,
            },
            "scanStore":     self.scan_store is not None,
            "requireAuth":   self.require_auth,
            "cachedEntries": cached,
        }


def build_controller() -> PipelineController:
    """Wire every collaborator from config. Unconfigured integrations stay None."""
    detector = catalog = web_search = None

    if config.GOOGLE_VISION_API_KEY:
        from enrichment.vision_ocr import GoogleVisionDetector
        detector = GoogleVisionDetector(config.GOOGLE_VISION_API_KEY)
    else:
        logger.info("GOOGLE_VISION_API_KEY not set — OCR and frame scoring disabled")

    if config.BARCODE_LOOKUP_ENABLED:
        from enrichment.openfoodfacts import OpenFoodFactsBackend
        catalog = OpenFoodFactsBackend(timeout=config.BARCODE_LOOKUP_TIMEOUT)

    if config.CSE_KEY and config.CSE_CX:
        from enrichment.google_cse import GoogleCSEBackend
        web_search = GoogleCSEBackend(config.CSE_KEY, config.CSE_CX)

    scan_store = None
    if config.SCAN_STORE_ENABLED:
        scan_store = ScanImageStore(config.DATA_DIR, config.SCAN_MAX_WIDTH, config.SCAN_JPEG_QUALITY)

    verifier = StaticTokenVerifier(config.API_TOKENS) if config.API_TOKENS else None

    return PipelineController(
        orchestrator=build_orchestrator(),
        cache=build_cache(config.CACHE_BACKEND),
        detector=detector,
        catalog=catalog,
        web_search=web_search,
        scan_store=scan_store,
        verifier=verifier,
        require_auth=config.REQUIRE_AUTH_IDENTIFY,
        fetch_timeout=config.IMAGE_FETCH_TIMEOUT,
        fetch_max_bytes=config.MAX_BODY_MB * 1024 * 1024,
    )
