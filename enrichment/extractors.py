"""
Enrichment steps run before the vision call.

All of these are best-effort: a missing backend or a failing backend yields
an empty value and a WARNING in the log, never an exception.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Optional

from canonical import bias_query
from enrichment.base import CatalogBackend, Detection, TextDetector, WebSearchBackend
from product import CatalogRecord, WebHint

logger = logging.getLogger(__name__)

# EAN-8, UPC-A, EAN-13, GTIN-14
_BARCODE_RE = re.compile(r"\b(\d{8}|\d{12,14})\b")

MAX_QUERY_CHARS   = 160
MAX_WEB_HINTS     = 2
MAX_CONTEXT_CHARS = 1200


def flatten_text(detection: Detection) -> str:
    return (detection.text or "").replace("\r", " ").replace("\n", " ").strip()


async def extract_text(image_bytes: bytes, detector: Optional[TextDetector]) -> str:
    """OCR the image and flatten it onto one line. "" when unavailable."""
    if detector is None:
        return ""
    try:
        detection = await detector.detect(image_bytes)
    except Exception as e:
        logger.warning("Text detection failed (%s): %s", detector.name, e)
        return ""
    return flatten_text(detection)


def extract_barcode(ocr_text: str, client_hint: str = "") -> str:
    """
    A client-supplied barcode always wins (digits only). Otherwise the LAST
    8/12/13/14-digit run in the OCR text is used: printed codes tend to sit
    at the bottom of a label, below batch and licence numbers.
    """
    hint = re.sub(r"\D", "", client_hint or "")
    if hint:
        return hint
    matches = _BARCODE_RE.findall(ocr_text or "")
    return matches[-1] if matches else ""


async def lookup_catalog(code: str, backend: Optional[CatalogBackend]) -> Optional[CatalogRecord]:
    if not code or backend is None:
        return None
    try:
        record = await backend.lookup(code)
    except Exception as e:
        logger.warning("Catalog lookup failed (%s) for %s: %s", backend.name, code, e)
        return None
    if record:
        logger.info("Catalog hit (%s) for %s: %s", backend.name, code, record.product_name)
    return record


async def web_hints(ocr_text: str, backend: Optional[WebSearchBackend]) -> list[WebHint]:
    """Up to two whitelisted retail results for the OCR text."""
    if backend is None or not (ocr_text or "").strip():
        return []
    query = bias_query(ocr_text[:MAX_QUERY_CHARS])
    try:
        hints = await backend.search(query, num=MAX_WEB_HINTS)
    except Exception as e:
        logger.warning("Web search failed (%s): %s", backend.name, e)
        return []
    return hints[:MAX_WEB_HINTS]


def build_text_context(
    ocr_text: str,
    code: str,
    catalog: Optional[CatalogRecord],
    hints: list[WebHint],
) -> str:
    """
    Compact grounding string handed to the vision provider:

      OCR:"..." | Barcode:8901030... | Lookup:{...} | Top:["...", "..."]
    """
    lookup = json.dumps(catalog.to_context(), ensure_ascii=False) if catalog else "None"
    top = json.dumps([h.title for h in hints[:MAX_WEB_HINTS]], ensure_ascii=False) if hints else "None"
    context = (
        f'OCR:"{ocr_text}" | Barcode:{code or "None"} | '
        f"Lookup:{lookup} | Top:{top}"
    )
    return context[:MAX_CONTEXT_CHARS]
