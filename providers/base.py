"""
Shared types, prompts and response decoding for the vision providers.

Decoding paths (each independently testable):
  strict   — strip_code_fence() + json.loads           → parse_json_response()
  lenient  — repair_json() then json.loads             → lenient_decode()
  salvage  — per-field regex over a broken response    → salvage_fields()
"""
from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from errors import ProviderMalformedResponse

logger = logging.getLogger(__name__)

# ── Prompts (shared across all providers) ─────────────────────────────────────

SYSTEM_PROMPT = """You are an expert product identifier for the Indian retail market.
Analyse the product photo and the text context, then return ONLY a strict JSON object — no markdown, no prose.

JSON schema:
{
  "name":         "complete product name",
  "brand":        "brand name",
  "unit":         "quantity and container, e.g. \\"250 ml Bottle\\"",
  "category":     "product category",
  "description":  "one short sentence describing the product",
  "sku":          "barcode / SKU if visible",
  "mrp":          "printed MRP, numeric only",
  "sellingPrice": "selling price if different from MRP, numeric only",
  "hsn":          "HSN code if confident",
  "gst":          "GST rate, numeric only, or null",
  "variant":      "size, flavour or type",
  "confidence":   0.0
}

Rules:
- 'mrp': if "MRP" is printed use that value, otherwise any visible price; digits only ("120" for "MRP ₹120.00"); "" if none
- 'unit' must include quantity and container ("10 tablets", "500 ml bottle", "1 kg pack")
- Use the barcode from the context as 'sku' when available
- Only guess HSN/GST when confident, otherwise "" / null
- 'confidence' between 0 and 1
"""

MULTI_SYSTEM_PROMPT = """You are an expert multi-product detection assistant for Indian retail.
Return ONLY a strict JSON object — no markdown, no prose:
{ "items": [ { "productName": "", "brand": "", "category": "", "unit": "", "mrp": "", "variant": "", "hsnCode": "", "gstRate": "", "confidence": 0.0 } ] }

Rules:
- One entry per distinct retail product visible; avoid duplicates
- 'unit' must include quantity and container
- 'mrp' digits only, "" if not visible
- 'confidence' between 0 and 1
"""

_MAX_MULTI_CONTEXT = 220


def build_user_prompt(text_context: Optional[str] = None) -> str:
    if text_context:
        return f"Identify the product in the image using this context:\n{text_context}"
    return "Identify the product in the image."


def build_multi_user_prompt(context: Optional[str] = None) -> str:
    if context:
        return f"Use this context: {context}"[:_MAX_MULTI_CONTEXT]
    return "Identify all distinct retail products visible in this image."


def detect_media_type(image_bytes: bytes) -> str:
    if image_bytes[:8] == b"\x89PNG\r\n\x1a\n":
        return "image/png"
    if image_bytes[:4] == b"GIF8":
        return "image/gif"
    if image_bytes[:4] == b"RIFF":
        return "image/webp"
    return "image/jpeg"


# ── Shared result type ─────────────────────────────────────────────────────────

@dataclass
class ProviderResult:
    """One provider's raw product guess, already in the common shape."""
    name: str
    brand: str = ""
    unit: str = ""
    category: str = ""
    description: str = ""
    sku: str = ""
    mrp: str = ""
    selling_price: str = ""
    hsn: str = ""
    gst: Optional[float] = None
    variant: str = ""
    confidence: float = 0.0         # 0..1
    source: str = ""                # model id, e.g. "gemini-2.5-flash"

    # telemetry
    latency_ms: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    salvaged: bool = field(default=False)   # True when built by salvage_fields()

    @property
    def cost_str(self) -> str:
        if self.cost_usd < 0.001:
            return f"${self.cost_usd * 1000:.3f}m"   # show in milli-dollars
        return f"${self.cost_usd:.4f}"

    def to_dict(self) -> dict:
        return {
            "name":         self.name,
            "brand":        self.brand,
            "unit":         self.unit,
            "category":     self.category,
            "description":  self.description,
            "sku":          self.sku,
            "mrp":          self.mrp,
            "sellingPrice": self.selling_price,
            "hsn":          self.hsn,
            "gst":          self.gst,
            "variant":      self.variant,
            "confidence":   self.confidence,
            "source":       self.source,
        }


# ── Decoding ──────────────────────────────────────────────────────────────────

_FENCE_OPEN = re.compile(r"^```[A-Za-z]*\s*")
_FENCE_CLOSE = re.compile(r"\s*```$")


def strip_code_fence(raw: str) -> str:
    """Remove a ```json ... ``` or ``` ... ``` wrapper if present, on one line or several."""
    text = _FENCE_OPEN.sub("", (raw or "").strip())
    return _FENCE_CLOSE.sub("", text).strip()


def parse_json_response(raw: str, provider_name: str) -> dict:
    """
    Strict decode: fence stripping + json.loads, nothing else.
    Raises ProviderMalformedResponse on failure or when the top level isn't an object.
    """
    text = strip_code_fence(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("[%s] Non-JSON response: %s", provider_name, (raw or "")[:300])
        raise ProviderMalformedResponse(provider_name, f"JSON parse error: {exc}") from exc
    if isinstance(data, list):
        data = {"items": data}
    if not isinstance(data, dict):
        raise ProviderMalformedResponse(provider_name, f"expected a JSON object, got {type(data).__name__}")
    return data


_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "„": '"', "‘": "'", "’": "'"})
_BARE_KEY = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_OUTER_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def repair_json(raw: str) -> str:
    """
    Apply the informal-JSON fixups, in this order:
      1. strip a code fence, then keep only the outermost {...} block
      2. typographic quotes → ASCII quotes
      3. single → double quotes, only when the text contains no double quotes
         (Python-dict style output; apostrophes in real JSON values survive)
      4. quote bare object keys:  {name: "x"}  →  {"name": "x"}
      5. drop trailing commas before } or ]
    """
    text = strip_code_fence(raw)
    m = _OUTER_OBJECT.search(text)
    if m:
        text = m.group(0)
    text = text.translate(_SMART_QUOTES)
    if '"' not in text:
        text = text.replace("'", '"')
    text = _BARE_KEY.sub(r'\1"\2":', text)
    text = _TRAILING_COMMA.sub(r"\1", text)
    return text


def lenient_decode(raw: str, provider_name: str) -> dict:
    """repair_json() then json.loads. Raises ProviderMalformedResponse."""
    repaired = repair_json(raw)
    try:
        data = json.loads(repaired)
    except json.JSONDecodeError as exc:
        logger.warning("[%s] JSON still invalid after repair: %s", provider_name, repaired[:300])
        raise ProviderMalformedResponse(provider_name, f"JSON repair failed: {exc}") from exc
    if isinstance(data, list):
        data = {"items": data}
    if not isinstance(data, dict):
        raise ProviderMalformedResponse(provider_name, f"expected a JSON object, got {type(data).__name__}")
    return data


SALVAGE_FIELDS: tuple[str, ...] = ("name", "brand", "category", "description", "unit")


def salvage_fields(raw: str) -> dict:
    """
    Regex-extract the core string fields from a response json.loads rejected
    (truncated output, stray prose, unescaped characters further down...).
    Only fields actually found are returned.
    """
    text = strip_code_fence(raw) or (raw or "")
    found: dict[str, str] = {}
    for key in SALVAGE_FIELDS:
        m = re.search(r'"' + key + r'"\s*:\s*"([^"]*)"', text)
        if m and m.group(1).strip():
            found[key] = m.group(1).strip()
    return found


# ── Payload → ProviderResult ──────────────────────────────────────────────────

def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _confidence(value, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        try:
            value = float(value)
        except (TypeError, ValueError):
            return default
    return max(0.0, min(1.0, float(value)))


def _gst(value) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(str(value).replace("%", "").strip())
    except ValueError:
        return None


def result_from_payload(data: dict, source: str, default_confidence: float) -> ProviderResult:
    """Coerce a decoded single-item payload into the common shape."""
    return ProviderResult(
        name=_text(data.get("name") or data.get("productName")),
        brand=_text(data.get("brand")),
        unit=_text(data.get("unit")),
        category=_text(data.get("category")),
        description=_text(data.get("description")),
        sku=_text(data.get("sku")),
        mrp=_text(data.get("mrp")),
        selling_price=_text(data.get("sellingPrice")),
        hsn=_text(data.get("hsn") or data.get("hsnCode")),
        gst=_gst(data.get("gst", data.get("gstRate"))),
        variant=_text(data.get("variant")),
        confidence=_confidence(data.get("confidence"), default_confidence),
        source=source,
    )


def items_from_payload(data: dict, source: str, default_confidence: float) -> list[ProviderResult]:
    """Multi-item payload {"items": [...]} → results (entries without a name dropped)."""
    items = data.get("items")
    if not isinstance(items, list):
        return []
    results = []
    for item in items:
        if not isinstance(item, dict):
            continue
        r = result_from_payload(item, source, default_confidence)
        if r.name:
            results.append(r)
    return results


# ── Abstract base ──────────────────────────────────────────────────────────────

class VisionProvider(ABC):
    """Base class all vision providers must implement."""

    name: str           # e.g. "google"
    model_id: str       # e.g. "gemini-2.5-flash"
    timeout: float
    multi_timeout: float
    cost_per_1k_input_tokens: float
    cost_per_1k_output_tokens: float
    cost_per_image: float = 0.0

    @abstractmethod
    async def identify(self, image_bytes: bytes, text_context: str = "") -> ProviderResult:
        """
        Identify the single product in image_bytes.
        Raises ProviderUnavailable / ProviderTimeout / ProviderMalformedResponse.
        """
        ...

    @abstractmethod
    async def identify_many(self, image_bytes: bytes, context: str = "") -> list[ProviderResult]:
        """Identify every distinct product in the image (may return [])."""
        ...

    @property
    def full_name(self) -> str:
        return f"{self.name}/{self.model_id}"

    def estimate_cost(self, input_tokens: int, output_tokens: int) -> float:
        return (
            self.cost_per_image
            + input_tokens / 1000 * self.cost_per_1k_input_tokens
            + output_tokens / 1000 * self.cost_per_1k_output_tokens
        )
