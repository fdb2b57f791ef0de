"""
product.py — the records that flow through the identification pipeline.

CanonicalProduct is what clients see (under best / product / autofill);
CacheEntry is what the cache stores, keyed by the image fingerprint.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


@dataclass
class ImageInput:
    """A decoded identify request. Exactly one of image / image_url / frames is used."""
    image: Optional[bytes] = None
    image_url: str = ""
    frames: list[bytes] = field(default_factory=list)
    barcode_hint: str = ""
    context_prompt: str = ""        # multi-item endpoint only
    origin: str = "base64"          # base64 | url | frames


@dataclass
class CanonicalProduct:
    """Cleaned, UI-ready product record produced once per successful run."""
    product_name: str
    brand: str = ""
    variant: str = ""
    category: str = ""
    unit: str = ""
    description: str = ""
    code: str = ""                  # barcode / SKU
    mrp: str = ""                   # numeric string, "" when unknown
    hsn: str = ""
    gst: Optional[int] = None       # one of 0/5/12/18/28, or None
    source: str = ""                # model that produced the guess
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return {
            "productName": self.product_name,
            "brand":       self.brand,
            "variant":     self.variant,
            "category":    self.category,
            "unit":        self.unit,
            "description": self.description,
            "code":        self.code,
            "mrp":         self.mrp,
            "hsn":         self.hsn,
            "gst":         self.gst,
            "source":      self.source,
            "confidence":  self.confidence,
        }

    def autofill(self) -> dict:
        """Field-renamed subset used by the add-product form."""
        return {
            "productName": self.product_name,
            "brand":       self.brand,
            "variant":     self.variant,
            "category":    self.category,
            "sku":         self.code,
            "unit":        self.unit,
            "hsn":         self.hsn,
            "gst":         self.gst,
            "mrp":         self.mrp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CanonicalProduct":
        gst = data.get("gst")
        return cls(
            product_name=data.get("productName", "") or "",
            brand=data.get("brand", "") or "",
            variant=data.get("variant", "") or "",
            category=data.get("category", "") or "",
            unit=data.get("unit", "") or "",
            description=data.get("description", "") or "",
            code=data.get("code", "") or "",
            mrp=data.get("mrp", "") or "",
            hsn=data.get("hsn", "") or "",
            gst=int(gst) if gst is not None else None,
            source=data.get("source", "") or "",
            confidence=float(data.get("confidence") or 0.0),
        )


@dataclass
class CacheEntry:
    fingerprint: str
    best: CanonicalProduct
    image_path: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class WebHint:
    title: str
    link: str
    snippet: str = ""


@dataclass
class CatalogRecord:
    """Barcode metadata from an external catalog (e.g. Open Food Facts)."""
    barcode: str
    product_name: str
    brand: str = ""
    category: str = ""
    unit: str = ""
    image_url: str = ""
    source: str = ""

    def to_context(self) -> dict:
        """Compact dict embedded in the provider text context."""
        return {
            k: v for k, v in {
                "productName": self.product_name,
                "brand":       self.brand,
                "category":    self.category,
                "unit":        self.unit,
            }.items() if v
        }
