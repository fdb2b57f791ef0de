"""
Abstract bases for the optional enrichment backends.

Every backend is optional: the pipeline receives None for any that isn't
configured and simply skips that step. Backends raise EnrichmentFailure
(HTTP errors, transport errors, API-reported errors); the helpers in
enrichment.extractors catch and log so enrichment can never fail a request.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from product import CatalogRecord, WebHint


@dataclass
class Detection:
    """What a text/logo detector saw in one image."""
    text: str = ""
    logo_score: float = 0.0     # best logo confidence, 0–1


class TextDetector(ABC):

    @abstractmethod
    async def detect(self, image_bytes: bytes) -> Detection:
        """Run OCR + logo detection on one image."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...


class CatalogBackend(ABC):

    @abstractmethod
    async def lookup(self, code: str) -> Optional[CatalogRecord]:
        """Return metadata for a barcode, or None when the catalog has no entry."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...


class WebSearchBackend(ABC):

    @abstractmethod
    async def search(self, query: str, num: int = 2) -> list[WebHint]:
        """Return up to `num` results for an already-biased query."""
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        ...
