"""
Google Cloud Vision backend — OCR text + logo detection in one REST call.

Uses the images:annotate endpoint with an API key, so no service-account
setup is needed:
  POST https://vision.googleapis.com/v1/images:annotate?key=API_KEY
  { "requests": [ { "image": {"content": b64},
                    "features": [{"type": "TEXT_DETECTION"}, {"type": "LOGO_DETECTION"}] } ] }

textAnnotations[0].description is the full detected text block;
logoAnnotations[0].score is the most confident logo.
"""
from __future__ import annotations

import asyncio
import base64
import logging

import aiohttp

from enrichment.base import Detection, TextDetector
from errors import EnrichmentFailure

logger = logging.getLogger(__name__)

ANNOTATE_URL = "https://vision.googleapis.com/v1/images:annotate"


class GoogleVisionDetector(TextDetector):

    def __init__(self, api_key: str, timeout: float = 10.0) -> None:
        self._key = api_key
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def name(self) -> str:
        return "Google Cloud Vision"

    async def detect(self, image_bytes: bytes) -> Detection:
        payload = {
            "requests": [{
                "image": {"content": base64.b64encode(image_bytes).decode()},
                "features": [{"type": "TEXT_DETECTION"}, {"type": "LOGO_DETECTION"}],
            }]
        }
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    ANNOTATE_URL,
                    params={"key": self._key},
                    json=payload,
                    timeout=self._timeout,
                ) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise EnrichmentFailure(f"Vision API error {resp.status}: {text[:200]}")
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise EnrichmentFailure(f"Vision API request failed: {e}") from e
        return _parse_annotation(data)


def _parse_annotation(data: dict) -> Detection:
    responses = data.get("responses") or [{}]
    anno = responses[0] or {}
    if anno.get("error"):
        raise EnrichmentFailure(f"Vision API error: {anno['error'].get('message', anno['error'])}")

    texts = anno.get("textAnnotations") or []
    logos = anno.get("logoAnnotations") or []
    text = (texts[0].get("description") or "") if texts else ""
    try:
        logo_score = float(logos[0].get("score") or 0) if logos else 0.0
    except (TypeError, ValueError):
        logo_score = 0.0
    return Detection(text=text, logo_score=logo_score)
