"""
Google Custom Search backend for whitelisted retail web hints.

  GET https://www.googleapis.com/customsearch/v1?key=..&cx=..&q=..&num=2

The query arrives already biased to the retail allow-list
(canonical.bias_query); this module only performs the call and maps items.
"""
from __future__ import annotations

import asyncio
import logging

import aiohttp

from enrichment.base import WebSearchBackend
from errors import EnrichmentFailure
from product import WebHint

logger = logging.getLogger(__name__)

SEARCH_URL = "https://www.googleapis.com/customsearch/v1"


class GoogleCSEBackend(WebSearchBackend):

    def __init__(self, api_key: str, cx: str, timeout: float = 8.0) -> None:
        self._key = api_key
        self._cx = cx
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def name(self) -> str:
        return "Google Custom Search"

    async def search(self, query: str, num: int = 2) -> list[WebHint]:
        params = {"key": self._key, "cx": self._cx, "q": query, "num": str(num)}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(SEARCH_URL, params=params, timeout=self._timeout) as resp:
                    if resp.status != 200:
                        text = await resp.text()
                        raise EnrichmentFailure(f"CSE error {resp.status}: {text[:200]}")
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise EnrichmentFailure(f"CSE request failed: {e}") from e

        hints = []
        for item in (data.get("items") or [])[:num]:
            if not isinstance(item, dict) or not item.get("title"):
                continue
            hints.append(WebHint(
                title=item.get("title", ""),
                link=item.get("link", ""),
                snippet=item.get("snippet", ""),
            ))
        return hints
