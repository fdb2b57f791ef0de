"""
Content cache — best known product per image fingerprint.

The fingerprint is the SHA-256 of the canonical image bytes (after base64
decoding, URL download or frame selection), so a repeated photo skips every
downstream step.

Writes merge by default:
  - best        highest confidence wins; on a tie the incoming write wins
  - image_path  newest non-empty value is kept
  - updated_at  always refreshed
put(..., merge=False) replaces the entry outright.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

import database
from errors import CacheUnavailable
from product import CacheEntry, CanonicalProduct

logger = logging.getLogger(__name__)


def fingerprint(image_bytes: bytes) -> str:
    """Lower-case hex SHA-256 of the image bytes."""
    return hashlib.sha256(image_bytes).hexdigest()


def merge_entries(existing: Optional[CacheEntry], incoming: CacheEntry) -> CacheEntry:
    now = datetime.now(timezone.utc)
    if existing is None:
        return replace(incoming, updated_at=now)

    if incoming.best.confidence >= existing.best.confidence:
        best = incoming.best
    else:
        best = existing.best

    return CacheEntry(
        fingerprint=existing.fingerprint,
        best=best,
        image_path=incoming.image_path or existing.image_path,
        updated_at=now,
    )


class CacheStore(ABC):

    @abstractmethod
    async def get(self, fp: str) -> Optional[CacheEntry]:
        ...

    @abstractmethod
    async def put(self, fp: str, entry: CacheEntry, merge: bool = True) -> CacheEntry:
        """Store `entry` under `fp` and return what was actually stored."""
        ...

    @abstractmethod
    async def count(self) -> int:
        ...


class MemoryCacheStore(CacheStore):
    """Per-process dict. Used for CACHE_BACKEND=memory and in tests."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, fp: str) -> Optional[CacheEntry]:
        return self._entries.get(fp)

    async def put(self, fp: str, entry: CacheEntry, merge: bool = True) -> CacheEntry:
        entry = replace(entry, fingerprint=fp)
        stored = merge_entries(self._entries.get(fp) if merge else None, entry)
        self._entries[fp] = stored
        return stored

    async def count(self) -> int:
        return len(self._entries)


class SqliteCacheStore(CacheStore):
    """Durable store backed by the vision_cache table in database.py."""

    def __init__(self) -> None:
        self._write_lock = asyncio.Lock()   # read-merge-write must not interleave

    async def get(self, fp: str) -> Optional[CacheEntry]:
        try:
            row = await database.get_cache_row(fp)
        except Exception as e:
            raise CacheUnavailable(f"cache read failed: {e}") from e
        if row is None:
            return None
        try:
            best = CanonicalProduct.from_dict(json.loads(row["best_json"]))
        except (ValueError, TypeError) as e:
            logger.warning("Corrupt cache row for %s ignored: %s", fp[:12], e)
            return None
        return CacheEntry(
            fingerprint=row["fingerprint"],
            best=best,
            image_path=row["image_path"],
            updated_at=row["updated_at"],
        )

    async def put(self, fp: str, entry: CacheEntry, merge: bool = True) -> CacheEntry:
        entry = replace(entry, fingerprint=fp)
        async with self._write_lock:
            existing = await self.get(fp) if merge else None
            stored = merge_entries(existing, entry)
            try:
                await database.upsert_cache_row(
                    fp,
                    json.dumps(stored.best.to_dict(), ensure_ascii=False),
                    stored.image_path,
                    stored.updated_at,
                )
            except Exception as e:
                raise CacheUnavailable(f"cache write failed: {e}") from e
        return stored

    async def count(self) -> int:
        try:
            return await database.get_cache_count()
        except Exception as e:
            raise CacheUnavailable(f"cache count failed: {e}") from e


def build_cache(backend: str) -> CacheStore:
    if backend == "memory":
        logger.warning("CACHE_BACKEND=memory — cache is per-process and lost on restart")
        return MemoryCacheStore()
    return SqliteCacheStore()
