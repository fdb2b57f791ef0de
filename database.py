"""
database.py — async SQLite persistence via aiosqlite.

Tables:
  vision_cache — one row per image fingerprint: the best canonical product
                 seen for that image (JSON), its stored scan path, and the
                 last write time

The DB file is created automatically on first run. Rows are upserted and
never deleted.
"""
from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import aiosqlite

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so Docker volume mounts work
# correctly (mount ./data:/app/data) and the file survives container restarts.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH = str(_DATA_DIR / "vision_cache.db")
_lock = asyncio.Lock()          # serialise schema creation


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS vision_cache (
    fingerprint TEXT PRIMARY KEY,
    best_json   TEXT NOT NULL,
    image_path  TEXT,
    updated_at  TEXT NOT NULL
);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.executescript(_SCHEMA)
            await db.commit()
    logger.info("Database initialised at %s", DB_PATH)


# ── Vision cache ──────────────────────────────────────────────────────────────

async def get_cache_row(fingerprint: str) -> Optional[dict]:
    """Return {fingerprint, best_json, image_path, updated_at} or None."""
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute(
            "SELECT fingerprint, best_json, image_path, updated_at "
            "FROM vision_cache WHERE fingerprint = ?",
            (fingerprint,),
        ) as cur:
            row = await cur.fetchone()
    if not row:
        return None
    return {
        "fingerprint": row[0],
        "best_json":   row[1],
        "image_path":  row[2],
        "updated_at":  datetime.fromisoformat(row[3]),
    }


async def upsert_cache_row(
    fingerprint: str,
    best_json: str,
    image_path: Optional[str],
    updated_at: Optional[datetime] = None,
) -> None:
    ts = (updated_at or datetime.now(timezone.utc)).isoformat()
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            """INSERT INTO vision_cache (fingerprint, best_json, image_path, updated_at)
               VALUES (?, ?, ?, ?)
               ON CONFLICT(fingerprint) DO UPDATE SET
                 best_json  = excluded.best_json,
                 image_path = excluded.image_path,
                 updated_at = excluded.updated_at""",
            (fingerprint, best_json, image_path, ts),
        )
        await db.commit()


async def get_cache_count() -> int:
    async with aiosqlite.connect(DB_PATH) as db:
        async with db.execute("SELECT COUNT(*) FROM vision_cache") as cur:
            row = await cur.fetchone()
            return row[0] if row else 0
