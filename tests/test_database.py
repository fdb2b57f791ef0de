"""
Tests for database.py.

Covers:
  - DB path defaults to data/ subdirectory
  - Schema creation (init_db is idempotent)
  - vision_cache upsert / get / count
"""
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest
import pytest_asyncio

import database as db


@pytest_asyncio.fixture(autouse=True)
async def init(tmp_data_dir):
    """Initialise the DB schema before every test."""
    await db.init_db()


# ── DB path ────────────────────────────────────────────────────────────────────

class TestDbPath:
    def test_db_path_inside_data_dir(self, tmp_data_dir):
        assert Path(db.DB_PATH).parent == tmp_data_dir


# ── init_db ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestInitDb:
    async def test_idempotent(self):
        """Calling init_db twice must not raise."""
        await db.init_db()
        await db.init_db()

    async def test_db_file_created(self, tmp_data_dir):
        assert Path(db.DB_PATH).exists()


# ── vision_cache ───────────────────────────────────────────────────────────────

@pytest.mark.asyncio
class TestVisionCache:
    async def test_missing_row(self):
        assert await db.get_cache_row("nope") is None

    async def test_upsert_and_get(self):
        ts = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        await db.upsert_cache_row("abc", '{"productName": "Maggi"}', "scans/abc.jpg", ts)

        row = await db.get_cache_row("abc")
        assert row["best_json"] == '{"productName": "Maggi"}'
        assert row["image_path"] == "scans/abc.jpg"
        assert row["updated_at"] == ts

    async def test_upsert_overwrites_same_key(self):
        await db.upsert_cache_row("abc", '{"productName": "A"}', None)
        await db.upsert_cache_row("abc", '{"productName": "B"}', "scans/abc.jpg")

        row = await db.get_cache_row("abc")
        assert row["best_json"] == '{"productName": "B"}'
        assert await db.get_cache_count() == 1

    async def test_count(self):
        assert await db.get_cache_count() == 0
        await db.upsert_cache_row("a", "{}", None)
        await db.upsert_cache_row("b", "{}", None)
        assert await db.get_cache_count() == 2
