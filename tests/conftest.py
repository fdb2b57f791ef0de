"""
Shared pytest fixtures.

Every test gets a clean temporary DATA_DIR via the `tmp_data_dir` fixture so
tests are fully isolated from each other and from the real vision_cache.db.
"""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# ── Make the project root importable without installing the package ────────────
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from providers.base import ProviderResult, VisionProvider  # noqa: E402


@pytest.fixture(autouse=True)
def tmp_data_dir(tmp_path, monkeypatch):
    """
    Redirect DATA_DIR to a fresh tmp directory for every test.
    This gives each test a clean SQLite file and prevents cross-test pollution.
    """
    data = tmp_path / "data"
    data.mkdir()
    monkeypatch.setenv("DATA_DIR", str(data))

    import config
    monkeypatch.setattr(config, "DATA_DIR", str(data))

    # Patch the module-level DB_PATH that was already computed at import time
    import database
    monkeypatch.setattr(database, "DB_PATH", str(data / "vision_cache.db"))
    monkeypatch.setattr(database, "_DATA_DIR", data)

    # Also reset the internal lock so tests don't share state
    monkeypatch.setattr(database, "_lock", asyncio.Lock())

    yield data


# ── Helpers shared by several test modules ─────────────────────────────────────

def make_result(**kwargs) -> ProviderResult:
    defaults = dict(
        name="Dettol Original Liquid Handwash 200 ml",
        brand="dettol",
        unit="200 ml bottle",
        category="Personal Care",
        description="Antiseptic liquid handwash",
        sku="",
        mrp="99",
        selling_price="",
        hsn="",
        gst=18,
        variant="Original",
        confidence=0.92,
        source="gemini-2.5-flash",
        latency_ms=850,
        input_tokens=900,
        output_tokens=140,
        cost_usd=0.0006,
    )
    defaults.update(kwargs)
    return ProviderResult(**defaults)


def make_provider(name: str = "google", model: str = "gemini-2.5-flash",
                  result: ProviderResult | None = None,
                  error: Exception | None = None) -> VisionProvider:
    p = MagicMock(spec=VisionProvider)
    p.name = name
    p.model_id = model
    p.full_name = f"{name}/{model}"
    p.timeout = 30.0
    if error is not None:
        p.identify = AsyncMock(side_effect=error)
        p.identify_many = AsyncMock(side_effect=error)
    else:
        p.identify = AsyncMock(return_value=result or make_result())
        p.identify_many = AsyncMock(return_value=[result or make_result()])
    return p
