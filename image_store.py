"""
Compressed copies of identified scans, written under DATA_DIR/scans/.

EXIF-rotated, downscaled to SCAN_MAX_WIDTH (never enlarged), re-encoded as
JPEG at SCAN_JPEG_QUALITY. The returned path is relative to DATA_DIR and is
what the cache stores as image_path.
"""
from __future__ import annotations

import asyncio
import io
import logging
from pathlib import Path

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)


def compress_scan(image_bytes: bytes, max_width: int = 800, quality: int = 72) -> bytes:
    with Image.open(io.BytesIO(image_bytes)) as img:
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        if img.width > max_width:
            height = max(1, round(img.height * max_width / img.width))
            img = img.resize((max_width, height), Image.Resampling.LANCZOS)
        out = io.BytesIO()
        img.save(out, format="JPEG", quality=quality, optimize=True)
        return out.getvalue()


class ScanImageStore:

    def __init__(self, data_dir: str | Path, max_width: int = 800, quality: int = 72) -> None:
        self.root = Path(data_dir)
        self.max_width = max_width
        self.quality = quality

    def _write(self, fp: str, image_bytes: bytes) -> str:
        rel = f"scans/{fp}.jpg"
        target = self.root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(compress_scan(image_bytes, self.max_width, self.quality))
        return rel

    async def save(self, fp: str, image_bytes: bytes) -> str:
        """Compress and persist; returns "scans/<fp>.jpg". Raises on bad image data."""
        rel = await asyncio.to_thread(self._write, fp, image_bytes)
        logger.debug("Stored scan %s", rel)
        return rel
