"""
Burst frame selection — pick the most informative frame of up to five.

score = len(ocr text) + 300 × best logo confidence

A frame whose detection fails scores 0. The first frame with a strictly
greater score wins, so ties resolve to the lowest index. The winning
frame's Detection is handed back so its OCR text is not fetched twice.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional

from enrichment.base import Detection, TextDetector
from errors import InputError

logger = logging.getLogger(__name__)

MAX_FRAMES  = 5
LOGO_WEIGHT = 300


async def _detect(frame: bytes, detector: TextDetector) -> Optional[Detection]:
    try:
        return await detector.detect(frame)
    except Exception as e:
        logger.warning("Frame scoring failed (%s): %s", detector.name, e)
        return None


def _score(detection: Optional[Detection]) -> float:
    if detection is None:
        return 0.0
    return len(detection.text or "") + LOGO_WEIGHT * (detection.logo_score or 0.0)


async def score_frame(frame: bytes, detector: TextDetector) -> float:
    return _score(await _detect(frame, detector))


async def choose(
    frames: list[bytes], detector: Optional[TextDetector],
) -> tuple[bytes, Optional[Detection]]:
    """
    Best frame plus the detection it was scored on. The detection is None
    when no scoring happened (no detector, a single frame) or it failed.
    """
    frames = list(frames)[:MAX_FRAMES]
    if not frames:
        raise InputError("No frames supplied")
    if detector is None or len(frames) == 1:
        return frames[0], None

    detections = await asyncio.gather(*(_detect(f, detector) for f in frames))

    best_idx, best_score = 0, -1.0
    for idx, detection in enumerate(detections):
        score = _score(detection)
        if score > best_score:
            best_idx, best_score = idx, score

    logger.info("Burst: picked frame %d/%d (score %.1f)", best_idx + 1, len(frames), best_score)
    return frames[best_idx], detections[best_idx]


async def select(frames: list[bytes], detector: Optional[TextDetector]) -> bytes:
    """Return the best frame. Without a detector the first frame is used."""
    frame, _ = await choose(frames, detector)
    return frame
