"""Crop-rectangle detection from luminance edges along the image centre lines.

Only the middle row and the middle column are sampled. Each of the four
scans walks from the border towards the centre and stops at the first
neighbour pair whose luminance jumps by more than the current threshold.
Thresholds are tried from strict to relaxed until the candidate rectangle
passes the plausibility filter.
"""
from __future__ import annotations
import logging
from typing import Optional, Sequence, Tuple

import numpy as np

from .surface import Bitmap
from .types import Rect

logger = logging.getLogger(__name__)

THRESHOLD_LEVELS: Tuple[float, ...] = (48.0, 32.0, 20.0, 12.0)
START_OFFSET = 2
LETTERBOX_ASPECT_LIMIT = 2.0
CONTENT_ASPECT = 16 / 9
BOTTOM_START_RATIO = 0.95
BOTTOM_TOLERANCE = 0.01
MIN_WIDTH_RATIO = 0.3
MIN_HEIGHT_RATIO = 0.3
MAX_ASPECT = 4.0


def luminance(samples: np.ndarray) -> np.ndarray:
    """Luminance of an (N, 3) BGR sample strip."""
    s = samples.astype(np.float32)
    return 0.114 * s[:, 0] + 0.587 * s[:, 1] + 0.299 * s[:, 2]


def center_lines(bitmap: Bitmap) -> Tuple[np.ndarray, np.ndarray]:
    px = bitmap.pixels
    h, w = px.shape[:2]
    return luminance(px[h // 2, :, :]), luminance(px[:, w // 2, :])


def scan_forward(lum: np.ndarray, start: int, stop: int, threshold: float) -> Optional[int]:
    """Index of the first pixel after an edge when walking start -> stop."""
    for i in range(max(start, 0), min(stop, len(lum) - 1)):
        if abs(float(lum[i + 1]) - float(lum[i])) > threshold:
            return i + 1
    return None


def scan_backward(lum: np.ndarray, start: int, stop: int, threshold: float) -> Optional[int]:
    """Exclusive end of the content when walking start -> stop towards index 0."""
    for i in range(min(start, len(lum) - 1), max(stop, 0), -1):
        if abs(float(lum[i - 1]) - float(lum[i])) > threshold:
            return i
    return None


def letterbox_band(width: int, height: int) -> int:
    if height <= 0 or width / height <= LETTERBOX_ASPECT_LIMIT:
        return 0
    return max(0, int((width - height * CONTENT_ASPECT) / 2))


def find_candidate(row: np.ndarray, col: np.ndarray, threshold: float) -> Optional[Rect]:
    w, h = len(row), len(col)
    band = letterbox_band(w, h)
    cx, cy = w // 2, h // 2

    left = scan_forward(row, band + START_OFFSET, cx, threshold)
    right = scan_backward(row, w - 1 - band - START_OFFSET, cx, threshold)
    top = scan_forward(col, START_OFFSET, cy, threshold)
    bottom = scan_backward(col, int(h * BOTTOM_START_RATIO), cy, threshold)
    if None in (left, right, top, bottom):
        return None
    if right <= left or bottom <= top:
        return None
    return Rect(left, top, right - left, bottom - top)


def is_plausible(rect: Rect, width: int, height: int) -> bool:
    if rect.is_empty:
        return False
    if rect.width < width * MIN_WIDTH_RATIO or rect.height < height * MIN_HEIGHT_RATIO:
        return False
    if rect.width / rect.height > MAX_ASPECT:
        return False
    if rect.bottom > height * (BOTTOM_START_RATIO + BOTTOM_TOLERANCE):
        return False
    return rect.x >= 0 and rect.y >= 0 and rect.right <= width


def detect_crop(bitmap: Bitmap, thresholds: Sequence[float] = THRESHOLD_LEVELS) -> Optional[Rect]:
    row, col = center_lines(bitmap)
    for t in thresholds:
        cand = find_candidate(row, col, t)
        if cand is None:
            logger.debug('auto-crop: no edges at threshold %s', t)
            continue
        if is_plausible(cand, bitmap.width, bitmap.height):
            logger.info('auto-crop: %s at threshold %s', cand, t)
            return cand
        logger.debug('auto-crop: rejected %s at threshold %s', cand, t)
    logger.info('auto-crop: no plausible rectangle in %s', bitmap.name or 'image')
    return None
