from __future__ import annotations
import dataclasses
import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from . import autocrop
from .ocr import OcrSession
from .patterns import PatternSet
from .surface import Bitmap
from .types import (DetectedWord, MaskMode, MaskSide, MaskSlot, ProgressEvent,
                    RatioRect, Rect, ResolvedGeometry, Settings)

logger = logging.getLogger(__name__)

OCR_BAND_RATIO = 0.2

FALLBACK_CROP_AUTO = 'crop_auto'
FALLBACK_OCR = {MaskSide.ENEMY: 'mask_ocr', MaskSide.SELF: 'self_mask_ocr'}

ProgressCallback = Callable[[ProgressEvent], None]


def round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def clamp01(v: float) -> float:
    return min(1.0, max(0.0, v))


def ratio_to_rect(crop: Rect, ratio: RatioRect) -> Rect:
    rx0, ry0 = clamp01(ratio.rx0), clamp01(ratio.ry0)
    rx1, ry1 = clamp01(ratio.rx1), clamp01(ratio.ry1)
    x0 = round_half_up(rx0 * crop.width)
    y0 = round_half_up(ry0 * crop.height)
    return Rect(
        x=crop.x + x0,
        y=crop.y + y0,
        width=max(0, round_half_up(rx1 * crop.width) - x0),
        height=max(0, round_half_up(ry1 * crop.height) - y0),
    )


def rect_to_ratio(crop: Rect, rect: Rect) -> RatioRect:
    return RatioRect(
        rx0=clamp01((rect.x - crop.x) / crop.width),
        ry0=clamp01((rect.y - crop.y) / crop.height),
        rx1=clamp01((rect.right - crop.x) / crop.width),
        ry1=clamp01((rect.bottom - crop.y) / crop.height),
    )


def ocr_search_region(crop: Rect, side: MaskSide) -> Rect:
    half = crop.width // 2
    band = max(1, round_half_up(crop.height * OCR_BAND_RATIO))
    if side is MaskSide.ENEMY:
        return Rect(crop.x + half, crop.y, crop.width - half, band)
    return Rect(crop.x, crop.y, half, band)


def select_anchor(words: Sequence[DetectedWord], patterns: PatternSet) -> Optional[DetectedWord]:
    """Topmost word matching the label pattern; ties go to the leftmost, then first seen."""
    hits = [(w.y0, w.x0, i, w) for i, w in enumerate(words) if patterns.matches(w.text)]
    if not hits:
        return None
    return min(hits, key=lambda t: t[:3])[3]


def ocr_mask_rect(word: DetectedWord, crop: Rect, side: MaskSide, padding: int) -> Rect:
    x0 = word.x0 - padding
    y0 = word.y0 - padding
    x1 = word.x1 + padding
    y1 = word.y1 + padding
    if side is MaskSide.ENEMY:
        x1 = crop.right
    else:
        x0 = crop.x
    return Rect(x0, y0, x1 - x0, y1 - y0).clamped_to(crop)


@dataclass(frozen=True)
class Resolution:
    geometry: ResolvedGeometry
    settings: Settings
    fallbacks: Tuple[str, ...] = ()


def resolve_crop(settings: Settings, reference: Optional[Bitmap]) -> Tuple[Settings, Optional[str]]:
    if not settings.crop_auto:
        return settings, None
    rect = autocrop.detect_crop(reference) if reference is not None else None
    if rect is None:
        logger.warning('Crop detection found no plausible rectangle; using manual crop %s', settings.crop)
        return dataclasses.replace(settings, crop_auto=False), FALLBACK_CROP_AUTO
    return dataclasses.replace(settings, crop=rect), None


async def resolve_slot(slot: MaskSlot, side: MaskSide, crop: Rect, reference: Optional[Bitmap],
                       session: Optional[OcrSession], patterns: PatternSet,
                       padding: int) -> Tuple[MaskSlot, Optional[str]]:
    if not slot.enabled or slot.mode is MaskMode.MANUAL:
        return slot, None
    if slot.mode is MaskMode.RATIO:
        return dataclasses.replace(slot, rect=ratio_to_rect(crop, slot.ratio)), None

    word = None
    if reference is not None and session is not None:
        region = ocr_search_region(crop, side)
        words = await session.recognize(reference.pixels, region)
        logger.debug('OCR %s region %s: %d words, label candidates %s', side.value, region, len(words),
                     [tok for _, tok in patterns.find_matches(' '.join(w.text for w in words))])
        word = select_anchor(words, patterns)
    if word is None:
        logger.warning('No label found for %s mask; keeping manual rect %s', side.value, slot.rect)
        return dataclasses.replace(slot, mode=MaskMode.MANUAL), FALLBACK_OCR[side]
    return dataclasses.replace(slot, rect=ocr_mask_rect(word, crop, side, padding)), None


def needs_reference(settings: Settings) -> bool:
    if settings.crop_auto:
        return True
    return any(s.enabled and s.mode is MaskMode.OCR for s in (settings.mask, settings.self_mask))


async def resolve_geometry(settings: Settings, reference: Optional[Bitmap], session: Optional[OcrSession],
                           patterns: Optional[PatternSet] = None, padding: int = 4,
                           on_progress: Optional[ProgressCallback] = None) -> Resolution:
    """Resolve the crop, then both mask slots, against the reference image.

    Detection misses never raise: the affected feature falls back to its
    manual value and its name is reported in ``fallbacks``.
    """
    patterns = patterns or PatternSet.default()
    fallbacks: List[str] = []

    def progress(pct: float):
        if on_progress is not None:
            on_progress(ProgressEvent('detect', pct))

    progress(0.0)
    settings, fb = resolve_crop(settings, reference)
    if fb:
        fallbacks.append(fb)
    progress(34.0)

    slots = {}
    for pct, side in ((67.0, MaskSide.ENEMY), (100.0, MaskSide.SELF)):
        slot = settings.slot(side)
        uses_ocr = slot.enabled and slot.mode is MaskMode.OCR
        if uses_ocr and on_progress is not None:
            on_progress(ProgressEvent('ocr', 0.0))
        slot, fb = await resolve_slot(slot, side, settings.crop, reference,
                                      session, patterns, padding)
        if uses_ocr and on_progress is not None:
            on_progress(ProgressEvent('ocr', 100.0))
        if fb:
            fallbacks.append(fb)
        slots[side] = slot
        progress(pct)

    settings = dataclasses.replace(settings, mask=slots[MaskSide.ENEMY], self_mask=slots[MaskSide.SELF])
    masks = tuple((s.rect, s.color) for s in (settings.mask, settings.self_mask) if s.enabled)
    geometry = ResolvedGeometry(crop=settings.crop, masks=masks)
    return Resolution(geometry=geometry, settings=settings, fallbacks=tuple(fallbacks))
