from __future__ import annotations
import asyncio
import logging
import math
from typing import Callable, Iterator, Optional, Sequence, Tuple

from .surface import Bitmap, ImageSource, Surface, decode_image
from .types import ProgressEvent, ResolvedGeometry, Settings

logger = logging.getLogger(__name__)

Decoder = Callable[[ImageSource], Bitmap]


def montage_size(tile_w: int, tile_h: int, count: int, cols: int, offset: int) -> Tuple[int, int, int]:
    """(width, height, rows) of a montage; offset is a gutter around and between tiles."""
    rows = math.ceil(count / cols)
    width = tile_w * cols + offset * (cols + 1)
    height = tile_h * rows + offset * (rows + 1)
    return width, height, rows


def tile_origin(index: int, tile_w: int, tile_h: int, cols: int, offset: int) -> Tuple[int, int]:
    col = index % cols
    row = index // cols
    return offset + col * (tile_w + offset), offset + row * (tile_h + offset)


def composite_tile(bitmap: Bitmap, geometry: ResolvedGeometry, scratch: Surface, bg_color: str):
    """Crop bitmap into the scratch surface and paint the mask rectangles over it."""
    crop = geometry.crop
    scratch.resize(crop.width, crop.height)
    scratch.fill(bg_color)
    scratch.draw_region(bitmap, crop)
    bitmap.close()
    for rect, color in geometry.masks:
        scratch.fill_rect(rect.translated(-crop.x, -crop.y), color)


def iter_composite(sources: Sequence[ImageSource], geometry: ResolvedGeometry, settings: Settings,
                   scratch: Surface, montage: Surface, decoder: Decoder = decode_image) -> Iterator[int]:
    """Draw one tile per step onto montage, yielding the finished tile index."""
    crop = geometry.crop
    for i, source in enumerate(sources):
        bitmap = decoder(source)
        try:
            composite_tile(bitmap, geometry, scratch, settings.bg_color)
        finally:
            bitmap.close()
        x, y = tile_origin(i, crop.width, crop.height, settings.col_count, settings.offset)
        montage.blit(scratch, x, y)
        yield i


async def assemble_montage(sources: Sequence[ImageSource], geometry: ResolvedGeometry, settings: Settings,
                           scratch: Surface, montage: Surface, decoder: Decoder = decode_image,
                           on_progress: Optional[Callable[[ProgressEvent], None]] = None) -> Surface:
    crop = geometry.crop
    width, height, rows = montage_size(crop.width, crop.height, len(sources), settings.col_count, settings.offset)
    logger.info('Montage %dx%d: %d tiles in %d cols x %d rows', width, height, len(sources), settings.col_count, rows)
    montage.resize(width, height)
    montage.fill(settings.bg_color)
    # fail before the first decode when the scratch surface is unusable
    scratch.context()

    total = len(sources)
    for i in iter_composite(sources, geometry, settings, scratch, montage, decoder):
        if on_progress is not None:
            on_progress(ProgressEvent('composite', 100.0 * (i + 1) / total))
        await asyncio.sleep(0)
    return montage
