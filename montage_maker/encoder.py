from __future__ import annotations
import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional

import cv2

from .errors import EncodeError, SurfaceError
from .surface import Surface

logger = logging.getLogger(__name__)

FORMATS = ('webp', 'png', 'jpeg')
EXTENSIONS: Dict[str, str] = {'webp': 'webp', 'png': 'png', 'jpeg': 'jpg'}
DEFAULT_TIMEOUT = 30.0


def encode_params(fmt: str, quality: int) -> List[int]:
    q = min(100, max(1, int(quality)))
    if fmt == 'webp':
        return [cv2.IMWRITE_WEBP_QUALITY, q]
    if fmt == 'jpeg':
        return [cv2.IMWRITE_JPEG_QUALITY, q]
    if fmt == 'png':
        return []
    raise EncodeError(f'Unsupported output format: {fmt}')


def encode_pixels(surface: Surface, fmt: str, quality: int) -> bytes:
    params = encode_params(fmt, quality)
    try:
        ok, buf = cv2.imencode('.' + EXTENSIONS[fmt], surface.context(), params)
    except (cv2.error, SurfaceError) as e:
        raise EncodeError(f'Failed to encode {fmt}: {e}') from e
    if not ok:
        raise EncodeError(f'Failed to encode {fmt}')
    return buf.tobytes()


async def encode_surface(surface: Surface, fmt: str, quality: int, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    try:
        data = await asyncio.wait_for(asyncio.to_thread(encode_pixels, surface, fmt, quality), timeout)
    except asyncio.TimeoutError as e:
        raise EncodeError(f'Encoding {fmt} timed out after {timeout:g}s') from e
    logger.info('Encoded %dx%d %s (q=%d): %d bytes', surface.width, surface.height, fmt, quality, len(data))
    return data


def suggested_filename(fmt: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now()
    return f"montage_{now.strftime('%Y%m%d_%H%M%S')}.{EXTENSIONS.get(fmt, fmt)}"
