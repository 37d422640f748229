from __future__ import annotations
import io
import logging
import os
from typing import Optional, Tuple, Union

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import DecodeError, SurfaceError
from .types import Rect

logger = logging.getLogger(__name__)

ImageSource = Union[str, os.PathLike, bytes]


def parse_color(color: str) -> Tuple[int, int, int]:
    """Parse '#RRGGBB' (or '#RGB') into a BGR tuple for OpenCV."""
    s = color.strip().lstrip('#')
    if len(s) == 3:
        s = ''.join(ch * 2 for ch in s)
    if len(s) != 6:
        raise ValueError(f'Invalid color: {color!r}')
    r, g, b = (int(s[i:i + 2], 16) for i in (0, 2, 4))
    return b, g, r


class Bitmap:
    """A decoded BGR image. Closing drops the pixel buffer."""

    def __init__(self, pixels: np.ndarray, name: str = ''):
        self._pixels: Optional[np.ndarray] = pixels
        self.name = name

    @property
    def pixels(self) -> np.ndarray:
        if self._pixels is None:
            raise SurfaceError(f'Bitmap already closed: {self.name}')
        return self._pixels

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def closed(self) -> bool:
        return self._pixels is None

    def close(self):
        self._pixels = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class Surface:
    """Reusable BGR raster buffer with the small set of canvas operations we need."""

    def __init__(self, width: int = 1, height: int = 1, name: str = 'surface'):
        self.name = name
        self._buf: Optional[np.ndarray] = None
        self.resize(width, height)

    @property
    def width(self) -> int:
        return 0 if self._buf is None else int(self._buf.shape[1])

    @property
    def height(self) -> int:
        return 0 if self._buf is None else int(self._buf.shape[0])

    @property
    def nbytes(self) -> int:
        return 0 if self._buf is None else int(self._buf.nbytes)

    def resize(self, width: int, height: int):
        if width <= 0 or height <= 0:
            raise SurfaceError(f'{self.name}: invalid size {width}x{height}')
        if self._buf is not None and self._buf.shape[:2] == (height, width):
            return
        try:
            self._buf = np.zeros((height, width, 3), dtype=np.uint8)
        except (MemoryError, ValueError) as e:
            self._buf = None
            raise SurfaceError(f'{self.name}: cannot allocate {width}x{height}: {e}') from e

    def context(self) -> np.ndarray:
        """Writable pixel buffer; raises SurfaceError when none can be acquired."""
        if self._buf is None:
            raise SurfaceError(f'Could not get drawing context for {self.name}')
        return self._buf

    def fill(self, color: str):
        self.context()[:, :] = parse_color(color)

    def fill_rect(self, rect: Rect, color: str):
        buf = self.context()
        r = rect.clamped_to(Rect(0, 0, self.width, self.height))
        if r.is_empty:
            return
        buf[r.y:r.bottom, r.x:r.right] = parse_color(color)

    def draw_region(self, bitmap: Bitmap, src: Rect, dx: int = 0, dy: int = 0):
        """Copy bitmap[src] to (dx, dy). Source pixels outside the bitmap are skipped."""
        buf = self.context()
        pixels = bitmap.pixels
        visible = src.clamped_to(Rect(0, 0, bitmap.width, bitmap.height))
        if visible.is_empty:
            return
        tx = dx + (visible.x - src.x)
        ty = dy + (visible.y - src.y)
        dst = Rect(tx, ty, visible.width, visible.height).clamped_to(Rect(0, 0, self.width, self.height))
        if dst.is_empty:
            return
        sx = visible.x + (dst.x - tx)
        sy = visible.y + (dst.y - ty)
        buf[dst.y:dst.bottom, dst.x:dst.right] = pixels[sy:sy + dst.height, sx:sx + dst.width]

    def blit(self, other: 'Surface', x: int, y: int):
        self.draw_region(Bitmap(other.context(), other.name), Rect(0, 0, other.width, other.height), x, y)

    def shrink(self):
        """Drop to a 1x1 buffer."""
        self._buf = np.zeros((1, 1, 3), dtype=np.uint8)


def _source_name(source: ImageSource) -> str:
    if isinstance(source, (bytes, bytearray)):
        return f'<{len(source)} bytes>'
    return os.fspath(source)


def _read_bytes(source: ImageSource) -> bytes:
    if isinstance(source, (bytes, bytearray)):
        return bytes(source)
    with open(source, 'rb') as f:
        return f.read()


def _decode_with_pil(data: bytes) -> Optional[np.ndarray]:
    try:
        with Image.open(io.BytesIO(data)) as im:
            rgb = np.array(im.convert('RGB'))
    except (UnidentifiedImageError, OSError, ValueError):
        return None
    return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)


def decode_image(source: ImageSource) -> Bitmap:
    name = _source_name(source)
    try:
        data = _read_bytes(source)
    except OSError as e:
        raise DecodeError(name, str(e)) from e
    if not data:
        raise DecodeError(name, 'empty file')

    pixels = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
    if pixels is None:
        logger.debug('OpenCV could not decode %s, trying Pillow', name)
        pixels = _decode_with_pil(data)
    if pixels is None:
        raise DecodeError(name, 'unsupported or corrupt image data')
    return Bitmap(pixels, name)
