from __future__ import annotations
import asyncio
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Protocol

import numpy as np
import pytesseract
from pytesseract import Output

from .errors import OcrError
from .types import DetectedWord, OcrConfig, Rect

logger = logging.getLogger(__name__)


def configure_tesseract(cfg: OcrConfig):
    if cfg.tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = cfg.tesseract_cmd
        return
    # Auto-detect common Windows install paths
    possible = [
        r"C:\\Program Files\\Tesseract-OCR\\tesseract.exe",
        r"C:\\Program Files (x86)\\Tesseract-OCR\\tesseract.exe",
    ]
    for p in possible:
        if os.path.exists(p):
            pytesseract.pytesseract.tesseract_cmd = p
            break


def words_from_data(data: Dict[str, List[Any]], dx: int = 0, dy: int = 0) -> List[DetectedWord]:
    """Convert pytesseract DICT output to words, shifted by (dx, dy)."""
    words: List[DetectedWord] = []
    for i in range(len(data['text'])):
        text = data['text'][i]
        if not text or text.strip() == '':
            continue
        try:
            conf = float(str(data['conf'][i]))
        except ValueError:
            conf = -1.0
        if conf < 0:
            continue
        x0 = int(data['left'][i]) + dx
        y0 = int(data['top'][i]) + dy
        words.append(DetectedWord(
            text=text.strip(),
            x0=x0,
            y0=y0,
            x1=x0 + int(data['width'][i]),
            y1=y0 + int(data['height'][i]),
            conf=conf,
        ))
    return words


class OcrEngine(Protocol):
    def recognize(self, image_bgr: np.ndarray, region: Rect) -> List[DetectedWord]: ...

    def terminate(self) -> None: ...


class TesseractEngine:
    def __init__(self, cfg: OcrConfig):
        self.cfg = cfg
        self._alive = False
        configure_tesseract(cfg)
        try:
            version = pytesseract.get_tesseract_version()
        except (pytesseract.TesseractNotFoundError, OSError) as e:
            raise OcrError(f'Tesseract OCR is not available: {e}') from e
        logger.info('Started tesseract %s (lang=%s)', version, cfg.lang)
        self._alive = True

    def recognize(self, image_bgr: np.ndarray, region: Rect) -> List[DetectedWord]:
        if not self._alive:
            raise OcrError('OCR engine already terminated')
        h, w = image_bgr.shape[:2]
        r = region.clamped_to(Rect(0, 0, w, h))
        if r.is_empty:
            return []
        tile = image_bgr[r.y:r.bottom, r.x:r.right]
        try:
            data = pytesseract.image_to_data(tile, lang=self.cfg.lang, output_type=Output.DICT)
        except pytesseract.TesseractError as e:
            raise OcrError(f'Tesseract failed: {e}') from e
        return words_from_data(data, r.x, r.y)

    def terminate(self):
        self._alive = False


EngineFactory = Callable[[OcrConfig], OcrEngine]


class OcrSession:
    """One lazily created engine per run, shared by both mask slots."""

    def __init__(self, cfg: OcrConfig, factory: EngineFactory = TesseractEngine):
        self.cfg = cfg
        self._factory = factory
        self._engine: Optional[OcrEngine] = None
        self.closed = False

    @property
    def started(self) -> bool:
        return self._engine is not None

    def _acquire(self) -> OcrEngine:
        if self.closed:
            raise OcrError('OCR session already closed')
        if self._engine is None:
            self._engine = self._factory(self.cfg)
        return self._engine

    async def recognize(self, image_bgr: np.ndarray, region: Rect) -> List[DetectedWord]:
        engine = await asyncio.to_thread(self._acquire)
        return await asyncio.to_thread(engine.recognize, image_bgr, region)

    def close(self):
        if self.closed:
            return
        self.closed = True
        engine, self._engine = self._engine, None
        if engine is not None:
            engine.terminate()
            logger.debug('OCR engine terminated')
