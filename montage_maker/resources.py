from __future__ import annotations
import logging

from .ocr import EngineFactory, OcrSession, TesseractEngine
from .surface import Surface
from .types import OcrConfig

logger = logging.getLogger(__name__)


class RunResources:
    """Scratch surface, montage surface and OCR session owned by one run."""

    def __init__(self, ocr_config: OcrConfig, engine_factory: EngineFactory = TesseractEngine):
        self.scratch = Surface(name='scratch surface')
        self.montage = Surface(name='montage surface')
        self.ocr = OcrSession(ocr_config, engine_factory)
        self.released = False

    def release(self):
        """Best-effort teardown; each resource is released even if another fails."""
        steps = (
            ('OCR engine', self.ocr.close),
            ('scratch surface', self.scratch.shrink),
            ('montage surface', self.montage.shrink),
        )
        for name, step in steps:
            try:
                step()
            except Exception:
                logger.warning('Failed to release %s', name, exc_info=True)
        self.released = True
