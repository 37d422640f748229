from __future__ import annotations
import asyncio
import logging
from typing import Callable, Optional, Sequence

from .compositor import Decoder, assemble_montage
from .encoder import DEFAULT_TIMEOUT, encode_surface, suggested_filename
from .errors import MontageError, PipelineFatalError, ValidationError
from .ocr import EngineFactory, TesseractEngine
from .patterns import PatternSet
from .regions import needs_reference, resolve_geometry
from .resources import RunResources
from .settings import validate_settings
from .surface import ImageSource, decode_image
from .types import OcrConfig, ProgressEvent, RunResult, Settings

logger = logging.getLogger(__name__)


class MontagePipeline:
    """Single-flight montage run: resolve geometry, composite, encode.

    A run started while another is in flight returns None without doing
    anything. Every run releases its surfaces and OCR engine on exit.
    """

    def __init__(self, ocr_config: Optional[OcrConfig] = None, patterns: Optional[PatternSet] = None,
                 engine_factory: EngineFactory = TesseractEngine, decoder: Decoder = decode_image,
                 encode_timeout: float = DEFAULT_TIMEOUT,
                 on_progress: Optional[Callable[[ProgressEvent], None]] = None):
        self.ocr_config = ocr_config or OcrConfig()
        self.patterns = patterns or PatternSet.default()
        self.engine_factory = engine_factory
        self.decoder = decoder
        self.encode_timeout = encode_timeout
        self.on_progress = on_progress
        self.processing = False
        self.resources: Optional[RunResources] = None
        self.last_resources: Optional[RunResources] = None

    def _emit(self, phase: str, percent: float):
        if self.on_progress is not None:
            self.on_progress(ProgressEvent(phase, percent))

    def reset(self):
        """Release everything the current run owns and return to idle."""
        if self.resources is not None and not self.resources.released:
            self.resources.release()
        if self.resources is not None:
            self.last_resources = self.resources
        self.resources = None
        self.processing = False

    async def run(self, sources: Sequence[ImageSource], settings: Settings) -> Optional[RunResult]:
        if self.processing:
            logger.info('Run requested while processing; ignored')
            return None
        if not sources:
            raise ValidationError(['Please select images first.'])
        validate_settings(settings)

        self.processing = True
        self.resources = RunResources(self.ocr_config, self.engine_factory)
        try:
            return await self._run(list(sources), settings, self.resources)
        except MontageError as e:
            logger.error('Montage run failed: %s', e)
            raise
        except Exception as e:
            logger.exception('Unexpected failure, resetting pipeline')
            self.reset()
            raise PipelineFatalError(f'Unexpected error: {e}') from e
        finally:
            self.reset()

    async def _run(self, sources: Sequence[ImageSource], settings: Settings, res: RunResources) -> RunResult:
        reference = self.decoder(sources[0]) if needs_reference(settings) else None
        try:
            resolution = await resolve_geometry(settings, reference, res.ocr, self.patterns,
                                                self.ocr_config.mask_padding, self.on_progress)
        finally:
            if reference is not None:
                reference.close()
        # the OCR engine is not needed past this point
        res.ocr.close()
        settings = resolution.settings
        for fb in resolution.fallbacks:
            logger.warning('Automatic detection fell back to manual values: %s', fb)

        montage = await assemble_montage(sources, resolution.geometry, settings, res.scratch, res.montage,
                                         self.decoder, self.on_progress)
        res.scratch.shrink()
        width, height = montage.width, montage.height

        self._emit('encode', 0.0)
        data = await encode_surface(montage, settings.output_format, settings.quality, self.encode_timeout)
        montage.shrink()
        self._emit('encode', 100.0)
        self._emit('done', 100.0)

        return RunResult(
            data=data,
            filename=suggested_filename(settings.output_format),
            width=width,
            height=height,
            tiles=len(sources),
            settings=settings,
            fallbacks=resolution.fallbacks,
        )

    def run_sync(self, sources: Sequence[ImageSource], settings: Settings) -> Optional[RunResult]:
        return asyncio.run(self.run(sources, settings))
