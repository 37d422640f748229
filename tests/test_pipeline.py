import asyncio
import dataclasses
import time
from datetime import datetime

import cv2
import numpy as np
import pytest

from conftest import FakeEngine, word
from montage_maker import encoder
from montage_maker.errors import DecodeError, EncodeError, PipelineFatalError, SurfaceError, ValidationError
from montage_maker.pipeline import MontagePipeline
from montage_maker.resources import RunResources
from montage_maker.surface import Bitmap, Surface
from montage_maker.types import MaskMode, MaskSlot, OcrConfig, Rect, Settings

FRAME = Rect(40, 30, 720, 370)


def screenshot(value):
    px = np.zeros((450, 800, 3), dtype=np.uint8)
    px[FRAME.y:FRAME.bottom, FRAME.x:FRAME.right] = value
    return Bitmap(px, f'shot{value}')


def base_settings(**kw):
    return dataclasses.replace(Settings(col_count=2, offset=4, output_format='png', crop=FRAME), **kw)


def ocr_slot():
    return MaskSlot(enabled=True, mode=MaskMode.OCR, rect=Rect(50, 40, 10, 10), color='#FF0000')


def test_run_produces_encoded_montage():
    events = []
    pipeline = MontagePipeline(decoder=screenshot, on_progress=events.append)
    result = pipeline.run_sync([100, 110, 120, 130, 140], base_settings())

    img = cv2.imdecode(np.frombuffer(result.data, np.uint8), cv2.IMREAD_COLOR)
    assert img.shape[:2] == (result.height, result.width) == (370 * 3 + 16, 720 * 2 + 12)
    assert img[4 + 2 * (370 + 4), 4, 0] == 140
    assert result.filename.endswith('.png')
    assert result.tiles == 5
    assert events[-1].phase == 'done'
    assert [e.percent for e in events if e.phase == 'composite'] == [20.0, 40.0, 60.0, 80.0, 100.0]
    assert pipeline.processing is False


def test_resources_released_after_success(fake_engine_factory):
    settings = base_settings(mask=ocr_slot(), self_mask=ocr_slot())
    pipeline = MontagePipeline(decoder=screenshot,
                               engine_factory=fake_engine_factory([word('Lv.9', 500, 50, 530, 60)]))
    result = pipeline.run_sync([100, 100], settings)

    res = pipeline.last_resources
    assert res.released
    assert (res.scratch.width, res.scratch.height) == (1, 1)
    assert (res.montage.width, res.montage.height) == (1, 1)
    assert len(FakeEngine.instances) == 1
    assert FakeEngine.instances[0].terminated == 1
    assert result.fallbacks == ('self_mask_ocr',)
    assert result.settings.self_mask.mode is MaskMode.MANUAL


def test_resources_released_after_failure(fake_engine_factory):
    def decoder(source):
        if source == 'bad':
            raise DecodeError(source)
        return screenshot(source)

    pipeline = MontagePipeline(decoder=decoder, engine_factory=fake_engine_factory())
    with pytest.raises(DecodeError):
        pipeline.run_sync([100, 'bad'], base_settings(mask=ocr_slot()))

    res = pipeline.last_resources
    assert res.released and res.ocr.closed
    assert (res.scratch.width, res.scratch.height) == (1, 1)
    assert (res.montage.width, res.montage.height) == (1, 1)
    assert FakeEngine.instances[0].terminated == 1
    assert pipeline.processing is False


def test_no_engine_started_without_ocr(fake_engine_factory):
    pipeline = MontagePipeline(decoder=screenshot, engine_factory=fake_engine_factory())
    pipeline.run_sync([100], base_settings())
    assert FakeEngine.instances == []


def test_unexpected_error_resets_pipeline():
    def decoder(source):
        raise KeyError('boom')

    pipeline = MontagePipeline(decoder=decoder)
    with pytest.raises(PipelineFatalError) as exc:
        pipeline.run_sync([1], base_settings())
    assert isinstance(exc.value.__cause__, KeyError)
    assert pipeline.processing is False
    assert pipeline.resources is None
    assert pipeline.last_resources.released
    # the pipeline is usable again
    pipeline.decoder = screenshot
    assert pipeline.run_sync([100], base_settings()).tiles == 1


def test_validation_happens_before_any_work():
    calls = []

    def decoder(source):
        calls.append(source)
        return screenshot(100)

    pipeline = MontagePipeline(decoder=decoder)
    with pytest.raises(ValidationError):
        pipeline.run_sync([1], base_settings(col_count=0))
    with pytest.raises(ValidationError):
        pipeline.run_sync([], base_settings())
    assert calls == []
    assert pipeline.processing is False


def test_second_run_while_busy_is_ignored():
    pipeline = MontagePipeline(decoder=screenshot)

    async def both():
        return await asyncio.gather(
            pipeline.run([100, 100], base_settings()),
            pipeline.run([100], base_settings()),
        )

    first, second = asyncio.run(both())
    assert first is not None and first.tiles == 2
    assert second is None


def test_auto_crop_fallback_reported():
    def blank(source):
        return Bitmap(np.full((450, 800, 3), 60, dtype=np.uint8))

    pipeline = MontagePipeline(decoder=blank)
    result = pipeline.run_sync([1], base_settings(crop_auto=True, crop=Rect(0, 0, 50, 40)))
    assert result.fallbacks == ('crop_auto',)
    assert result.settings.crop_auto is False
    assert (result.width, result.height) == (50 * 2 + 4 * 3, 40 + 4 * 2)


def test_auto_crop_detects_frame():
    pipeline = MontagePipeline(decoder=screenshot)
    result = pipeline.run_sync([100], base_settings(crop_auto=True, crop=Rect(0, 0, 50, 40)))
    assert result.fallbacks == ()
    assert result.settings.crop == FRAME


@pytest.mark.parametrize('fmt,magic', [('png', b'\x89PNG'), ('jpeg', b'\xff\xd8'), ('webp', b'RIFF')])
def test_encode_formats(fmt, magic):
    s = Surface(8, 8)
    s.fill('#336699')
    data = asyncio.run(encoder.encode_surface(s, fmt, 50))
    assert data.startswith(magic)


def test_encode_timeout(monkeypatch):
    def slow(surface, fmt, quality):
        time.sleep(0.5)
        return b''

    monkeypatch.setattr(encoder, 'encode_pixels', slow)
    with pytest.raises(EncodeError):
        asyncio.run(encoder.encode_surface(Surface(2, 2), 'png', 80, timeout=0.05))


def test_encode_unknown_format():
    with pytest.raises(EncodeError):
        encoder.encode_pixels(Surface(2, 2), 'gif', 80)


def test_suggested_filename():
    when = datetime(2024, 3, 5, 7, 8, 9)
    assert encoder.suggested_filename('jpeg', when) == 'montage_20240305_070809.jpg'
    assert encoder.suggested_filename('webp', when) == 'montage_20240305_070809.webp'


def test_release_continues_after_failure(fake_engine_factory):
    res = RunResources(OcrConfig(), fake_engine_factory())

    def broken():
        raise RuntimeError('no')

    res.scratch.resize(50, 50)
    res.montage.resize(50, 50)
    res.ocr.close = broken
    res.release()
    assert res.released
    assert (res.scratch.width, res.montage.width) == (1, 1)


def test_montage_surface_failure_releases_resources(monkeypatch, fake_engine_factory):
    real_resize = Surface.resize

    def resize(self, width, height):
        if self.name == 'montage surface' and width * height > 1:
            self._buf = None
            raise SurfaceError(f'{self.name}: cannot allocate {width}x{height}')
        real_resize(self, width, height)

    monkeypatch.setattr(Surface, 'resize', resize)
    pipeline = MontagePipeline(decoder=screenshot, engine_factory=fake_engine_factory())
    with pytest.raises(SurfaceError):
        pipeline.run_sync([100, 110], base_settings(mask=ocr_slot()))

    res = pipeline.last_resources
    assert res.released and res.ocr.closed
    assert (res.scratch.width, res.montage.width) == (1, 1)
    assert FakeEngine.instances[0].terminated == 1
    assert pipeline.processing is False
    assert pipeline.resources is None
