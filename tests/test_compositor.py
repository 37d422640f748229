import asyncio
import io

import cv2
import numpy as np
import pytest
from PIL import Image

from montage_maker.compositor import assemble_montage, iter_composite, montage_size, tile_origin
from montage_maker.errors import DecodeError, SurfaceError
from montage_maker.surface import Bitmap, Surface, decode_image, parse_color
from montage_maker.types import Rect, ResolvedGeometry, Settings

CROP = Rect(10, 5, 20, 10)


def solid(value, w=40, h=30):
    return Bitmap(np.full((h, w, 3), value, dtype=np.uint8), f'solid{value}')


class RecordingDecoder:
    def __init__(self):
        self.opened = []

    def __call__(self, source):
        bmp = solid(source)
        self.opened.append(bmp)
        return bmp


@pytest.mark.parametrize('count,cols', [(1, 1), (5, 2), (4, 4), (7, 3), (3, 5)])
def test_montage_size(count, cols):
    w, h, rows = montage_size(20, 10, count, cols, 4)
    assert rows == -(-count // cols)
    assert w == 20 * cols + 4 * (cols + 1)
    assert h == 10 * rows + 4 * (rows + 1)


def test_fifth_tile_lands_in_row_two_col_zero():
    assert montage_size(20, 10, 5, 2, 4)[2] == 3
    assert tile_origin(4, 20, 10, 2, 4) == (4, 4 + 2 * (10 + 4))


def test_parse_color():
    assert parse_color('#FF8000') == (0, 128, 255)
    assert parse_color('#fff') == (255, 255, 255)
    with pytest.raises(ValueError):
        parse_color('#12')


def test_grid_layout_and_background():
    settings = Settings(col_count=2, offset=4, bg_color='#0000FF', crop=CROP)
    geometry = ResolvedGeometry(crop=CROP)
    decoder = RecordingDecoder()
    sources = [10, 20, 30, 40, 50]
    scratch, montage = Surface(), Surface()

    asyncio.run(assemble_montage(sources, geometry, settings, scratch, montage, decoder))

    px = montage.context()
    assert (montage.width, montage.height) == (2 * 20 + 3 * 4, 3 * 10 + 4 * 4)
    for i, value in enumerate(sources):
        x, y = tile_origin(i, 20, 10, 2, 4)
        assert (px[y:y + 10, x:x + 20] == value).all()
    # gutter and the empty sixth cell keep the background
    assert tuple(px[0, 0]) == (255, 0, 0)
    x, y = tile_origin(5, 20, 10, 2, 4)
    assert (px[y:y + 10, x:x + 20] == (255, 0, 0)).all()
    assert all(b.closed for b in decoder.opened)


def test_masks_painted_in_tile_coordinates():
    settings = Settings(col_count=1, offset=0, crop=CROP)
    geometry = ResolvedGeometry(crop=CROP, masks=((Rect(12, 6, 3, 2), '#FFFFFF'),))
    scratch, montage = Surface(), Surface()
    asyncio.run(assemble_montage([7], geometry, settings, scratch, montage, RecordingDecoder()))

    px = montage.context()
    assert (px[1:3, 2:5] == 255).all()
    assert px[0, 0, 0] == 7 and px[3, 5, 0] == 7


def test_no_masks_no_fill():
    settings = Settings(col_count=2, offset=2, bg_color='#000000', crop=CROP)
    geometry = ResolvedGeometry(crop=CROP, masks=())
    scratch, montage = Surface(), Surface()
    asyncio.run(assemble_montage([7, 7], geometry, settings, scratch, montage, RecordingDecoder()))
    assert set(np.unique(montage.context())) == {0, 7}


def test_crop_outside_bitmap_leaves_background():
    crop = Rect(30, 20, 20, 20)  # source is 40x30
    settings = Settings(col_count=1, offset=0, bg_color='#000000', crop=crop)
    scratch, montage = Surface(), Surface()
    asyncio.run(assemble_montage([9], ResolvedGeometry(crop=crop), settings, scratch, montage, RecordingDecoder()))
    px = montage.context()
    assert (px[:10, :10] == 9).all()
    assert (px[10:, :] == 0).all() and (px[:, 10:] == 0).all()


def test_iter_composite_yields_each_tile():
    settings = Settings(col_count=3, offset=0, crop=CROP)
    montage = Surface(60, 20)
    steps = list(iter_composite([1, 2, 3, 4], ResolvedGeometry(crop=CROP), settings, Surface(), montage,
                                RecordingDecoder()))
    assert steps == [0, 1, 2, 3]


def test_decode_failure_propagates():
    def bad(source):
        raise DecodeError(str(source))

    settings = Settings(col_count=1, offset=0, crop=CROP)
    with pytest.raises(DecodeError):
        asyncio.run(assemble_montage([1], ResolvedGeometry(crop=CROP), settings, Surface(), Surface(), bad))


def test_surface_shrink_and_context():
    s = Surface(100, 50)
    assert s.nbytes == 100 * 50 * 3
    s.shrink()
    assert (s.width, s.height) == (1, 1)
    with pytest.raises(SurfaceError):
        s.resize(0, 10)
    assert s.context().shape == (1, 1, 3)
    with pytest.raises(SurfaceError):
        s.resize(10 ** 8, 10 ** 8)
    with pytest.raises(SurfaceError):
        s.context()


def test_bitmap_closed():
    b = solid(1)
    b.close()
    with pytest.raises(SurfaceError):
        _ = b.pixels


def test_decode_png_bytes_and_path(tmp_path):
    img = np.zeros((6, 8, 3), dtype=np.uint8)
    img[:, :, 2] = 200
    ok, buf = cv2.imencode('.png', img)
    assert ok
    bmp = decode_image(buf.tobytes())
    assert (bmp.width, bmp.height) == (8, 6)
    path = tmp_path / 'x.png'
    path.write_bytes(buf.tobytes())
    assert decode_image(str(path)).pixels[0, 0, 2] == 200


def test_decode_falls_back_to_pillow(tmp_path):
    # OpenCV has no TGA decoder; Pillow does
    buf = io.BytesIO()
    Image.new('RGB', (5, 4), color=(0, 0, 255)).save(buf, format='TGA')
    bmp = decode_image(buf.getvalue())
    assert (bmp.width, bmp.height) == (5, 4)
    assert tuple(bmp.pixels[0, 0]) == (255, 0, 0)


def test_decode_garbage_raises(tmp_path):
    with pytest.raises(DecodeError):
        decode_image(b'not an image')
    with pytest.raises(DecodeError):
        decode_image(str(tmp_path / 'missing.png'))
