from typing import List

import numpy as np
import pytest

from montage_maker.types import DetectedWord, OcrConfig, Rect


class FakeEngine:
    """Stands in for Tesseract: returns canned words that fall inside the region."""

    instances: List['FakeEngine'] = []

    def __init__(self, cfg: OcrConfig, words=()):
        self.cfg = cfg
        self.words = list(words)
        self.calls = []
        self.terminated = 0
        FakeEngine.instances.append(self)

    def recognize(self, image_bgr: np.ndarray, region: Rect):
        self.calls.append(region)
        return [w for w in self.words
                if region.x <= w.x0 and w.x1 <= region.right and region.y <= w.y0 and w.y1 <= region.bottom]

    def terminate(self):
        self.terminated += 1


@pytest.fixture
def fake_engine_factory():
    FakeEngine.instances = []

    def make(words=()):
        return lambda cfg: FakeEngine(cfg, words)

    return make


def word(text, x0, y0, x1, y1):
    return DetectedWord(text=text, x0=x0, y0=y0, x1=x1, y1=y1, conf=90.0)
