from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class MaskMode(str, Enum):
    MANUAL = "manual"
    RATIO = "ratio"
    OCR = "ocr"


class MaskSide(str, Enum):
    ENEMY = "enemy"  # right half of the crop
    SELF = "self"    # left half of the crop


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def translated(self, dx: int, dy: int) -> "Rect":
        return Rect(self.x + dx, self.y + dy, self.width, self.height)

    def clamped_to(self, bounds: "Rect") -> "Rect":
        """Intersect with bounds; an empty intersection keeps its origin inside bounds."""
        x0 = min(max(self.x, bounds.x), bounds.right)
        y0 = min(max(self.y, bounds.y), bounds.bottom)
        x1 = min(max(self.right, x0), bounds.right)
        y1 = min(max(self.bottom, y0), bounds.bottom)
        return Rect(x0, y0, x1 - x0, y1 - y0)


@dataclass(frozen=True)
class RatioRect:
    rx0: float
    ry0: float
    rx1: float
    ry1: float


@dataclass(frozen=True)
class MaskSlot:
    enabled: bool = False
    mode: MaskMode = MaskMode.MANUAL
    rect: Rect = Rect(0, 0, 100, 100)
    ratio: RatioRect = RatioRect(0.0, 0.0, 0.1, 0.1)
    color: str = "#FFFFFF"


@dataclass(frozen=True)
class Settings:
    col_count: int = 4
    offset: int = 8
    bg_color: str = "#000000"
    output_format: str = "webp"
    quality: int = 80
    crop: Rect = Rect(31, 117, 1538, 665)
    crop_auto: bool = False
    mask: MaskSlot = MaskSlot()       # enemy / right side
    self_mask: MaskSlot = MaskSlot()  # self / left side

    def slot(self, side: MaskSide) -> MaskSlot:
        return self.mask if side is MaskSide.ENEMY else self.self_mask


@dataclass(frozen=True)
class DetectedWord:
    text: str
    x0: int
    y0: int
    x1: int
    y1: int
    conf: float = -1.0


@dataclass(frozen=True)
class ResolvedGeometry:
    crop: Rect
    masks: Tuple[Tuple[Rect, str], ...] = ()


@dataclass(frozen=True)
class ProgressEvent:
    phase: str
    percent: float


@dataclass
class OcrConfig:
    lang: str = "eng"
    mask_padding: int = 4
    tesseract_cmd: Optional[str] = None


@dataclass
class RunResult:
    data: bytes
    filename: str
    width: int
    height: int
    tiles: int
    settings: Settings  # snapshot after fallbacks were applied
    fallbacks: Tuple[str, ...] = field(default_factory=tuple)
