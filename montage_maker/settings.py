"""Settings record: flat camelCase JSON, versioned, merged over defaults on load."""
from __future__ import annotations
import json
import logging
import os
from typing import Any, Callable, Dict, List

from .encoder import FORMATS
from .errors import ValidationError
from .surface import parse_color
from .types import MaskMode, MaskSlot, RatioRect, Rect, Settings

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
SETTINGS_KEY = 'imageProcessorSettings'

_SLOT_PREFIXES = {'mask': 'mask', 'self_mask': 'selfMask'}


def _slot_to_dict(prefix: str, slot: MaskSlot) -> Dict[str, Any]:
    return {
        f'{prefix}Enabled': slot.enabled,
        f'{prefix}Mode': slot.mode.value,
        f'{prefix}X': slot.rect.x,
        f'{prefix}Y': slot.rect.y,
        f'{prefix}Width': slot.rect.width,
        f'{prefix}Height': slot.rect.height,
        f'{prefix}RatioX0': slot.ratio.rx0,
        f'{prefix}RatioY0': slot.ratio.ry0,
        f'{prefix}RatioX1': slot.ratio.rx1,
        f'{prefix}RatioY1': slot.ratio.ry1,
        f'{prefix}Color': slot.color,
    }


def settings_to_dict(s: Settings) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        'version': SCHEMA_VERSION,
        'colCount': s.col_count,
        'offset': s.offset,
        'bgColor': s.bg_color,
        'format': s.output_format,
        'quality': s.quality,
        'cropX': s.crop.x,
        'cropY': s.crop.y,
        'cropWidth': s.crop.width,
        'cropHeight': s.crop.height,
        'cropAuto': s.crop_auto,
    }
    d.update(_slot_to_dict(_SLOT_PREFIXES['mask'], s.mask))
    d.update(_slot_to_dict(_SLOT_PREFIXES['self_mask'], s.self_mask))
    return d


DEFAULT_SETTINGS: Dict[str, Any] = settings_to_dict(Settings())


def _migrate_v1(data: Dict[str, Any]) -> Dict[str, Any]:
    """v1 used boolean auto flags per mask and separate X/Y offsets."""
    out = dict(data)
    for prefix in _SLOT_PREFIXES.values():
        auto = out.pop(f'{prefix}Auto', None)
        if isinstance(auto, bool) and f'{prefix}Mode' not in out:
            out[f'{prefix}Mode'] = MaskMode.OCR.value if auto else MaskMode.MANUAL.value
    if 'offset' not in out and 'offsetX' in out:
        out['offset'] = out['offsetX']
    for legacy in ('offsetX', 'offsetY', 'webpMethod'):
        out.pop(legacy, None)
    out['version'] = 2
    return out


MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: _migrate_v1,
}


def migrate(data: Dict[str, Any]) -> Dict[str, Any]:
    version = data.get('version', 1)
    if not isinstance(version, int) or isinstance(version, bool) or version < 1 or version > SCHEMA_VERSION:
        logger.warning('Unknown settings version %r, using defaults', version)
        return {}
    while version < SCHEMA_VERSION:
        data = MIGRATIONS[version](data)
        version = data['version']
    return data


def _same_kind(value: Any, default: Any) -> bool:
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, float):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, type(default))


def merge_with_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(DEFAULT_SETTINGS)
    for key, default in DEFAULT_SETTINGS.items():
        if key in data and _same_kind(data[key], default):
            merged[key] = data[key]
    for prefix in _SLOT_PREFIXES.values():
        if merged[f'{prefix}Mode'] not in {m.value for m in MaskMode}:
            merged[f'{prefix}Mode'] = DEFAULT_SETTINGS[f'{prefix}Mode']
    merged['version'] = SCHEMA_VERSION
    return merged


def _slot_from_dict(prefix: str, d: Dict[str, Any]) -> MaskSlot:
    return MaskSlot(
        enabled=d[f'{prefix}Enabled'],
        mode=MaskMode(d[f'{prefix}Mode']),
        rect=Rect(d[f'{prefix}X'], d[f'{prefix}Y'], d[f'{prefix}Width'], d[f'{prefix}Height']),
        ratio=RatioRect(float(d[f'{prefix}RatioX0']), float(d[f'{prefix}RatioY0']),
                        float(d[f'{prefix}RatioX1']), float(d[f'{prefix}RatioY1'])),
        color=d[f'{prefix}Color'],
    )


def settings_from_dict(data: Dict[str, Any]) -> Settings:
    d = merge_with_defaults(migrate(dict(data)))
    return Settings(
        col_count=d['colCount'],
        offset=d['offset'],
        bg_color=d['bgColor'],
        output_format=d['format'],
        quality=d['quality'],
        crop=Rect(d['cropX'], d['cropY'], d['cropWidth'], d['cropHeight']),
        crop_auto=d['cropAuto'],
        mask=_slot_from_dict(_SLOT_PREFIXES['mask'], d),
        self_mask=_slot_from_dict(_SLOT_PREFIXES['self_mask'], d),
    )


class SettingsStore:
    """JSON key-value file holding the settings record under a fixed key."""

    def __init__(self, path: str, key: str = SETTINGS_KEY):
        self.path = path
        self.key = key

    def _read_all(self) -> Dict[str, Any]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning('Settings store %s is not valid JSON, ignoring it', self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> Settings:
        record = self._read_all().get(self.key)
        if not isinstance(record, dict):
            return Settings()
        return settings_from_dict(record)

    def save(self, settings: Settings):
        data = self._read_all()
        data[self.key] = settings_to_dict(settings)
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)


def _check_color(problems: List[str], label: str, color: str):
    try:
        parse_color(color)
    except ValueError:
        problems.append(f'{label} is not a valid color: {color!r}')


def _check_slot(problems: List[str], label: str, slot: MaskSlot):
    if not slot.enabled:
        return
    _check_color(problems, f'{label} color', slot.color)
    if slot.mode is MaskMode.MANUAL:
        if slot.rect.width <= 0 or slot.rect.height <= 0:
            problems.append(f'{label} width and height must be positive values when enabled.')
        if slot.rect.x < 0 or slot.rect.y < 0:
            problems.append(f'{label} X and Y coordinates cannot be negative when enabled.')
    elif slot.mode is MaskMode.RATIO:
        r = slot.ratio
        values = (r.rx0, r.ry0, r.rx1, r.ry1)
        if any(v < 0 or v > 1 for v in values) or r.rx0 > r.rx1 or r.ry0 > r.ry1:
            problems.append(f'{label} ratios must satisfy 0 <= x0 <= x1 <= 1 and 0 <= y0 <= y1 <= 1.')


def validate_settings(s: Settings):
    problems: List[str] = []
    if s.col_count <= 0:
        problems.append('Columns must be a positive number.')
    if s.offset < 0:
        problems.append('Offset (px) cannot be negative.')
    if not 1 <= s.quality <= 100:
        problems.append('Quality must be between 1 and 100.')
    if s.output_format not in FORMATS:
        problems.append(f"Output format must be one of {', '.join(FORMATS)}.")
    if s.crop.width <= 0 or s.crop.height <= 0:
        problems.append('Cropping Width and Height must be positive values.')
    if s.crop.x < 0 or s.crop.y < 0:
        problems.append('Cropping X and Y coordinates cannot be negative.')
    _check_color(problems, 'Background', s.bg_color)
    _check_slot(problems, 'Mask', s.mask)
    _check_slot(problems, 'Self mask', s.self_mask)
    if problems:
        raise ValidationError(problems)
