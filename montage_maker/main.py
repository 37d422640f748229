import argparse
import dataclasses
import json
import logging
import os
import re
import sys

from .errors import MontageError, ValidationError
from .patterns import PatternSet
from .pipeline import MontagePipeline
from .regions import rect_to_ratio
from .settings import SettingsStore
from .types import MaskMode, OcrConfig, RatioRect, Rect

DEFAULT_SETTINGS_PATH = os.path.join(os.path.expanduser('~'), '.montage_maker', 'settings.json')


def parse_args(argv=None):
    p = argparse.ArgumentParser(description='Combine cropped, masked screenshots into one montage image')
    p.add_argument('--input', '-i', nargs='+', required=True, help='Input image files (PNG/JPEG), in tile order')
    p.add_argument('--output', '-o', required=True, help='Output file, or a directory to write a timestamped file into')
    p.add_argument('--settings', default=DEFAULT_SETTINGS_PATH, help='Settings store (JSON)')
    p.add_argument('--save-settings', action='store_true', help='Write the effective settings back to the store')
    # Layout
    p.add_argument('--cols', type=int, default=None, help='Number of columns')
    p.add_argument('--offset', type=int, default=None, help='Gutter between and around tiles (px)')
    p.add_argument('--bg-color', default=None, help='Background color, e.g. "#000000"')
    p.add_argument('--format', choices=['webp', 'png', 'jpeg'], default=None, help='Output format')
    p.add_argument('--quality', type=int, default=None, help='Output quality 1-100 (ignored for png)')
    # Crop
    p.add_argument('--crop', nargs=4, type=int, metavar=('X', 'Y', 'W', 'H'), default=None, help='Manual crop rectangle')
    p.add_argument('--crop-auto', dest='crop_auto', action='store_true', default=None, help='Detect the crop rectangle from the first image')
    p.add_argument('--no-crop-auto', dest='crop_auto', action='store_false', help='Use the manual crop rectangle')
    # Masks
    for prefix, label in (('mask', 'enemy (right) mask'), ('self-mask', 'self (left) mask')):
        p.add_argument(f'--{prefix}-mode', choices=[m.value for m in MaskMode], default=None, help=f'Mode of the {label}; enables it')
        p.add_argument(f'--{prefix}-rect', nargs=4, type=int, metavar=('X', 'Y', 'W', 'H'), default=None, help=f'Manual {label} rectangle')
        p.add_argument(f'--{prefix}-ratio', nargs=4, type=float, metavar=('X0', 'Y0', 'X1', 'Y1'), default=None,
                       help=f'{label} as fractions of the crop rectangle')
        p.add_argument(f'--{prefix}-color', default=None, help=f'Fill color of the {label}')
        p.add_argument(f'--no-{prefix}', action='store_true', help=f'Disable the {label}')
    # OCR
    p.add_argument('--lang', default='eng', help='Tesseract OCR language')
    p.add_argument('--tesseract-cmd', default=None, help='Path to tesseract.exe if not in PATH')
    p.add_argument('--mask-padding', type=int, default=4, help='Padding around the detected label (px)')
    p.add_argument('--patterns-file', default=None, help='JSON file containing {"patterns": [..]} or [..] label regexes')
    p.add_argument('--dump-json', default=None, help='Optional path to dump run metadata JSON')
    p.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    return p.parse_args(argv)


def _apply_slot(slot, args, attr, crop):
    changes = {}
    mode = getattr(args, f'{attr}_mode')
    if mode is not None:
        changes.update(enabled=True, mode=MaskMode(mode))
    rect = getattr(args, f'{attr}_rect')
    if rect is not None:
        changes['rect'] = Rect(*rect)
        # keep the ratio in step so switching to ratio mode later means the same area
        if crop.width > 0 and crop.height > 0:
            changes['ratio'] = rect_to_ratio(crop, changes['rect'])
    ratio = getattr(args, f'{attr}_ratio')
    if ratio is not None:
        changes['ratio'] = RatioRect(*ratio)
    color = getattr(args, f'{attr}_color')
    if color is not None:
        changes['color'] = color
    if getattr(args, f'no_{attr}'):
        changes['enabled'] = False
    return dataclasses.replace(slot, **changes)


def apply_overrides(settings, args):
    changes = {}
    for attr, field in (('cols', 'col_count'), ('offset', 'offset'), ('bg_color', 'bg_color'),
                        ('format', 'output_format'), ('quality', 'quality'), ('crop_auto', 'crop_auto')):
        value = getattr(args, attr)
        if value is not None:
            changes[field] = value
    if args.crop is not None:
        changes['crop'] = Rect(*args.crop)
    settings = dataclasses.replace(settings, **changes)
    return dataclasses.replace(
        settings,
        mask=_apply_slot(settings.mask, args, 'mask', settings.crop),
        self_mask=_apply_slot(settings.self_mask, args, 'self_mask', settings.crop),
    )


def _print_progress(event):
    print(f'[{event.phase}] {event.percent:.0f}%')


def main(argv=None):
    args = parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format='%(levelname)s %(name)s: %(message)s')

    store = SettingsStore(args.settings)
    try:
        settings = apply_overrides(store.load(), args)
        patterns = PatternSet.from_file(args.patterns_file) if args.patterns_file else PatternSet.default()
    except (OSError, ValueError, re.error) as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1

    cfg = OcrConfig(lang=args.lang, mask_padding=args.mask_padding, tesseract_cmd=args.tesseract_cmd)
    pipeline = MontagePipeline(ocr_config=cfg, patterns=patterns, on_progress=_print_progress)

    print(f'Processing {len(args.input)} images...')
    try:
        result = pipeline.run_sync(args.input, settings)
    except ValidationError as e:
        for problem in e.problems:
            print(f'Error: {problem}', file=sys.stderr)
        return 2
    except MontageError as e:
        print(f'Error: {e}', file=sys.stderr)
        return 1

    for fb in result.fallbacks:
        print(f'Notice: automatic detection failed ({fb}); manual values were used')

    out_path = args.output
    if os.path.isdir(out_path):
        out_path = os.path.join(out_path, result.filename)
    parent = os.path.dirname(out_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(out_path, 'wb') as f:
        f.write(result.data)
    print(f'Wrote {result.width}x{result.height} montage to {out_path}')

    if args.save_settings:
        store.save(result.settings)
        print(f'Settings saved to {args.settings}')

    if args.dump_json:
        report = {
            'output': out_path,
            'width': result.width,
            'height': result.height,
            'tiles': result.tiles,
            'fallbacks': list(result.fallbacks),
            'crop': dataclasses.asdict(result.settings.crop),
            'mask': dataclasses.asdict(result.settings.mask.rect) if result.settings.mask.enabled else None,
            'self_mask': dataclasses.asdict(result.settings.self_mask.rect) if result.settings.self_mask.enabled else None,
        }
        with open(args.dump_json, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2)
        print(f'Metadata written to {args.dump_json}')
    return 0


if __name__ == '__main__':
    sys.exit(main())
