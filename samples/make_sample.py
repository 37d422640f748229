import os
from PIL import Image, ImageDraw

# Game area inside the black border of every generated screenshot
FRAME = (40, 30, 760, 400)
SIZE = (800, 450)


def make_screenshot(out_path: str, index: int = 0, label: str = 'Lv.80'):
    img = Image.new('RGB', SIZE, color=(0, 0, 0))
    d = ImageDraw.Draw(img)
    d.rectangle([FRAME[0], FRAME[1], FRAME[2] - 1, FRAME[3] - 1], fill=(90, 110, 130))

    # Player name tags near the top of each half
    d.rectangle([70, 45, 200, 75], fill=(255, 255, 255))
    d.text((80, 52), f'{label}  Alice', fill=(0, 0, 0))
    d.rectangle([480, 45, 610, 75], fill=(255, 255, 255))
    d.text((490, 52), f'{label}  Bob', fill=(0, 0, 0))

    d.text((100, 300), f'Screen #{index + 1}', fill=(240, 240, 240))
    img.save(out_path)
    return out_path


def main(out_dir: str, count: int = 5):
    os.makedirs(out_dir, exist_ok=True)
    paths = [make_screenshot(os.path.join(out_dir, f'screen_{i + 1}.png'), i) for i in range(count)]
    print(f"{len(paths)} sample screenshots written to {out_dir}")


if __name__ == '__main__':
    main(os.path.join(os.path.dirname(__file__), 'screens'))
