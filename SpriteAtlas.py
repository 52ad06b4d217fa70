import os
import re
import sys
import json
import math
import argparse
from concurrent.futures import ThreadPoolExecutor
from PIL import Image, UnidentifiedImageError
from typing import List, Dict, Optional, Tuple

from ShelfPacker import Layout, PackingError, PlacedBox, pack


SPRITE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.bmp', '.gif')

# Device pixels per unit at a pixel ratio of 1 (96 dpi)
_UNIT_PIXELS = {
    '': 1.0,
    'px': 1.0,
    'in': 96.0,
    'cm': 96.0 / 2.54,
    'mm': 96.0 / 25.4,
    'pt': 96.0 / 72.0,
    'pc': 96.0 / 6.0,
}

_LENGTH_RE = re.compile(r'^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)\s*([a-zA-Z%]*)\s*$')


class AtlasError(Exception):
    """Raised when an atlas cannot be built from the given inputs."""


class Sprite:
    """A loaded sprite image and the identifier it is published under."""
    def __init__(self, name: str, image: Image.Image):
        self.name = name
        self.image = image

    def __repr__(self):
        return f"Sprite({self.name} {self.image.width}×{self.image.height})"


def resolve_length(text: str, pixel_ratio: float = 1.0) -> float:
    """
    Convert a CSS-like length such as "2", "2px", "1mm" or "0.5in" to device pixels.
    Font-relative and percentage lengths cannot be resolved for a sprite and are rejected.
    """
    match = _LENGTH_RE.match(text)
    if match is None:
        raise AtlasError(f"Invalid length: {text!r}")
    number, unit = float(match.group(1)), match.group(2).lower()
    if unit in ('em', 'ex'):
        raise AtlasError("Font-dependent sizes are not supported")
    if unit == '%':
        raise AtlasError("Relative sizes are not supported")
    if unit not in _UNIT_PIXELS:
        raise AtlasError(f"Unknown length unit: {unit!r}")
    return number * _UNIT_PIXELS[unit] * pixel_ratio


class AtlasOptions:
    """Per-resolution settings: the pixel ratio and the buffer around each sprite, in device pixels."""
    def __init__(self, pixel_ratio: float = 1.0, buffer_px: int = 0):
        if buffer_px < 0:
            raise AtlasError(f"Buffer must not be negative, got {buffer_px}")
        self.pixel_ratio = pixel_ratio
        self.buffer_px = buffer_px

    def __repr__(self):
        return f"AtlasOptions(pixel_ratio={self.pixel_ratio}, buffer_px={self.buffer_px})"

    @classmethod
    def from_args(cls, args: argparse.Namespace, pixel_ratio: float) -> 'AtlasOptions':
        buffer_size = resolve_length(args.buffer, pixel_ratio) if args.buffer else 0.0
        return cls(pixel_ratio, int(math.ceil(buffer_size)))


def find_sprite_files(paths: List[str]) -> List[str]:
    """Collect sprite files; directories are scanned one level deep."""
    sprite_files = []
    for path in paths:
        if os.path.isfile(path):
            sprite_files.append(path)
            continue
        if not os.path.exists(path):
            raise AtlasError(f"Input path does not exist: {path}")

        for file in sorted(os.listdir(path)):
            full_path = os.path.join(path, file)
            if os.path.isfile(full_path) and file.lower().endswith(SPRITE_EXTENSIONS):
                sprite_files.append(full_path)
    return sprite_files


def load_sprites(sprite_paths: List[str], verbose: bool = False) -> List[Sprite]:
    """Open every sprite as RGBA. The file name without its extension becomes the sprite id."""
    sprites = []
    seen = set()
    for path in sprite_paths:
        name = os.path.splitext(os.path.basename(path))[0]
        if not name:
            raise AtlasError(f"Missing file name: {path}")
        if name in seen:
            print(f"{os.path.basename(path)}: duplicate sprite id '{name}', skipping")
            continue
        try:
            with Image.open(path) as img:
                image = img.convert('RGBA')
        except (UnidentifiedImageError, OSError) as e:
            raise AtlasError(f"Error loading {path}: {e}")
        if verbose:
            print(f"{os.path.basename(path)}: {image.width}×{image.height}")
        seen.add(name)
        sprites.append(Sprite(name, image))
    return sprites


def create_canvas(width: float, height: float) -> Image.Image:
    return Image.new('RGBA', (int(math.ceil(width)), int(math.ceil(height))), (0, 0, 0, 0))


class PreparedAtlas:
    """Sprites scaled for one pixel ratio, together with their packed layout."""

    def __init__(self, options: AtlasOptions, sprites: List[Sprite]):
        self.options = options
        self.sprites = sprites
        self.images = [self._scaled_image(sprite.image) for sprite in sprites]
        self.layout = self._layout()
        if len(self.layout) != len(self.images):
            raise AtlasError(
                f"Layout error: count of input images ({len(self.images)}) "
                f"does not match layout items count ({len(self.layout)})")

    def _scaled_image(self, image: Image.Image) -> Image.Image:
        if self.options.pixel_ratio == 1:
            return image
        size = (max(1, round(image.width * self.options.pixel_ratio)),
                max(1, round(image.height * self.options.pixel_ratio)))
        return image.resize(size, Image.Resampling.LANCZOS)

    def _layout(self) -> Layout:
        # Leave a buffer on every side of every sprite
        buffer_px = self.options.buffer_px
        return pack(
            (img.width + 2 * buffer_px, img.height + 2 * buffer_px)
            for img in self.images
        )

    def _render_single(self, item: Tuple[Image.Image, PlacedBox]) -> Tuple[int, int, Image.Image]:
        image, layout_box = item
        buffer_px = self.options.buffer_px
        sub_image = create_canvas(layout_box.w, layout_box.h)
        sub_image.paste(image, (buffer_px, buffer_px))
        return int(layout_box.x), int(layout_box.y), sub_image

    def render(self, threads: int = 1) -> Image.Image:
        """Composite all sprites into one transparent RGBA image of the layout's size."""
        sheet_img = create_canvas(self.layout.width, self.layout.height)
        work = list(zip(self.images, self.layout.boxes_by_id()))

        if threads > 1:
            with ThreadPoolExecutor(max_workers=threads) as executor:
                results = list(executor.map(self._render_single, work))
        else:
            results = [self._render_single(item) for item in work]

        for x, y, sub_image in results:
            sheet_img.paste(sub_image, (x, y))
        return sheet_img

    def metadata(self) -> Dict[str, Dict]:
        """Sprite lookup table: id -> frame position, size and pixel ratio."""
        result = {}
        for b in self.layout:
            result[self.sprites[b.id].name] = {
                "width": _json_number(b.w),
                "height": _json_number(b.h),
                "x": _json_number(b.x),
                "y": _json_number(b.y),
                "pixelRatio": _json_number(self.options.pixel_ratio),
            }
        return result


def _json_number(value: float):
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def hires_output_base(output_base: str, pixel_ratio: int = 2) -> str:
    """sprites.png -> sprites@2x"""
    root, _ = os.path.splitext(output_base)
    return f"{root}@{pixel_ratio}x"


def process(sprites: List[Sprite], options: AtlasOptions, output_base: str,
            verbose: bool = False, threads: int = 1) -> PreparedAtlas:
    """Lay out, render and save one atlas as <output_base>.json and <output_base>.png."""
    atlas = PreparedAtlas(options, sprites)
    if verbose:
        print(f"Atlas layout: {atlas.layout!r}")
    else:
        print(f"Atlas dimensions: {math.ceil(atlas.layout.width)}×{math.ceil(atlas.layout.height)}")
    print(f"Packing efficiency: {atlas.layout.fill_ratio * 100:.2f}%")

    root, _ = os.path.splitext(output_base)
    if os.path.dirname(root):
        os.makedirs(os.path.dirname(root), exist_ok=True)
    metadata_path = root + ".json"
    with open(metadata_path, 'w') as f:
        json.dump(atlas.metadata(), f)

    sheet_img = atlas.render(threads)
    png_path = root + ".png"
    print(f"Saving {png_path}")
    sheet_img.save(png_path)
    return atlas


def resolve_threads(threads: int) -> int:
    """0 means one thread per CPU."""
    if threads < 0:
        raise AtlasError(f"Thread count must not be negative, got {threads}")
    return threads or os.cpu_count() or 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='sprite-atlas',
        description='Build a Mapbox sprite atlas from sprite images. '
                    'Writes <output>.png and <output>.json, plus <output>@2x.png and '
                    '<output>@2x.json with --with-hires. '
                    'Image file names are used as icon identifiers.')
    parser.add_argument('inputs', nargs='+', metavar='INPUT',
                        help='Sprite image or directory of sprite images, can be repeated')
    parser.add_argument('-o', '--output', required=True, metavar='PATH',
                        help='Base output file path (with or without an extension)')
    parser.add_argument('--with-hires', action='store_true',
                        help='Also build a @2x high-resolution atlas')
    parser.add_argument('--buffer', metavar='LENGTH',
                        help='Additional buffer (padding) around each sprite, e.g. 2 or 1mm')
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose console output')
    parser.add_argument('-j', '--threads', type=int, default=0, metavar='N',
                        help='Number of parallel threads to use for rendering (0: one per CPU)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        if not os.path.basename(args.output) or args.output.endswith(os.sep):
            raise AtlasError(f"Invalid output file name: {args.output}")

        sprite_files = find_sprite_files(args.inputs)
        if not sprite_files:
            raise AtlasError(f"No sprite files found in {', '.join(args.inputs)}")
        print(f"Processing {len(sprite_files)} input sprite files")
        threads = resolve_threads(args.threads)
        print(f"Using {threads} parallel threads")

        sprites = load_sprites(sprite_files, args.verbose)
        process(sprites, AtlasOptions.from_args(args, 1.0),
                args.output, args.verbose, threads)

        if args.with_hires:
            process(sprites, AtlasOptions.from_args(args, 2.0),
                    hires_output_base(args.output), args.verbose, threads)
    except (AtlasError, PackingError, OSError) as e:
        print(f"Error: {e}")
        return 1

    print("Done!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
