"""
Image utilities for slice discovery, naming, loading and saving.

Slice naming convention (shared by input and output):
- `prefix + digits + extension`, e.g. `ep12_007.png`
- Ordering is by the parsed numeric index, never by directory order
- Output names keep the prefix/extension of the first input and pad the index
  to at least 3 digits (or to the width of the largest input index)
"""
import os
import re
from dataclasses import dataclass
from typing import List, Tuple

import numpy as np
from PIL import Image

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp"}
MIN_INDEX_DIGITS = 3
OPAQUE_BLACK = (0, 0, 0, 255)

_SLICE_NAME_RE = re.compile(r"^(.*?)(\d+)(\.[^.]+)$")


@dataclass
class SliceFile:
    path: str
    prefix: str
    index: int
    ext: str


def parse_slice_name(filename: str) -> Tuple[str, int, str]:
    """
    Split a slice filename into (prefix, index, extension).

    Names without a trailing number keep the whole basename as prefix and get
    index 0 with a `.png` extension.
    """
    base = os.path.basename(filename)
    m = _SLICE_NAME_RE.match(base)
    if not m:
        return base, 0, ".png"
    return m.group(1), int(m.group(2)), m.group(3)


def list_slices(input_dir: str) -> List[SliceFile]:
    """Return the image slices in input_dir sorted by their numeric index."""
    if not os.path.isdir(input_dir):
        raise FileNotFoundError(f"Input directory not found: {input_dir}")
    slices = []
    for name in os.listdir(input_dir):
        if os.path.splitext(name)[1].lower() not in IMAGE_EXTENSIONS:
            continue
        prefix, idx, ext = parse_slice_name(name)
        slices.append(SliceFile(path=os.path.join(input_dir, name), prefix=prefix, index=idx, ext=ext))
    if not slices:
        raise FileNotFoundError(f"No image slices found in {input_dir}")
    return sorted(slices, key=lambda s: (s.index, s.path))


def output_slice_name(prefix: str, start_index: int, offset: int, last_index: int, ext: str) -> str:
    digits = max(MIN_INDEX_DIGITS, len(str(last_index)))
    return f"{prefix}{str(start_index + offset).zfill(digits)}{ext}"


def load_rgba(path: str) -> Image.Image:
    with Image.open(path) as img:
        return img.convert("RGBA")


def save_image(image: Image.Image, path: str) -> None:
    """Save image, dropping alpha for formats that cannot carry it."""
    ext = os.path.splitext(path)[1].lower()
    if ext in (".jpg", ".jpeg"):
        image = image.convert("RGB")
    image.save(path)


def solid_canvas(width: int, height: int, color=OPAQUE_BLACK) -> Image.Image:
    return Image.new("RGBA", (width, height), color)


def rgba_array(image: Image.Image) -> np.ndarray:
    """(H, W, 4) uint8 view of an image, converting to RGBA when needed."""
    if image.mode != "RGBA":
        image = image.convert("RGBA")
    return np.asarray(image, dtype=np.uint8)


def resize_exact(image: Image.Image, width: int, height: int) -> Image.Image:
    """Stretch to exactly (width, height); returns the input when already sized."""
    if image.size == (width, height):
        return image
    return image.resize((width, height), Image.LANCZOS)
