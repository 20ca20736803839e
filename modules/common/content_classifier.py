"""
Short-circuit checks for segments that have nothing to colorize.

- blank: almost entirely dark (divider bars, solid backgrounds)
- text: mostly dark with near-white glyphs (narration cards)

The near-white share is measured among non-dark pixels only; 0.60 rather than
something stricter because anti-aliased glyph edges are grey, not white.
"""
from typing import Optional, Tuple

import numpy as np
from PIL import Image

from modules.common.image_utils import rgba_array
from modules.common.split_points import DARK_THRESHOLD, dark_pixel_mask

BLANK_DARK_RATIO = 0.98
TEXT_DARK_RATIO = 0.85
TEXT_WHITE_RATIO = 0.60
TEXT_WHITE_LEVEL = 200

BLANK = "blank"
TEXT = "text"
def dark_fraction(image: Image.Image, dark_threshold: int = DARK_THRESHOLD) -> float:
    dark = dark_pixel_mask(rgba_array(image), dark_threshold)
    return float(dark.mean()) if dark.size else 1.0


def analyze_segment(image: Image.Image, dark_threshold: int = DARK_THRESHOLD,
                    blank_ratio: float = BLANK_DARK_RATIO,
                    text_dark_ratio: float = TEXT_DARK_RATIO,
                    text_white_ratio: float = TEXT_WHITE_RATIO,
                    white_level: int = TEXT_WHITE_LEVEL) -> Tuple[Optional[str], float]:
    """(BLANK | TEXT | None, dark fraction) from a single pass over the pixels."""
    pixels = rgba_array(image)
    dark = dark_pixel_mask(pixels, dark_threshold)
    if dark.size == 0:
        return BLANK, 1.0

    ratio = float(dark.mean())
    if ratio >= blank_ratio:
        return BLANK, ratio
    if ratio < text_dark_ratio:
        return None, ratio

    rest = pixels[~dark][:, :3]
    white = np.all(rest >= white_level, axis=-1)
    if float(white.mean()) >= text_white_ratio:
        return TEXT, ratio
    return None, ratio


def classify_segment(image: Image.Image, dark_threshold: int = DARK_THRESHOLD,
                     blank_ratio: float = BLANK_DARK_RATIO,
                     text_dark_ratio: float = TEXT_DARK_RATIO,
                     text_white_ratio: float = TEXT_WHITE_RATIO,
                     white_level: int = TEXT_WHITE_LEVEL) -> Optional[str]:
    """Return BLANK, TEXT, or None when the segment should be colorized."""
    kind, _ = analyze_segment(image, dark_threshold, blank_ratio, text_dark_ratio,
                              text_white_ratio, white_level)
    return kind
