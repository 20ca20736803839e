"""
Safe split-point detection for assembled strips.

A row is "safe" when nearly all of its pixels are dark: panel dividers and
solid black gutters. Consecutive safe rows form a band; a band tall enough is a
place where the strip can be cut without slicing through artwork. The cut is
made at the band's midpoint so anti-aliased rows at either edge stay attached
to the artwork they belong to.

White-on-black narration text breaks the band on its own: bright glyph pixels
fail the darkness test, so text rows never reach the required dark fraction.
"""
from dataclasses import dataclass
from typing import List

import numpy as np
from PIL import Image

from modules.common.image_utils import rgba_array

DARK_THRESHOLD = 20
MIN_GAP_HEIGHT = 30
EDGE_TOLERANCE = 0.02


@dataclass(frozen=True)
class SplitCandidate:
    start_row: int
    end_row: int
    midpoint: int
    band_height: int


def dark_pixel_mask(pixels: np.ndarray, threshold: int = DARK_THRESHOLD) -> np.ndarray:
    """True where R, G and B are all below threshold."""
    return np.all(pixels[..., :3] < threshold, axis=-1)


def find_safe_rows(image: Image.Image, dark_threshold: int = DARK_THRESHOLD,
                   edge_tolerance: float = EDGE_TOLERANCE) -> np.ndarray:
    dark = dark_pixel_mask(rgba_array(image), dark_threshold)
    return dark.mean(axis=1) >= (1.0 - edge_tolerance)


def _runs(flags: np.ndarray):
    """Yield (start, end) inclusive index pairs of consecutive True values."""
    padded = np.concatenate(([False], flags.astype(bool), [False]))
    edges = np.flatnonzero(np.diff(padded.astype(np.int8)))
    for start, stop in zip(edges[::2], edges[1::2]):
        yield int(start), int(stop) - 1


def detect_split_points(image: Image.Image, dark_threshold: int = DARK_THRESHOLD,
                        min_gap_height: int = MIN_GAP_HEIGHT,
                        edge_tolerance: float = EDGE_TOLERANCE) -> List[SplitCandidate]:
    safe = find_safe_rows(image, dark_threshold, edge_tolerance)
    candidates = []
    for start, end in _runs(safe):
        band = end - start + 1
        if band < min_gap_height:
            continue
        candidates.append(SplitCandidate(
            start_row=start,
            end_row=end,
            midpoint=(start + end) // 2,
            band_height=band,
        ))
    return candidates
