"""
Restoring structural blacks after colorization.

The colorizer sometimes tints divider bars and solid black backgrounds. Those
pixels are forced back to pure black, but only when the *original* segment says
they are structural. A pixel is restored iff, in the original:

1. it is true black (every channel below a strict threshold),
2. the square neighbourhood around it is at least 70% true black (local
   density; isolated dark pixels inside artwork fail this), and
3. it is either connected to the image border through other true-black pixels
   (4-connectivity; full-bleed dividers and backgrounds) or sits within a few
   pixels of near-white (black surrounding a speech bubble whose white fill cut
   the connected path).

Everything else keeps exactly the colorizer's output. The mask is computed from
the original only, so running the restoration twice changes nothing.
"""
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from modules.common.image_utils import resize_exact, rgba_array

TRUE_BLACK_THRESHOLD = 10
DENSITY_WINDOW = 33
MIN_DENSITY = 0.70
BUBBLE_WHITE_LEVEL = 250
BUBBLE_RADIUS = 3

RESTORED_PIXEL = (0, 0, 0, 255)


def true_black_mask(pixels: np.ndarray, threshold: int = TRUE_BLACK_THRESHOLD) -> np.ndarray:
    return np.all(pixels[..., :3] < threshold, axis=-1)


def local_density(mask: np.ndarray, window: int = DENSITY_WINDOW) -> np.ndarray:
    """
    Fraction of True pixels in the window x window square centred on each pixel.

    Windows are clipped at the image border and the fraction is taken over the
    clipped area. Uses a 2D prefix-sum table, so cost does not depend on window.
    """
    h, w = mask.shape
    table = np.zeros((h + 1, w + 1), dtype=np.int64)
    table[1:, 1:] = mask.astype(np.int64).cumsum(axis=0).cumsum(axis=1)

    r = window // 2
    ys = np.arange(h)
    xs = np.arange(w)
    y0 = np.clip(ys - r, 0, h)
    y1 = np.clip(ys + r + 1, 0, h)
    x0 = np.clip(xs - r, 0, w)
    x1 = np.clip(xs + r + 1, 0, w)

    sums = (table[y1][:, x1] - table[y0][:, x1]
            - table[y1][:, x0] + table[y0][:, x0])
    area = (y1 - y0)[:, None] * (x1 - x0)[None, :]
    return sums / area


def edge_connected(mask: np.ndarray) -> np.ndarray:
    """True pixels reachable from the image border through True pixels (4-connected)."""
    if mask.size == 0:
        return mask.copy()
    _, labels = cv2.connectedComponents(mask.astype(np.uint8), connectivity=4)
    border = np.concatenate((labels[0, :], labels[-1, :], labels[:, 0], labels[:, -1]))
    border_labels = np.unique(border[border > 0])
    if border_labels.size == 0:
        return np.zeros_like(mask, dtype=bool)
    return np.isin(labels, border_labels)


def bubble_adjacent(pixels: np.ndarray, mask: np.ndarray,
                    white_level: int = BUBBLE_WHITE_LEVEL,
                    radius: int = BUBBLE_RADIUS) -> np.ndarray:
    """True pixels of mask with a near-white pixel within radius (square neighbourhood)."""
    white = np.all(pixels[..., :3] >= white_level, axis=-1)
    if not white.any():
        return np.zeros_like(mask, dtype=bool)
    kernel = np.ones((2 * radius + 1, 2 * radius + 1), dtype=np.uint8)
    near_white = cv2.dilate(white.astype(np.uint8), kernel) > 0
    return mask & near_white


def restoration_mask(original: Image.Image,
                     threshold: int = TRUE_BLACK_THRESHOLD,
                     window: int = DENSITY_WINDOW,
                     min_density: float = MIN_DENSITY,
                     white_level: int = BUBBLE_WHITE_LEVEL,
                     radius: int = BUBBLE_RADIUS) -> np.ndarray:
    pixels = rgba_array(original)
    dark = true_black_mask(pixels, threshold)
    if not dark.any():
        return dark
    dense = local_density(dark, window) >= min_density
    candidates = dark & dense
    reachable = edge_connected(dark) | bubble_adjacent(pixels, dark, white_level, radius)
    return candidates & reachable


def apply_restoration(pixels: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Set masked pixels to opaque black. Mutates pixels in place and returns it."""
    pixels[mask] = RESTORED_PIXEL
    return pixels


def restore_blacks(original: Image.Image, colorized: Image.Image,
                   mask: Optional[np.ndarray] = None, **params) -> Image.Image:
    """
    Return a copy of colorized with the original's structural blacks restored.

    A colorized image of a different size is resized to the original first.
    A precomputed mask can be passed to skip the analysis.
    """
    if mask is None:
        mask = restoration_mask(original, **params)
    w, h = original.size
    colorized = resize_exact(colorized.convert("RGBA"), w, h)
    pixels = np.array(rgba_array(colorized), copy=True)
    apply_restoration(pixels, mask)
    return Image.fromarray(pixels)
