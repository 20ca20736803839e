"""
Fitting segments onto the colorization service's fixed canvas sizes.

Outbound: resize the segment (aspect preserved) into the chosen canvas and pad
the right/bottom margin with opaque black. Inbound: crop the padding away and
resize back to the segment's own size. The inverse step also absorbs services
that return a canvas of the wrong size.
"""
from dataclasses import dataclass
from typing import Sequence, Tuple

from PIL import Image

from modules.common.image_utils import resize_exact, solid_canvas

SQUARE = (1024, 1024)
PORTRAIT = (1024, 1536)
LANDSCAPE = (1536, 1024)
CANVAS_SIZES: Tuple[Tuple[int, int], ...] = (SQUARE, PORTRAIT, LANDSCAPE)

MAX_UPSCALE = 2.0
UPSCALE_PENALTY = 0.25


@dataclass(frozen=True)
class CanvasFit:
    width: int
    height: int
    target_width: int
    target_height: int
    scaled_width: int
    scaled_height: int

    @property
    def size_label(self) -> str:
        return f"{self.target_width}x{self.target_height}"

    @property
    def scale(self) -> float:
        return min(self.target_width / self.width, self.target_height / self.height)


def canvas_score(width: int, height: int, target: Tuple[int, int],
                 max_upscale: float = MAX_UPSCALE,
                 upscale_penalty: float = UPSCALE_PENALTY) -> float:
    """
    Aspect-ratio distance plus a flat penalty when the canvas needs more than
    max_upscale. Canvases that all exceed the limit are ranked by aspect alone.
    """
    aw, ah = target
    score = abs(aw / ah - width / height)
    if min(aw / width, ah / height) > max_upscale:
        score += upscale_penalty
    return score


def choose_canvas(width: int, height: int, sizes: Sequence[Tuple[int, int]] = CANVAS_SIZES,
                  max_upscale: float = MAX_UPSCALE,
                  upscale_penalty: float = UPSCALE_PENALTY) -> Tuple[int, int]:
    """Lowest-scoring canvas; ties go to the earlier entry in sizes."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Cannot fit a {width}x{height} segment")
    if not sizes:
        raise ValueError("No canvas sizes configured")
    return min(sizes, key=lambda s: canvas_score(width, height, s, max_upscale, upscale_penalty))


def fit_canvas(width: int, height: int, sizes: Sequence[Tuple[int, int]] = CANVAS_SIZES,
               max_upscale: float = MAX_UPSCALE,
               upscale_penalty: float = UPSCALE_PENALTY) -> CanvasFit:
    aw, ah = choose_canvas(width, height, sizes, max_upscale, upscale_penalty)
    scale = min(aw / width, ah / height)
    fit_w = min(aw, max(1, round(width * scale)))
    fit_h = min(ah, max(1, round(height * scale)))
    return CanvasFit(
        width=width,
        height=height,
        target_width=aw,
        target_height=ah,
        scaled_width=fit_w,
        scaled_height=fit_h,
    )


def to_canvas(image: Image.Image, fit: CanvasFit) -> Image.Image:
    canvas = solid_canvas(fit.target_width, fit.target_height)
    scaled = resize_exact(image.convert("RGBA"), fit.scaled_width, fit.scaled_height)
    canvas.paste(scaled, (0, 0))
    return canvas


def from_canvas(image: Image.Image, fit: CanvasFit) -> Image.Image:
    image = resize_exact(image.convert("RGBA"), fit.target_width, fit.target_height)
    cropped = image.crop((0, 0, fit.scaled_width, fit.scaled_height))
    return resize_exact(cropped, fit.width, fit.height)
