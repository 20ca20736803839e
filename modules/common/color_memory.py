"""
Learned-color accumulator carried from one segment's result into the next
segment's request, so character and clothing colors stay consistent down the
strip. The value is immutable: the pipeline threads it through its loop and
receives a new one from each extend().
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np
from PIL import Image

from modules.common.image_utils import rgba_array

QUANT_STEP = 32
COLORS_PER_SEGMENT = 3
MAX_COLORS = 24
# Channel spread below this is grey/black/white, not a learned color.
MIN_SATURATION = 40


def _hex(rgb) -> str:
    return "#{:02x}{:02x}{:02x}".format(*(int(c) for c in rgb))


def dominant_colors(image: Image.Image, exclude: Optional[np.ndarray] = None,
                    count: int = COLORS_PER_SEGMENT, step: int = QUANT_STEP) -> Tuple[str, ...]:
    """Most frequent saturated colors of image, quantized to step-sized bins."""
    pixels = rgba_array(image)[..., :3].astype(np.int32)
    keep = (pixels.max(axis=-1) - pixels.min(axis=-1)) >= MIN_SATURATION
    if exclude is not None and exclude.shape == keep.shape:
        keep &= ~exclude
    chosen = pixels[keep]
    if chosen.size == 0:
        return ()
    binned = (chosen // step) * step + step // 2
    values, counts = np.unique(binned, axis=0, return_counts=True)
    order = np.argsort(-counts, kind="stable")[:count]
    return tuple(_hex(values[i]) for i in order)


@dataclass(frozen=True)
class ColorMemory:
    colors: Tuple[str, ...] = ()

    def extend(self, image: Image.Image, exclude: Optional[np.ndarray] = None) -> "ColorMemory":
        merged = list(self.colors)
        for color in dominant_colors(image, exclude):
            if color not in merged:
                merged.append(color)
        return ColorMemory(colors=tuple(merged[-MAX_COLORS:]))

    def prompt_hint(self) -> str:
        if not self.colors:
            return ""
        return ("Colors already used earlier in this strip (reuse them for the same "
                "characters, clothing and props): " + ", ".join(self.colors))

    def to_dict(self) -> Dict[str, Any]:
        return {"schema_version": "learned_colors_v1", "colors": list(self.colors)}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ColorMemory":
        if not data:
            return cls()
        return cls(colors=tuple(data.get("colors", [])))
