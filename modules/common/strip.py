"""
Strip assembly and re-slicing.

The assembled strip is the single tall bitmap formed from all input slices.
Its height is the sum of the slice heights; those heights are recorded so the
colorized strip can be cut back at exactly the same boundaries.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from PIL import Image

from modules.common.image_utils import resize_exact, solid_canvas


@dataclass
class Strip:
    image: Image.Image
    width: int
    heights: List[int] = field(default_factory=list)

    @property
    def height(self) -> int:
        return sum(self.heights)


def assemble_strip(images: Sequence[Image.Image]) -> Strip:
    """
    Join slices top to bottom into one RGBA bitmap.

    Every slice is stretched (not cropped) to the first slice's width. The
    canvas starts opaque black so compositing gaps never show through.
    """
    if not images:
        raise ValueError("assemble_strip needs at least one slice")
    width = images[0].size[0]
    heights = [img.size[1] for img in images]

    canvas = solid_canvas(width, sum(heights))
    y = 0
    for img, h in zip(images, heights):
        tile = img.convert("RGBA")
        if tile.size[0] != width:
            tile = tile.resize((width, h), Image.LANCZOS)
        canvas.paste(tile, (0, y))
        y += h
    return Strip(image=canvas, width=width, heights=heights)


def reassemble_segments(images: Sequence[Image.Image], heights: Sequence[int], width: int) -> Image.Image:
    """Stack segments back at their recorded heights, in order."""
    if len(images) != len(heights):
        raise ValueError(f"Got {len(images)} segment images for {len(heights)} heights")
    canvas = solid_canvas(width, sum(heights))
    y = 0
    for img, h in zip(images, heights):
        canvas.paste(resize_exact(img.convert("RGBA"), width, h), (0, y))
        y += h
    return canvas


def reslice_strip(image: Image.Image, heights: Sequence[int],
                  output_width: Optional[int] = None,
                  output_height: Optional[int] = None) -> List[Image.Image]:
    """
    Cut the strip at the original slice heights.

    A slice that runs past the end of the strip is padded with opaque black to
    its expected height (a slice entirely past the end is all black), so the
    output always has one slice per input slice. When an output size is given,
    each slice is stretched to it afterwards.
    """
    width, total = image.size
    slices = []
    top = 0
    for h in heights:
        remaining = max(0, total - top)
        extract_h = min(h, remaining)
        if extract_h == h:
            piece = image.crop((0, top, width, top + h))
        else:
            piece = solid_canvas(width, h)
            if extract_h > 0:
                piece.paste(image.crop((0, top, width, top + extract_h)), (0, 0))
        target_w = output_width or width
        target_h = output_height or h
        slices.append(resize_exact(piece, target_w, target_h))
        top += h
    return slices
