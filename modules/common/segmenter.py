from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from PIL import Image

from modules.common.split_points import SplitCandidate

MIN_SEGMENT_HEIGHT = 100


@dataclass
class Segment:
    index: int
    start_row: int
    height: int
    width: int
    image: Image.Image

    @property
    def end_row(self) -> int:
        return self.start_row + self.height


def plan_segments(cuts: Iterable[int], total_height: int,
                  min_segment_height: int = MIN_SEGMENT_HEIGHT) -> List[Tuple[int, int]]:
    """
    Turn cut rows into (start, end) spans covering [0, total_height).

    Spans shorter than min_segment_height are folded into the following span;
    a short last span is folded into the one before it. A single span is kept
    whatever its height.
    """
    inner = sorted({int(c) for c in cuts if 0 < int(c) < total_height})
    bounds = [0] + inner + [total_height]
    spans = [(a, b) for a, b in zip(bounds, bounds[1:]) if b > a]

    merged: List[List[int]] = []
    carry = None
    for i, (start, end) in enumerate(spans):
        if carry is not None:
            start, carry = carry, None
        if end - start >= min_segment_height:
            merged.append([start, end])
        elif i + 1 < len(spans):
            carry = start
        elif merged:
            merged[-1][1] = end
        else:
            merged.append([start, end])
    return [(s, e) for s, e in merged]


def split_strip(strip_image: Image.Image, split_points: Sequence[SplitCandidate],
                min_segment_height: int = MIN_SEGMENT_HEIGHT) -> List[Segment]:
    width, total = strip_image.size
    spans = plan_segments([sp.midpoint for sp in split_points], total, min_segment_height)
    segments = []
    for idx, (start, end) in enumerate(spans):
        segments.append(Segment(
            index=idx,
            start_row=start,
            height=end - start,
            width=width,
            image=strip_image.crop((0, start, width, end)),
        ))
    return segments
