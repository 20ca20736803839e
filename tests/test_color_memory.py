import numpy as np
from PIL import Image

from modules.common.color_memory import MAX_COLORS, ColorMemory, dominant_colors


def _image(rows):
    """rows: list of (height, rgb) bands, 10px wide."""
    parts = []
    for h, rgb in rows:
        band = np.zeros((h, 10, 4), dtype=np.uint8)
        band[..., :3] = rgb
        band[..., 3] = 255
        parts.append(band)
    return Image.fromarray(np.concatenate(parts, axis=0))


def test_dominant_colors_ignore_greys_and_order_by_frequency():
    img = _image([(5, (200, 10, 10)), (10, (10, 10, 200)), (20, (128, 128, 128)), (20, (0, 0, 0))])
    assert dominant_colors(img) == ("#1010d0", "#d01010")


def test_dominant_colors_respect_exclusion_mask():
    img = _image([(5, (200, 10, 10)), (5, (10, 200, 10))])
    exclude = np.zeros((10, 10), dtype=bool)
    exclude[:5] = True
    assert dominant_colors(img, exclude=exclude) == ("#10d010",)


def test_extend_returns_new_memory_without_duplicates():
    empty = ColorMemory()
    img = _image([(5, (200, 10, 10))])

    first = empty.extend(img)
    second = first.extend(img)

    assert empty.colors == ()
    assert first.colors == ("#d01010",)
    assert second.colors == first.colors


def test_memory_is_capped_to_most_recent():
    memory = ColorMemory(colors=tuple(f"#0000{i:02x}" for i in range(MAX_COLORS)))
    grown = memory.extend(_image([(5, (200, 10, 10))]))
    assert len(grown.colors) == MAX_COLORS
    assert grown.colors[-1] == "#d01010"
    assert "#000000" not in grown.colors


def test_prompt_hint_and_serialization():
    assert ColorMemory().prompt_hint() == ""
    memory = ColorMemory(colors=("#d01010", "#1010d0"))
    assert "#d01010, #1010d0" in memory.prompt_hint()

    data = memory.to_dict()
    assert data["schema_version"] == "learned_colors_v1"
    assert ColorMemory.from_dict(data) == memory
    assert ColorMemory.from_dict(None) == ColorMemory()
