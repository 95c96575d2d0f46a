"""Fixed-point height sample codec.

Heights are stored as ``elements_per_height`` digits in base
``element_multiplier`` starting at ``index * stride``. Both functions work on
raw integer heights; callers apply ``height_scale``/``height_offset`` because
the raster and mesh paths apply them at different stages.

No bounds checking is done here: indices are validated by the caller.
"""

from __future__ import annotations

from typing import Any

from .structure import HeightmapStructure


def decode_height(buffer: Any, structure: HeightmapStructure, index: int) -> float:
    index *= structure.stride
    multiplier = structure.element_multiplier
    elements = structure.elements_per_height

    height = 0.0
    if structure.is_big_endian:
        for i in range(elements):
            height = height * multiplier + float(buffer[index + i])
    else:
        for i in range(elements - 1, -1, -1):
            height = height * multiplier + float(buffer[index + i])
    return height


def encode_height(
    buffer: Any, structure: HeightmapStructure, index: int, value: float
) -> None:
    index *= structure.stride
    multiplier = structure.element_multiplier
    elements = structure.elements_per_height
    divisor = multiplier ** (elements - 1)

    if structure.is_big_endian:
        positions = range(elements - 1)
        last = index + elements - 1
    else:
        positions = range(elements - 1, 0, -1)
        last = index

    for i in positions:
        digit = int(value / divisor)
        buffer[index + i] = digit
        value -= digit * divisor
        divisor /= multiplier

    # The least significant digit takes whatever is left.
    buffer[last] = value
