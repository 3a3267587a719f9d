"""Three-point temporal smoothing of per-frame offsets."""

from __future__ import annotations

from typing import Sequence

from . import Offset
from ..utils import validators


def smooth(offsets: Sequence[Offset], weight: float) -> list[Offset]:
    """Blend each interior offset toward the midpoint of its neighbours.

    Neighbour values are read from the unsmoothed input, so the result does
    not depend on iteration order. The first and last offsets are returned
    unchanged.
    """

    validators.validate_smoothing(weight)
    original = list(offsets)
    result = list(original)
    if weight == 0 or len(original) < 3:
        return result

    keep = 1.0 - weight
    for i in range(1, len(original) - 1):
        before, current, after = original[i - 1], original[i], original[i + 1]
        result[i] = Offset(
            offset_x=current.offset_x * keep + (before.offset_x + after.offset_x) / 2 * weight,
            offset_y=current.offset_y * keep + (before.offset_y + after.offset_y) / 2 * weight,
        )
    return result
