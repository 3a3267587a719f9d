"""Bounded template matching used to refine alignment offsets frame by frame."""

from __future__ import annotations

import logging
import math
from typing import Collection, Optional, Sequence

import numpy as np

from . import CellRect, Offset, PixelBuffer
from .cropper import crop_pixels, crop_region
from .errors import InvalidBufferError

logger = logging.getLogger(__name__)

DEFAULT_MAX_DELTA = 10
# Largest possible squared RGBA difference for one pixel.
OUT_OF_SHEET_PENALTY = 4 * 255 * 255


def _sheet_array(sheet: PixelBuffer | np.ndarray) -> np.ndarray:
    return sheet.as_array() if isinstance(sheet, PixelBuffer) else sheet


def match_score(candidate: np.ndarray, inside: np.ndarray, reference: np.ndarray) -> float:
    """Mean squared RGBA difference over the whole crop area.

    Candidate pixels outside the sheet, and any area where the candidate and
    reference sizes disagree, cost ``OUT_OF_SHEET_PENALTY`` each.
    """

    height = min(candidate.shape[0], reference.shape[0])
    width = min(candidate.shape[1], reference.shape[1])
    area = max(candidate.shape[0], reference.shape[0]) * max(candidate.shape[1], reference.shape[1])
    if area == 0:
        return math.inf

    in_sheet = inside[:height, :width]
    diff = candidate[:height, :width].astype(np.int64) - reference[:height, :width].astype(np.int64)
    ssd = int((diff * diff).sum(axis=2)[in_sheet].sum())
    penalised = area - int(np.count_nonzero(in_sheet))
    return (ssd + OUT_OF_SHEET_PENALTY * penalised) / area


def best_offset(
    sheet: PixelBuffer | np.ndarray,
    cell: CellRect,
    reference_crop: np.ndarray,
    scale: float,
    sheet_width: int,
    sheet_height: int,
    prev_offset_x: float,
    prev_offset_y: float,
    max_delta: int = DEFAULT_MAX_DELTA,
) -> Offset:
    """Exhaustive integer search within ``max_delta`` of the previous offset.

    Lowest score wins; ties go to the candidate closest to the previous
    offset, then to scan order (row-major from the top-left).
    """

    array = _sheet_array(sheet)
    if array.shape[:2] != (sheet_height, sheet_width):
        raise InvalidBufferError(
            f"Sheet array {array.shape[1]}x{array.shape[0]} does not match {sheet_width}x{sheet_height}"
        )

    best_key: Optional[tuple[float, int, int, int]] = None
    best = Offset(prev_offset_x, prev_offset_y)
    for dy in range(-max_delta, max_delta + 1):
        for dx in range(-max_delta, max_delta + 1):
            offset_x = prev_offset_x + dx
            offset_y = prev_offset_y + dy
            pixels, inside = crop_pixels(array, crop_region(cell, offset_x, offset_y, scale))
            key = (match_score(pixels, inside, reference_crop), dx * dx + dy * dy, dy, dx)
            if best_key is None or key < best_key:
                best_key = key
                best = Offset(offset_x, offset_y)
    return best


def refine_offsets(
    sheet: PixelBuffer | np.ndarray,
    cells: Sequence[Optional[CellRect]],
    offsets: Sequence[Offset],
    scale: float,
    max_delta: int = DEFAULT_MAX_DELTA,
    fixed: Collection[int] = (),
) -> list[Offset]:
    """Left-to-right fold: each frame is matched against the previous frame's refined crop.

    The first usable frame and any index in ``fixed`` are never moved; their
    crops still serve as the reference for the next frame. Missing cells and
    frames with no visible pixels keep their offset and pass the previous
    reference through.
    """

    array = _sheet_array(sheet)
    sheet_height, sheet_width = array.shape[:2]
    refined = list(offsets)
    reference: Optional[np.ndarray] = None

    for index, cell in enumerate(cells):
        if cell is None:
            continue
        current = refined[index]
        crop, _ = crop_pixels(array, crop_region(cell, current.offset_x, current.offset_y, scale))
        if not crop[..., 3].any():
            logger.debug("Frame %s has no visible pixels; keeping offset", index)
            continue
        if reference is None or index in fixed:
            reference = crop
            continue

        result = best_offset(
            array,
            cell,
            reference,
            scale,
            sheet_width,
            sheet_height,
            current.offset_x,
            current.offset_y,
            max_delta,
        )
        logger.debug(
            "Frame %s refined (%.1f, %.1f) -> (%.1f, %.1f)",
            index,
            current.offset_x,
            current.offset_y,
            result.offset_x,
            result.offset_y,
        )
        refined[index] = result
        reference, _ = crop_pixels(array, crop_region(cell, result.offset_x, result.offset_y, scale))
    return refined
