"""Grid geometry: padding, shift and per-cell rectangles on a sprite sheet."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from . import AutoOptimizedFlags, CellRect, Padding, PixelBuffer, SliceSettings

logger = logging.getLogger(__name__)

CONTENT_ALPHA_MIN = 1


def effective_padding(settings: SliceSettings) -> Padding:
    """Per-edge padding wins; missing edges fall back to the symmetric value."""

    return Padding(
        left=settings.padding_left if settings.padding_left is not None else settings.padding_x,
        right=settings.padding_right if settings.padding_right is not None else settings.padding_x,
        top=settings.padding_top if settings.padding_top is not None else settings.padding_y,
        bottom=settings.padding_bottom if settings.padding_bottom is not None else settings.padding_y,
    )


def cell_rect(
    sheet_width: float,
    sheet_height: float,
    cols: int,
    rows: int,
    padding_x: float,
    padding_y: float,
    shift_x: float,
    shift_y: float,
    index: int,
    padding: Optional[Padding] = None,
) -> Optional[CellRect]:
    """Rectangle of cell ``index``, or None when no usable cell exists there."""

    if cols < 1 or rows < 1 or index < 0 or index >= cols * rows:
        return None
    if padding is None:
        padding = Padding(padding_x, padding_x, padding_y, padding_y)

    width = (sheet_width - padding.left - padding.right) / cols
    height = (sheet_height - padding.top - padding.bottom) / rows
    if width <= 0 or height <= 0:
        logger.debug("Degenerate grid for %sx%s sheet (%sx%s cells)", sheet_width, sheet_height, cols, rows)
        return None

    return CellRect(
        x=padding.left + (index % cols) * width + shift_x,
        y=padding.top + (index // cols) * height + shift_y,
        width=width,
        height=height,
    )


def frame_count(settings: SliceSettings) -> int:
    if settings.slice_mode == "inferred" and settings.inferred_cell_rects:
        return len(settings.inferred_cell_rects)
    return max(0, settings.cols) * max(0, settings.rows)


def cell_rects(sheet_width: float, sheet_height: float, settings: SliceSettings) -> list[Optional[CellRect]]:
    """Resolve every cell of the grid, honouring inferred rectangles when present."""

    if settings.slice_mode == "inferred" and settings.inferred_cell_rects:
        return [rect if rect.width > 0 and rect.height > 0 else None for rect in settings.inferred_cell_rects]

    padding = effective_padding(settings)
    return [
        cell_rect(
            sheet_width,
            sheet_height,
            settings.cols,
            settings.rows,
            settings.padding_x,
            settings.padding_y,
            settings.shift_x,
            settings.shift_y,
            index,
            padding,
        )
        for index in range(frame_count(settings))
    ]


def content_bounds(buffer: PixelBuffer) -> Optional[tuple[int, int, int, int]]:
    """(left, top, right, bottom) of non-transparent pixels, right/bottom exclusive."""

    mask = buffer.as_array()[:, :, 3] >= CONTENT_ALPHA_MIN
    if not mask.any():
        return None
    rows = np.any(mask, axis=1)
    cols = np.any(mask, axis=0)
    top = int(np.argmax(rows))
    bottom = len(rows) - int(np.argmax(rows[::-1]))
    left = int(np.argmax(cols))
    right = len(cols) - int(np.argmax(cols[::-1]))
    return left, top, right, bottom


def optimize_slice_settings(buffer: PixelBuffer, cols: int, rows: int) -> SliceSettings:
    """Trim empty sheet margins into per-edge padding for a keyed sheet."""

    bounds = content_bounds(buffer)
    if bounds is None:
        left = top = right = bottom = 0
    else:
        left, top, right, bottom = bounds
        right = buffer.width - right
        bottom = buffer.height - bottom

    settings = SliceSettings(
        cols=cols,
        rows=rows,
        padding_x=round((left + right) / 2),
        padding_y=round((top + bottom) / 2),
        padding_left=left,
        padding_right=right,
        padding_top=top,
        padding_bottom=bottom,
        shift_x=0,
        shift_y=0,
        auto_optimized=AutoOptimizedFlags(padding_x=True, padding_y=True, shift_x=True, shift_y=True),
    )
    logger.info(
        "Optimised slice padding left=%s right=%s top=%s bottom=%s for %sx%s grid",
        left,
        right,
        top,
        bottom,
        cols,
        rows,
    )
    return settings
