"""Crop geometry and frame extraction from a sheet."""

from __future__ import annotations

import logging
import math
from typing import Mapping, Optional

import numpy as np
from PIL import Image

from . import OFFSET_LIMIT, CellRect, CropRegion, FrameOverride, PixelBuffer, SliceSettings, override_for
from .grid import cell_rects

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def crop_region(cell: CellRect, offset_x: float, offset_y: float, scale: float) -> CropRegion:
    """Scaled crop box centred on the cell and moved by the offset; not clipped."""

    width = cell.width * scale
    height = cell.height * scale
    return CropRegion(
        sx=cell.x + (cell.width - width) / 2 + offset_x,
        sy=cell.y + (cell.height - height) / 2 + offset_y,
        width=width,
        height=height,
    )


def clip_region(region: CropRegion, sheet_width: float, sheet_height: float) -> CropRegion:
    """Intersect with the sheet; a crop fully outside yields a zero-area region."""

    left = max(0.0, region.sx)
    top = max(0.0, region.sy)
    right = min(float(sheet_width), region.sx + region.width)
    bottom = min(float(sheet_height), region.sy + region.height)
    return CropRegion(sx=left, sy=top, width=max(0.0, right - left), height=max(0.0, bottom - top))


def crop_pixels(sheet: np.ndarray, region: CropRegion) -> tuple[np.ndarray, np.ndarray]:
    """Integer-grid crop of an HxWx4 array.

    Returns the pixels (transparent where the crop leaves the sheet) and a
    boolean mask of which crop pixels came from inside the sheet.
    """

    sheet_height, sheet_width = sheet.shape[:2]
    x0 = round_half_up(region.sx)
    y0 = round_half_up(region.sy)
    width = max(0, round_half_up(region.width))
    height = max(0, round_half_up(region.height))

    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    inside = np.zeros((height, width), dtype=bool)
    left, right = max(0, x0), min(sheet_width, x0 + width)
    top, bottom = max(0, y0), min(sheet_height, y0 + height)
    if right > left and bottom > top:
        pixels[top - y0 : bottom - y0, left - x0 : right - x0] = sheet[top:bottom, left:right]
        inside[top - y0 : bottom - y0, left - x0 : right - x0] = True
    return pixels, inside


def offset_bounds(
    cell: CellRect, scale: float, sheet_width: float, sheet_height: float
) -> tuple[float, float, float, float]:
    """(min_x, max_x, min_y, max_y) offsets that keep some overlap with the sheet."""

    crop_w = cell.width * scale
    crop_h = cell.height * scale
    min_x = max(-OFFSET_LIMIT, -cell.x - (cell.width + crop_w) / 2)
    max_x = min(OFFSET_LIMIT, sheet_width - cell.x - (cell.width - crop_w) / 2)
    min_y = max(-OFFSET_LIMIT, -cell.y - (cell.height + crop_h) / 2)
    max_y = min(OFFSET_LIMIT, sheet_height - cell.y - (cell.height - crop_h) / 2)
    return min_x, max_x, min_y, max_y


def extract_frame(
    sheet: Image.Image,
    cell: CellRect,
    override: FrameOverride,
    output_size: Optional[tuple[int, int]] = None,
) -> Image.Image:
    """Render one frame: the override's crop resampled into the frame canvas."""

    region = crop_region(cell, override.offset_x, override.offset_y, override.scale)
    size = output_size or (max(1, math.floor(cell.width)), max(1, math.floor(cell.height)))
    box = (region.sx, region.sy, region.sx + region.width, region.sy + region.height)
    return sheet.convert("RGBA").transform(
        size, Image.Transform.EXTENT, box, resample=Image.Resampling.NEAREST
    )


def extract_frames(
    sheet: Image.Image | PixelBuffer,
    settings: SliceSettings,
    overrides: Optional[Mapping[int, FrameOverride]] = None,
) -> list[Optional[Image.Image]]:
    """Slice every cell of the sheet, applying per-frame overrides."""

    image = sheet.to_image() if isinstance(sheet, PixelBuffer) else sheet.convert("RGBA")
    overrides = overrides or {}
    frames: list[Optional[Image.Image]] = []
    for index, cell in enumerate(cell_rects(image.width, image.height, settings)):
        if cell is None:
            logger.debug("Skipping frame %s: no usable cell", index)
            frames.append(None)
            continue
        frames.append(extract_frame(image, cell, override_for(overrides, index)))
    return frames
