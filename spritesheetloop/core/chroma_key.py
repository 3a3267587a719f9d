"""Adaptive chroma-key background removal over RGBA pixel buffers."""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np
from PIL import Image

from . import ChromaKeyParams, Color, PixelBuffer
from .color_model import KeyFamily, classify_key_family, hue_band_distance, luminance, rgb_to_hsl, rgb_to_hsl_array
from .errors import InvalidBufferError
from ..utils import validators

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]

MAX_CORNER_SAMPLE = 100
MIN_BACKGROUND_COUNT = 10
DETECTED_FUZZ_BOOST = 1.5
HUE_TOLERANCE_PER_PERCENT = 1.5
EDGE_TOLERANCE_FACTOR = 1.5
DESATURATE_TOLERANCE_FACTOR = 2.0
EDGE_ALPHA_KEEP = 0.3
FAMILY_MIN_SATURATION = 0.5

KEY_BANDS = {
    KeyFamily.MAGENTA: (295.0, 305.0),
    KeyFamily.GREEN: (135.0, 147.0),
}
BAND_LIGHTNESS = {
    KeyFamily.MAGENTA: (0.2, 0.85),
    KeyFamily.GREEN: (0.15, 0.85),
}


@dataclass(frozen=True)
class BackgroundEstimate:
    """Colour actually used as the key after corner sampling."""

    target: Color
    family: KeyFamily
    detected: bool
    count: int


@dataclass
class SegmentationReport:
    buffer: PixelBuffer
    target: Color
    background_detected: bool
    fuzz: float
    hue_tolerance: float
    transparent_count: int


def _ensure_valid(buffer: PixelBuffer) -> None:
    if buffer.width <= 0 or buffer.height <= 0:
        raise InvalidBufferError(f"Buffer dimensions must be positive, got {buffer.width}x{buffer.height}")
    if len(buffer.data) != buffer.width * buffer.height * 4:
        raise InvalidBufferError(
            f"Buffer length {len(buffer.data)} does not match {buffer.width}x{buffer.height}x4"
        )


def _corner_samples(array: np.ndarray) -> np.ndarray:
    """RGB of the mirrored corner sample grid, in visiting order, skipping transparent pixels."""

    height, width = array.shape[:2]
    size = min(MAX_CORNER_SAMPLE, int(math.sqrt(width * height) / 10))
    if size <= 0:
        return np.empty((0, 3), dtype=np.uint8)

    coords = np.arange(size)
    gx, gy = (grid.ravel() for grid in np.meshgrid(coords, coords))
    xs = np.stack((gx, width - 1 - gx, gx, width - 1 - gx), axis=1).ravel()
    ys = np.stack((gy, gy, height - 1 - gy, height - 1 - gy), axis=1).ravel()
    valid = (xs >= 0) & (xs < width) & (ys >= 0) & (ys < height)
    picked = array[ys[valid], xs[valid]]
    return picked[picked[:, 3] != 0, :3]


def detect_background(buffer: PixelBuffer, key: Color) -> BackgroundEstimate:
    """Find the dominant key-family colour in the sheet corners."""

    _ensure_valid(buffer)
    family = classify_key_family(key)
    if family is KeyFamily.NONE:
        return BackgroundEstimate(target=key, family=family, detected=False, count=0)

    tally = Counter(map(tuple, _corner_samples(buffer.as_array()).tolist()))
    for (r, g, b), count in tally.most_common():
        candidate = Color(r, g, b)
        if classify_key_family(candidate) is not family:
            continue
        if rgb_to_hsl(r, g, b).s < FAMILY_MIN_SATURATION:
            continue
        if count > MIN_BACKGROUND_COUNT:
            return BackgroundEstimate(target=candidate, family=family, detected=True, count=count)
        break
    return BackgroundEstimate(target=key, family=family, detected=False, count=0)


def _plausible(rgb: np.ndarray, family: KeyFamily) -> np.ndarray:
    r, g, b = (rgb[..., i].astype(np.float64) for i in range(3))
    if family is KeyFamily.MAGENTA:
        return (r >= 1.3 * g) & (b >= 1.3 * g) & (r + b > 3 * g) & (g < 150)
    if family is KeyFamily.GREEN:
        return (g >= 1.3 * r) & (g >= 1.3 * b) & (g > r + b) & (r < 150) & (b < 150)
    return np.ones(rgb.shape[:-1], dtype=bool)


def _band_match(rgb: np.ndarray, family: KeyFamily, tolerance: float) -> np.ndarray:
    """Strict HSL test: hue near the family band, saturated, sane lightness, dominant channel."""

    if family is KeyFamily.NONE:
        return np.zeros(rgb.shape[:-1], dtype=bool)
    hue, sat, light = rgb_to_hsl_array(rgb)
    low, high = KEY_BANDS[family]
    min_l, max_l = BAND_LIGHTNESS[family]
    r, g, b = (rgb[..., i].astype(np.int32) for i in range(3))
    if family is KeyFamily.MAGENTA:
        dominant = (r > g) & (b > g)
    else:
        dominant = (g > r) & (g > b)
    return (
        (hue_band_distance(hue, low, high) <= tolerance)
        & (sat >= FAMILY_MIN_SATURATION)
        & (light >= min_l)
        & (light <= max_l)
        & dominant
    )


def _classify_chunk(
    chunk: np.ndarray,
    target: np.ndarray,
    family: KeyFamily,
    fuzz: float,
    hue_tolerance: float,
    filter_plausible: bool,
) -> None:
    active = chunk[:, 3] != 0
    rgb = chunk[:, :3]
    diff = rgb.astype(np.int32) - target
    distance = np.sqrt((diff * diff).sum(axis=1))
    keyed = active & (distance <= fuzz)
    if filter_plausible:
        keyed &= _plausible(rgb, family)
    fallback = active & ~keyed
    keyed |= fallback & _band_match(rgb, family, hue_tolerance)
    chunk[keyed, 3] = 0


def _semi_transparent(flat: np.ndarray) -> np.ndarray:
    alpha = flat[:, 3]
    return np.flatnonzero((alpha != 0) & (alpha != 255))


def _soften_edges(flat: np.ndarray, family: KeyFamily, tolerance: float) -> int:
    candidates = _semi_transparent(flat)
    if candidates.size == 0:
        return 0
    hits = candidates[_band_match(flat[candidates, :3], family, tolerance)]
    flat[hits, 3] = np.floor(flat[hits, 3] * EDGE_ALPHA_KEEP).astype(np.uint8)
    return int(hits.size)


def _desaturate_fringe(flat: np.ndarray, family: KeyFamily, tolerance: float) -> int:
    candidates = _semi_transparent(flat)
    if candidates.size == 0:
        return 0
    hits = candidates[_band_match(flat[candidates, :3], family, tolerance)]
    if hits.size == 0:
        return 0
    rgb = flat[hits, :3].astype(np.float64)
    gray = np.floor(luminance(rgb) + 0.5)[:, None]
    flat[hits, :3] = np.floor((rgb + gray) / 2.0 + 0.5).astype(np.uint8)
    return int(hits.size)


def segment_with_report(
    buffer: PixelBuffer,
    params: ChromaKeyParams,
    on_progress: Optional[ProgressCallback] = None,
) -> SegmentationReport:
    """Key out the background of ``buffer`` in place and describe what happened."""

    _ensure_valid(buffer)
    validators.validate_fuzz(params.fuzz_percent)

    estimate = detect_background(buffer, params.key)
    fuzz = params.fuzz_percent / 100.0 * 255.0
    if estimate.detected:
        fuzz *= DETECTED_FUZZ_BOOST
    hue_tolerance = params.fuzz_percent * HUE_TOLERANCE_PER_PERCENT
    family = estimate.family
    target = np.array(estimate.target.as_tuple(), dtype=np.int32)
    # A key that fails its own family filter would reject the background itself.
    filter_plausible = family is not KeyFamily.NONE and bool(_plausible(target[None, :], family)[0])

    logger.info(
        "Chroma key target %s (detected=%s, count=%s), fuzz=%.1f, hue tolerance=%.1f",
        estimate.target.as_tuple(),
        estimate.detected,
        estimate.count,
        fuzz,
        hue_tolerance,
    )

    flat = buffer.as_array().reshape(-1, 4)
    total = flat.shape[0]
    report_interval = max(1, total // 100)
    for start in range(0, total, report_interval):
        if on_progress:
            on_progress(min(100, int(start * 100 / total)))
        _classify_chunk(
            flat[start : start + report_interval], target, family, fuzz, hue_tolerance, filter_plausible
        )

    softened = _soften_edges(flat, family, hue_tolerance * EDGE_TOLERANCE_FACTOR)
    desaturated = _desaturate_fringe(flat, family, hue_tolerance * DESATURATE_TOLERANCE_FACTOR)
    transparent_count = int(np.count_nonzero(flat[:, 3] == 0))
    logger.debug(
        "Keyed %s/%s pixels transparent, softened %s edge pixels, desaturated %s",
        transparent_count,
        total,
        softened,
        desaturated,
    )

    if on_progress:
        on_progress(100)
    return SegmentationReport(
        buffer=buffer,
        target=estimate.target,
        background_detected=estimate.detected,
        fuzz=fuzz,
        hue_tolerance=hue_tolerance,
        transparent_count=transparent_count,
    )


def segment(
    buffer: PixelBuffer,
    params: ChromaKeyParams,
    on_progress: Optional[ProgressCallback] = None,
) -> PixelBuffer:
    """Remove the chroma-key background; mutates and returns ``buffer``."""

    return segment_with_report(buffer, params, on_progress).buffer


def remove_chroma_key_image(image: Image.Image, params: ChromaKeyParams) -> Image.Image:
    """Pillow convenience wrapper returning a new keyed RGBA image."""

    buffer = PixelBuffer.from_image(image)
    return segment(buffer, params).to_image()
